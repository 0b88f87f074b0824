"""
Database Helper Utilities

Provides:
- Row id / timestamp helpers shared by every table
- Error-message classification for stores that only report text
"""

import secrets
from datetime import datetime, timezone
from typing import Any, Optional


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def later_iso(previous: Optional[str]) -> str:
    """
    now_iso(), but never earlier than `previous`.

    Keeps updated_at non-decreasing even if the wall clock steps backwards.
    ISO strings of the same format order lexicographically.
    """
    current = now_iso()
    if previous and previous > current:
        return previous
    return current


def parse_iso(value: Any) -> Optional[datetime]:
    """Aware datetime from an ISO string; naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def new_payment_id() -> str:
    return f"pay_{secrets.token_hex(8)}"


def truncate(value: str, max_length: int = 500) -> str:
    if len(value) <= max_length:
        return value
    return value[:max_length - 1] + "…"


def looks_like_missing_table(message: str, table: Optional[str] = None) -> bool:
    """PostgreSQL 42P01, PostgREST PGRST205 or SQLite 'no such table'."""
    lower = message.lower()
    if "42p01" in lower or "pgrst205" in lower or "no such table" in lower:
        return True
    if "relation" in lower and "does not exist" in lower:
        return table is None or table.lower() in lower
    return False


def looks_like_missing_column(message: str) -> bool:
    lower = message.lower()
    return (
        "42703" in lower
        or "pgrst204" in lower
        or ("column" in lower and ("does not exist" in lower or "could not find" in lower))
        or "has no column named" in lower
    )


def looks_like_unique_violation(message: str) -> bool:
    lower = message.lower()
    return (
        "23505" in lower
        or "duplicate key" in lower
        or "unique constraint" in lower
    )
