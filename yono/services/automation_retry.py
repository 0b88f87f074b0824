"""
Automation Retry Worker

Re-drives failed automation records (automation_failures) through the
registered event handlers. Meant to be called every few minutes by a cron
hitting POST /api/internal/automation/retry.

Per record:
- eligible when status=failed, attempts < max and the backoff since
  updated_at has elapsed (5 min after 0 attempts, 15 after 1, 45 after that)
- claimed with a compare-and-set (status=failed, attempts, updated_at) so two
  concurrent runs never process the same row
- finished as resolved or failed, with the attempt appended to
  meta.retry_history
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .data_store import DataStore, StoreError
from .telemetry import Telemetry
from ..utils.db_helpers import now_iso, parse_iso, truncate

logger = logging.getLogger(__name__)

TABLE = "automation_failures"
CANDIDATE_SCAN_LIMIT = 200
BACKOFF_MINUTES = (5, 15, 45)
HEARTBEAT_KIND = "cron_retry"

EventHandler = Callable[[Optional[str], Any], Awaitable[Any]]


@dataclass
class RetrySummary:
    processed: int = 0
    resolved: int = 0
    still_failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def required_delay(attempts: int) -> timedelta:
    index = min(max(attempts, 0), len(BACKOFF_MINUTES) - 1)
    return timedelta(minutes=BACKOFF_MINUTES[index])


def _attempts(row: Dict[str, Any]) -> int:
    try:
        return max(0, int(row.get("attempts") or 0))
    except (TypeError, ValueError):
        return 0


def is_eligible(row: Dict[str, Any], now: datetime, max_attempts: int = 3) -> bool:
    attempts = _attempts(row)
    if attempts >= max_attempts:
        return False
    updated_at = parse_iso(row.get("updated_at"))
    if updated_at is None:
        return True
    return now - updated_at >= required_delay(attempts)


def _merge_meta(meta: Any, patch: Dict[str, Any]) -> Dict[str, Any]:
    base = dict(meta) if isinstance(meta, dict) else {}
    base.update(patch)
    return base


def normalize_event_name(event: str) -> str:
    return (event or "").strip().lower().replace("_", ".")


class AutomationRetryWorker:
    def __init__(
        self,
        store: DataStore,
        telemetry: Telemetry,
        handlers: Optional[Dict[str, EventHandler]] = None,
        max_attempts: int = 3,
        batch_size: int = 10,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.telemetry = telemetry
        self.handlers = {normalize_event_name(name): handler for name, handler in (handlers or {}).items()}
        self.max_attempts = max_attempts
        self.batch_size = batch_size
        self.clock = clock

    def register(self, event: str, handler: EventHandler) -> None:
        self.handlers[normalize_event_name(event)] = handler

    async def _candidates(self) -> List[Dict[str, Any]]:
        try:
            rows = await self.store.select_many(
                TABLE,
                {"status": "failed", "attempts": ("lt", self.max_attempts)},
                order_by="updated_at",
                limit=CANDIDATE_SCAN_LIMIT,
            )
        except StoreError as e:
            logger.warning(f"Automation retry: cannot read {TABLE}: {e}")
            return []
        now = self.clock()
        eligible = [row for row in rows if is_eligible(row, now, self.max_attempts)]
        return eligible[:self.batch_size]

    async def _dispatch(self, row: Dict[str, Any]) -> None:
        event = normalize_event_name(row.get("event") or "")
        handler = self.handlers.get(event)
        if handler is None:
            raise LookupError(f"No automation handler registered for '{event or 'unknown'}'")
        payload = row.get("payload") if isinstance(row.get("payload"), dict) and row.get("payload") else row.get("meta")
        await handler(row.get("booking_id"), payload)

    async def _claim(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        attempts = _attempts(row)
        retry_at = now_iso()
        meta = _merge_meta(row.get("meta"), {})
        history = meta.get("retry_history") if isinstance(meta.get("retry_history"), list) else []
        meta = _merge_meta(meta, {
            "retry_history": history + [retry_at],
            "last_retry_attempt": attempts + 1,
            "last_retry_at": retry_at,
        })

        condition = {"id": row["id"], "status": "failed", "attempts": attempts}
        if row.get("updated_at"):
            condition["updated_at"] = row["updated_at"]
        try:
            return await self.store.update_single(TABLE, condition, {
                "attempts": attempts + 1,
                "status": "retrying",
                "updated_at": retry_at,
                "meta": meta,
            })
        except StoreError as e:
            logger.warning(f"Automation retry: claim failed for {row['id']}: {e}")
            return None

    async def run_once(self) -> RetrySummary:
        summary = RetrySummary()

        for row in await self._candidates():
            if not row.get("id"):
                continue
            claimed = await self._claim(row)
            if claimed is None:
                # Another run got there first
                continue

            summary.processed += 1
            attempt = _attempts(claimed)
            error: Optional[str] = None
            try:
                await self._dispatch(row)
                final_status = "resolved"
            except Exception as e:
                final_status = "failed"
                error = truncate(str(e) or type(e).__name__)
                logger.warning(f"Automation retry {row['id']} ({row.get('event')}) failed: {error}")

            meta = _merge_meta(claimed.get("meta"), {
                "last_retry_outcome": final_status,
                "last_retry_error": error,
                "last_retry_processed_at": now_iso(),
            })
            try:
                await self.store.update_single(
                    TABLE,
                    {"id": row["id"], "status": "retrying", "attempts": attempt},
                    {"status": final_status, "last_error": error, "updated_at": now_iso(), "meta": meta},
                )
            except StoreError as e:
                # Row stays in "retrying": visible, and never picked up again automatically
                logger.error(f"Automation retry: could not finalize {row['id']}: {e}")

            await self.telemetry.write_automation_process_log(
                event=row.get("event") or "automation.unknown",
                outcome=final_status,
                booking_id=row.get("booking_id"),
                failure_id=row["id"],
                attempt=attempt,
                message="Automation retry resolved" if final_status == "resolved"
                else f"Automation retry failed: {error}",
            )
            if final_status == "resolved":
                summary.resolved += 1
            else:
                summary.still_failed += 1

        await self.telemetry.write_heartbeat(HEARTBEAT_KIND, summary.to_dict())
        logger.info(f"Automation retry run: {summary.to_dict()}")
        return summary
