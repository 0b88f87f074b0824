"""
Supabase REST Row Store

PostgREST client over httpx. Server-side only: the service role key must
never be sent to a browser.

Error mapping (PostgREST reports most problems as text):
- timeout / connection error / 5xx -> StoreUnavailable
- 42P01, PGRST205                  -> TableMissing
- 42703, PGRST204                  -> ColumnMissing
- 409, 23505                       -> UniqueViolation
"""

import logging
from typing import Any, List, Optional

import httpx

from .data_store import (
    ColumnMissing,
    DataStore,
    Filters,
    Row,
    StoreError,
    StoreNotConfigured,
    StoreUnavailable,
    TableMissing,
    UniqueViolation,
    iter_conditions,
)
from ..utils.db_helpers import looks_like_missing_column, looks_like_missing_table, looks_like_unique_violation

logger = logging.getLogger(__name__)


def format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_query(filters: Optional[Filters]) -> List[tuple]:
    """{column: value | (op, value)} -> PostgREST query params."""
    params = []
    for column, raw in (filters or {}).items():
        for op, value in iter_conditions(raw):
            if op == "in":
                joined = ",".join(format_value(v) for v in value)
                params.append((column, f"in.({joined})"))
            else:
                params.append((column, f"{op}.{format_value(value)}"))
    return params


class SupabaseRestStore(DataStore):
    """Row store speaking PostgREST."""

    def __init__(
        self,
        url: str,
        service_role_key: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url or not service_role_key:
            raise StoreNotConfigured(
                "Supabase is not configured. Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY."
            )
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": service_role_key,
                "Authorization": f"Bearer {service_role_key}",
            },
        )

    @classmethod
    def from_settings(cls, settings) -> "SupabaseRestStore":
        return cls(
            settings.supabase_url,
            settings.supabase_service_role_key,
            timeout=settings.store_timeout_seconds,
        )

    async def _request(self, method: str, table: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, f"/{table}", **kwargs)
        except httpx.TimeoutException as e:
            raise StoreUnavailable(f"Supabase {method} timed out ({table}): {e}", table=table)
        except httpx.TransportError as e:
            raise StoreUnavailable(f"Supabase {method} failed ({table}): {e}", table=table)

        if response.is_success:
            return response

        message = f"Supabase {method} failed ({table}): {response.status_code} {response.text}"
        if response.status_code == 409 or looks_like_unique_violation(message):
            raise UniqueViolation(message, table=table)
        if looks_like_missing_table(message, table):
            raise TableMissing(message, table=table)
        if looks_like_missing_column(message):
            raise ColumnMissing(message, table=table)
        if response.status_code >= 500:
            raise StoreUnavailable(message, table=table)
        raise StoreError(message, table=table)

    async def select_many(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Row]:
        params = [("select", "*")] + build_query(filters)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit is not None:
            params.append(("limit", str(limit)))
        if offset:
            params.append(("offset", str(offset)))

        response = await self._request("GET", table, params=params)
        payload = response.json()
        return payload if isinstance(payload, list) else []

    async def insert_single(self, table: str, row: Row) -> Row:
        response = await self._request(
            "POST",
            table,
            json=row,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        if not isinstance(rows, list) or not rows:
            raise StoreError(f"Supabase insert returned empty payload ({table}).", table=table)
        return rows[0]

    async def update_single(self, table: str, filters: Filters, patch: Row) -> Optional[Row]:
        # PostgREST PATCH applies to every matching row; callers filter by id
        # (plus compare-and-set columns) so at most one row matches.
        response = await self._request(
            "PATCH",
            table,
            params=build_query(filters),
            json=patch,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json()
        return rows[0] if isinstance(rows, list) and rows else None

    async def close(self) -> None:
        await self.client.aclose()
