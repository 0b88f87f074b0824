"""
Telemetry Sinks

Best-effort writers for automation failures, system logs, heartbeats and
analytics events. Which of these tables exist (and which columns they carry)
differs between environments, so every write walks an ordered list of
(table, shape_mapper) candidates and stops at the first one the store accepts.

Nothing here ever raises into the caller: a telemetry outage must not fail a
booking or a webhook.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .data_store import DataStore, TableMissing
from ..utils.db_helpers import now_iso, truncate

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
ShapeMapper = Callable[[Record], Record]
Candidate = Tuple[str, ShapeMapper]


class FallbackWriter:
    """Ordered fallback insert. Returns the table that took the write, or None."""

    def __init__(self, store: DataStore, candidates: Sequence[Candidate], name: str = "telemetry"):
        self.store = store
        self.candidates = list(candidates)
        self.name = name

    async def write(self, record: Record) -> Optional[str]:
        for table, shape in self.candidates:
            try:
                row = shape(record)
                await self.store.insert_single(table, row)
                return table
            except TableMissing:
                logger.debug(f"[{self.name}] {table} missing, trying next sink")
            except Exception as e:
                logger.debug(f"[{self.name}] {table} rejected write: {e}")
        logger.warning(f"[{self.name}] every sink rejected the write; record dropped")
        return None


def _full(record: Record) -> Record:
    return dict(record)


def _pick(*keys: str) -> ShapeMapper:
    def shape(record: Record) -> Record:
        return {key: record.get(key) for key in keys}
    return shape


# system_logs layouts seen in the wild, widest first
SYSTEM_LOG_SHAPES: List[ShapeMapper] = [
    _full,
    _pick("level", "event", "message", "meta"),
    _pick("level", "message", "meta"),
    _pick("message", "meta"),
]


def _event_failure_with_last_error(record: Record) -> Record:
    return {
        "booking_id": record["booking_id"],
        "event": record["event"],
        "status": "failed",
        "attempts": record["attempts"],
        "last_error": record["last_error"],
        "payload": record["payload"],
        "meta": record["meta"],
    }


def _event_failure_with_error(record: Record) -> Record:
    return {
        "booking_id": record["booking_id"],
        "event": record["event"],
        "status": "failed",
        "error": record["last_error"],
        "payload": record["payload"],
        "meta": record["meta"],
    }


def _failure_as_system_log(shape: ShapeMapper) -> ShapeMapper:
    def mapper(record: Record) -> Record:
        return shape({
            "level": "error",
            "event": "automation.failure",
            "booking_id": record["booking_id"],
            "message": f"{record['event']} failed",
            "meta": {
                "event": record["event"],
                "booking_id": record["booking_id"],
                "error": record["last_error"],
            },
        })
    return mapper


def _heartbeat_as_system_log(shape: ShapeMapper) -> ShapeMapper:
    def mapper(record: Record) -> Record:
        return shape({
            "level": "info",
            "event": "heartbeat",
            "message": record["kind"],
            "meta": record.get("meta"),
        })
    return mapper


class Telemetry:
    """
    The telemetry sinks bound to one row store.

    - record_automation_failure: automation_failures -> event_failures (two layouts) -> system_logs
    - write_system_log: system_logs, progressively narrower layouts
    - write_heartbeat: system_heartbeats -> system_logs(event=heartbeat, message=kind)
    - track_event: analytics_events, else dropped
    """

    def __init__(self, store: DataStore):
        self.store = store
        self.system_logs = FallbackWriter(
            store, [("system_logs", shape) for shape in SYSTEM_LOG_SHAPES], name="system_log"
        )
        self.failures = FallbackWriter(
            store,
            [
                ("automation_failures", _full),
                ("event_failures", _event_failure_with_last_error),
                ("event_failures", _event_failure_with_error),
            ]
            + [("system_logs", _failure_as_system_log(shape)) for shape in SYSTEM_LOG_SHAPES],
            name="automation_failure",
        )
        self.heartbeats = FallbackWriter(
            store,
            [("system_heartbeats", _pick("kind", "meta", "created_at"))]
            + [("system_logs", _heartbeat_as_system_log(shape)) for shape in SYSTEM_LOG_SHAPES],
            name="heartbeat",
        )
        self.analytics = FallbackWriter(
            store,
            [("analytics_events", _pick("name", "booking_id", "properties", "created_at"))],
            name="analytics",
        )

    async def record_automation_failure(
        self,
        event: str,
        error: Any,
        booking_id: Optional[str] = None,
        attempts: int = 0,
        payload: Any = None,
        meta: Any = None,
    ) -> Optional[str]:
        """Queue a failed side effect for the retry worker (or at least log it)."""
        message = truncate(str(error).strip() or "Unknown automation error")
        record = {
            "booking_id": booking_id or None,
            "event": (event or "").strip() or "automation.unknown",
            "status": "failed",
            "attempts": max(0, int(attempts or 0)),
            "last_error": message,
            "payload": payload,
            "meta": meta,
            "updated_at": now_iso(),
        }
        table = await self.failures.write(record)
        logger.warning(f"Automation failure recorded ({record['event']}, booking={booking_id}) in {table}")
        return table

    async def write_system_log(
        self,
        level: str,
        event: str,
        message: str,
        booking_id: Optional[str] = None,
        meta: Any = None,
    ) -> Optional[str]:
        return await self.system_logs.write({
            "level": level,
            "event": event,
            "booking_id": booking_id,
            "message": message,
            "meta": meta,
        })

    async def write_heartbeat(self, kind: str, meta: Any = None) -> Optional[str]:
        return await self.heartbeats.write({"kind": kind, "meta": meta, "created_at": now_iso()})

    async def track_event(
        self,
        name: str,
        properties: Optional[Dict[str, Any]] = None,
        booking_id: Optional[str] = None,
    ) -> Optional[str]:
        properties = properties or {}
        return await self.analytics.write({
            "name": name,
            "booking_id": booking_id or properties.get("booking_id"),
            "properties": properties,
            "created_at": now_iso(),
        })

    async def write_automation_process_log(
        self,
        event: str,
        outcome: str,
        booking_id: Optional[str] = None,
        failure_id: Optional[str] = None,
        attempt: Optional[int] = None,
        message: Optional[str] = None,
    ) -> Optional[str]:
        """One system log line per automation retry attempt."""
        event = (event or "").strip() or "automation.unknown"
        return await self.write_system_log(
            level="error" if outcome == "failed" else "info",
            event="automation.retry",
            message=message or f"Automation retry {outcome}: {event}",
            booking_id=booking_id,
            meta={
                "event": event,
                "booking_id": booking_id,
                "failure_id": failure_id,
                "attempt": attempt,
                "outcome": outcome,
            },
        )
