"""
Hash-chained activity recorder.

Every event is SHA-256 hashed over its canonical payload and linked to
the ``hash_self`` of the event before it. Reading the current tail and
inserting the new row happen inside one serialized section:

  - in-process, writers queue on an asyncio lock (one per event loop);
  - on PostgreSQL the transaction also takes an advisory lock so that
    several worker processes serialize on the database itself.

The section commits before it releases, so the next writer always sees
the row it must link to.

Recording is a side effect of business operations and must never fail
them. ``record`` and ``schedule`` swallow and log every error; only the
diagnostic ``append`` path lets exceptions through.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import BackgroundTasks
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from activity_ledger.db.base import utcnow
from activity_ledger.db.models.activity import ActivityEvent
from activity_ledger.schemas.activity import ActivityEventIn
from activity_ledger.services.activity.canonical import hash_payload, to_json_value
from activity_ledger.services.activity.context import RequestContext
from activity_ledger.services.activity.identity import normalize_id
from activity_ledger.services.activity.metrics import EVENTS_RECORDED, RECORD_FAILURES
from activity_ledger.services.activity.redaction import redact

_log = structlog.get_logger(__name__)

# Fixed key for pg_advisory_xact_lock; any writer of activity_events uses it
ADVISORY_LOCK_KEY = 0x4143544C  # "ACTL"

_locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Lock] = (
    weakref.WeakKeyDictionary()
)


def _writer_lock() -> asyncio.Lock:
    loop = asyncio.get_running_loop()
    lock = _locks.get(loop)
    if lock is None:
        lock = _locks[loop] = asyncio.Lock()
    return lock


def _as_utc(value: datetime) -> datetime:
    # SQLite hands DateTime(timezone=True) back naive
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def _clip(value: str | None, column: str) -> str | None:
    """Trim a free-text request fact to the width of its column."""
    if value is None:
        return None
    length = ActivityEvent.__table__.c[column].type.length
    return value[:length] if length else value


def build_record(context: RequestContext, event: ActivityEventIn) -> dict[str, Any]:
    """
    Assemble the stored payload of an event, minus ``id``, ``at`` and hashes.

    Identifiers are normalized, request facts are clipped to their column
    widths, and ``meta``/``diff`` are reduced to plain JSON and redacted,
    so the returned dict is exactly what gets stored and exactly what gets
    hashed.
    """
    meta = event.meta if event.meta is not None else {}
    diff = event.diff if event.diff is not None else {}
    return {
        "request_id": _clip(context.request_id, "request_id"),
        "actor_id": normalize_id(context.actor_id),
        "actor_role": _clip(context.actor_role, "actor_role"),
        "action": event.action,
        "subject_type": event.subject_type,
        "subject_id": normalize_id(event.subject_id),
        "target_type": event.target_type,
        "target_id": normalize_id(event.target_id),
        "severity": int(event.severity),
        "ip": _clip(context.ip, "ip"),
        "user_agent": _clip(context.user_agent, "user_agent"),
        "meta": redact(to_json_value(meta)),
        "diff": redact(to_json_value(diff)),
    }


class EventRecorder:
    """
    Appends events to the activity chain.

    Usage:
        recorder = EventRecorder(session_factory)
        await recorder.record(
            ctx,
            ActivityEventIn(
                action="order.placed",
                subject_type="order",
                subject_id=order.id,
                meta={"total": "42.10"},
            ),
        )
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._factory = session_factory

    async def append(self, context: RequestContext, event: ActivityEventIn) -> ActivityEvent:
        """
        Durably append one event and return the stored row.

        Raises whatever the serialization or the store raises.
        """
        record = build_record(context, event)
        hash_self = hash_payload(record)

        async with _writer_lock():
            async with self._factory() as db:
                async with db.begin():
                    await self._lock_tail(db)
                    tail = (
                        await db.execute(
                            select(ActivityEvent.hash_self, ActivityEvent.at)
                            .order_by(ActivityEvent.at.desc(), ActivityEvent.id.desc())
                            .limit(1)
                        )
                    ).first()

                    at = utcnow()
                    hash_prev: str | None = None
                    if tail is not None:
                        hash_prev = tail.hash_self
                        # A clock step backwards must not reorder the chain
                        at = max(at, _as_utc(tail.at))

                    row = ActivityEvent(**record, at=at, hash_prev=hash_prev, hash_self=hash_self)
                    db.add(row)
                    await db.flush()
                    # Detached rows keep their loaded state through the commit
                    db.expunge(row)

        EVENTS_RECORDED.labels(action=event.action).inc()
        _log.debug(
            "activity_recorded",
            event_id=row.id,
            action=event.action,
            subject_type=event.subject_type,
            hash_self=hash_self,
            hash_prev=hash_prev,
        )
        return row

    async def record(self, context: RequestContext, event: ActivityEventIn) -> str | None:
        """
        Best-effort append. Returns the new ``hash_self``, or None on failure.

        Never raises: the failure is logged and counted instead.
        """
        try:
            row = await self.append(context, event)
        except Exception:
            RECORD_FAILURES.inc()
            _log.error(
                "activity_record_failed",
                action=event.action,
                subject_type=event.subject_type,
                exc_info=True,
            )
            return None
        return row.hash_self

    def schedule(
        self,
        background_tasks: BackgroundTasks,
        context: RequestContext,
        event: ActivityEventIn,
    ) -> None:
        """Record after the response has been sent, so the caller never waits."""
        background_tasks.add_task(self.record, context, event)

    @staticmethod
    async def _lock_tail(db: AsyncSession) -> None:
        if db.get_bind().dialect.name == "postgresql":
            await db.execute(
                text("SELECT pg_advisory_xact_lock(:key)"), {"key": ADVISORY_LOCK_KEY}
            )
