"""
Best-effort live tail of newly appended activity events.

One ChangeStream serves one subscriber. It remembers the ``(at, id)``
of the last row it delivered and, every tick, asks the store for rows
strictly after that position. Positions compare on the pair so rows
sharing a timestamp are never skipped.

The stream starts at the tail of the log as it stands when ``open`` is
called: nothing written before the subscriber connected is replayed.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from activity_ledger.db.models.activity import ActivityEvent
from activity_ledger.schemas.activity import ActivityFilters
from activity_ledger.services.activity.metrics import STREAM_SUBSCRIBERS
from activity_ledger.services.activity.query import apply_filters

_log = structlog.get_logger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


class ChangeStream:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        filters: ActivityFilters,
        poll_seconds: float = 2.0,
        batch_size: int = 200,
    ) -> None:
        self._factory = session_factory
        self._filters = filters
        self.poll_seconds = poll_seconds
        self.batch_size = batch_size
        self._cursor: tuple[datetime, int] | None = None
        self._opened = False

    @property
    def cursor(self) -> tuple[datetime, int] | None:
        return self._cursor

    async def open(self) -> None:
        """Pin the starting position to the current end of the log."""
        async with self._factory() as db:
            tail = (
                await db.execute(
                    select(ActivityEvent.at, ActivityEvent.id)
                    .order_by(ActivityEvent.at.desc(), ActivityEvent.id.desc())
                    .limit(1)
                )
            ).first()
        self._cursor = (tail.at, tail.id) if tail is not None else None
        self._opened = True

    async def poll(self) -> list[ActivityEvent]:
        """Fetch the next batch after the cursor, oldest first, and advance."""
        if not self._opened:
            await self.open()

        stmt = apply_filters(select(ActivityEvent), self._filters)
        if self._cursor is not None:
            at, event_id = self._cursor
            stmt = stmt.where(
                or_(
                    ActivityEvent.at > at,
                    and_(ActivityEvent.at == at, ActivityEvent.id > event_id),
                )
            )
        stmt = stmt.order_by(ActivityEvent.at.asc(), ActivityEvent.id.asc()).limit(
            self.batch_size
        )

        async with self._factory() as db:
            rows = list((await db.execute(stmt)).scalars().all())

        if rows:
            self._cursor = (rows[-1].at, rows[-1].id)
        return rows

    async def events(
        self, is_disconnected: DisconnectCheck | None = None
    ) -> AsyncIterator[ActivityEvent]:
        """
        Yield new events until the subscriber goes away or the task is cancelled.

        A failing tick is logged and retried on the next one.
        """
        if not self._opened:
            await self.open()

        STREAM_SUBSCRIBERS.inc()
        _log.info("activity_stream_opened", filters=self._filters.model_dump(exclude_none=True))
        try:
            while True:
                if is_disconnected is not None and await is_disconnected():
                    break

                try:
                    rows = await self.poll()
                except Exception:
                    _log.warning("activity_stream_poll_failed", exc_info=True)
                    rows = []

                for row in rows:
                    yield row

                # A full batch means more rows are already waiting
                if len(rows) < self.batch_size:
                    await asyncio.sleep(self.poll_seconds)
        finally:
            STREAM_SUBSCRIBERS.dec()
            _log.info("activity_stream_closed")
