"""
Full-chain integrity check.

Walks the log from the genesis event in ``(at, id)`` order, recomputing
each row's ``hash_self`` with the same canonicalizer the recorder uses
and checking that ``hash_prev`` points at the row before it. Stops at
the first divergence.

Cost is linear in the number of rows; ``limit`` bounds a single run.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_ledger.db.models.activity import ActivityEvent
from activity_ledger.services.activity.canonical import hash_payload
from activity_ledger.services.activity.metrics import CHAIN_VERIFICATIONS

_log = structlog.get_logger(__name__)

BATCH_SIZE = 500


@dataclass(frozen=True, slots=True)
class VerificationResult:
    ok: bool
    checked: int
    broken_at: int | None = None


class ChainVerifier:
    def __init__(self, db: AsyncSession, batch_size: int = BATCH_SIZE) -> None:
        self._db = db
        self._batch_size = batch_size

    async def _batch(self, after: tuple[datetime, int] | None, size: int) -> list[ActivityEvent]:
        stmt = select(ActivityEvent)
        if after is not None:
            at, event_id = after
            stmt = stmt.where(
                or_(
                    ActivityEvent.at > at,
                    and_(ActivityEvent.at == at, ActivityEvent.id > event_id),
                )
            )
        stmt = (
            stmt.order_by(ActivityEvent.at.asc(), ActivityEvent.id.asc())
            .limit(size)
            # Always compare what is stored, not what this session cached
            .execution_options(populate_existing=True)
        )
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def verify(self, limit: int) -> VerificationResult:
        """
        Check up to ``limit`` events from the start of the chain.

        On divergence, ``checked`` is the 1-based position of the first bad
        event and ``broken_at`` its id.
        """
        expected_prev: str | None = None
        checked = 0
        cursor: tuple[datetime, int] | None = None

        while checked < limit:
            rows = await self._batch(cursor, min(self._batch_size, limit - checked))
            if not rows:
                break

            for row in rows:
                checked += 1
                recomputed = hash_payload(row)
                if recomputed != row.hash_self or row.hash_prev != expected_prev:
                    _log.error(
                        "activity_chain_broken",
                        event_id=row.id,
                        position=checked,
                        expected_hash=recomputed,
                        stored_hash=row.hash_self,
                        expected_prev=expected_prev,
                        stored_prev=row.hash_prev,
                    )
                    CHAIN_VERIFICATIONS.labels(outcome="broken").inc()
                    return VerificationResult(ok=False, checked=checked, broken_at=row.id)
                expected_prev = row.hash_self

            cursor = (rows[-1].at, rows[-1].id)
            await asyncio.sleep(0)

        CHAIN_VERIFICATIONS.labels(outcome="intact").inc()
        _log.info("activity_chain_verified", checked=checked)
        return VerificationResult(ok=True, checked=checked)
