"""Read-only filtered retrieval over the activity chain."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from activity_ledger.core.errors import ErrorCode, ValidationError
from activity_ledger.db.models.activity import ActivityEvent
from activity_ledger.schemas.activity import ActivityFilters
from activity_ledger.services.activity.identity import normalize_id


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def apply_filters(query: Select, filters: ActivityFilters) -> Select:
    """
    AND together every filter that is set.

    ``subject_id`` and ``actor_id`` go through the identity normalizer so
    callers can search with the raw identifier they originally logged.
    """
    if filters.subject_type:
        query = query.where(ActivityEvent.subject_type == filters.subject_type)
    if filters.subject_id:
        query = query.where(ActivityEvent.subject_id == normalize_id(filters.subject_id))
    if filters.action:
        query = query.where(ActivityEvent.action == filters.action)
    if filters.actor_id:
        query = query.where(ActivityEvent.actor_id == normalize_id(filters.actor_id))
    if filters.from_ is not None:
        query = query.where(ActivityEvent.at >= _utc(filters.from_))
    if filters.to is not None:
        query = query.where(ActivityEvent.at <= _utc(filters.to))
    return query


class QueryService:
    """Newest-first pages of activity events, capped at ``max_limit`` rows."""

    def __init__(self, db: AsyncSession, default_limit: int = 100, max_limit: int = 500) -> None:
        self._db = db
        self.default_limit = default_limit
        self.max_limit = max_limit

    def effective_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.default_limit
        return max(1, min(limit, self.max_limit))

    async def query(
        self, filters: ActivityFilters, limit: int | None = None
    ) -> Sequence[ActivityEvent]:
        if filters.from_ and filters.to and _utc(filters.from_) > _utc(filters.to):
            raise ValidationError(
                "'from' must not be later than 'to'",
                detail={"from": filters.from_.isoformat(), "to": filters.to.isoformat()},
                code=ErrorCode.ACTIVITY_INVALID_RANGE,
            )

        stmt = (
            apply_filters(select(ActivityEvent), filters)
            .order_by(ActivityEvent.at.desc(), ActivityEvent.id.desc())
            .limit(self.effective_limit(limit))
        )
        result = await self._db.execute(stmt)
        return result.scalars().all()
