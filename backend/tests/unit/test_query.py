"""Unit tests for QueryService filtering, ordering and limits."""
from datetime import timedelta

import pytest
import pytest_asyncio

from activity_ledger.core.errors import ErrorCode, ValidationError
from activity_ledger.db.base import utcnow
from activity_ledger.schemas.activity import ActivityEventIn, ActivityFilters
from activity_ledger.services.activity.context import RequestContext
from activity_ledger.services.activity.identity import normalize_id
from activity_ledger.services.activity.query import QueryService

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def seeded(recorder, ctx):
    other = RequestContext(request_id="req-2", actor_id="employee-7", actor_role="employee")
    specs = [
        (ctx, "order.placed", "order", "order-1"),
        (ctx, "order.paid", "order", "order-1"),
        (other, "order.placed", "order", "order-2"),
        (other, "user.login", "user", "employee-7"),
    ]
    rows = []
    for context, action, subject_type, subject_id in specs:
        rows.append(
            await recorder.append(
                context,
                ActivityEventIn(action=action, subject_type=subject_type, subject_id=subject_id),
            )
        )
    return rows


async def _ids(db, limit=None, **filters) -> list[int]:
    rows = await QueryService(db).query(ActivityFilters(**filters), limit)
    return [r.id for r in rows]


async def test_newest_first(seeded, db_session):
    assert await _ids(db_session) == [r.id for r in reversed(seeded)]


async def test_filter_by_action(seeded, db_session):
    assert await _ids(db_session, action="order.placed") == [seeded[2].id, seeded[0].id]


async def test_filter_by_subject_type(seeded, db_session):
    assert await _ids(db_session, subject_type="user") == [seeded[3].id]


async def test_filter_by_raw_subject_id(seeded, db_session):
    assert await _ids(db_session, subject_id="order-1") == [seeded[1].id, seeded[0].id]


async def test_filter_by_normalized_subject_id(seeded, db_session):
    normalized = normalize_id("order-2")
    assert await _ids(db_session, subject_id=normalized) == [seeded[2].id]


async def test_filter_by_actor(seeded, db_session):
    assert await _ids(db_session, actor_id="employee-7") == [seeded[3].id, seeded[2].id]


async def test_filters_combine_with_and(seeded, db_session):
    ids = await _ids(db_session, action="order.placed", actor_id="admin-1")
    assert ids == [seeded[0].id]


async def test_time_range_is_inclusive(seeded, db_session):
    lo, hi = seeded[1].at, seeded[2].at
    expected = [r.id for r in reversed(seeded) if lo <= r.at <= hi]

    ids = await _ids(db_session, from_=lo, to=hi)

    assert ids == expected
    assert seeded[1].id in ids
    assert seeded[2].id in ids


async def test_naive_bounds_are_read_as_utc(seeded, db_session):
    lo = seeded[0].at.replace(tzinfo=None)
    assert len(await _ids(db_session, from_=lo)) == 4


async def test_inverted_range_is_rejected(db_session):
    service = QueryService(db_session)

    with pytest.raises(ValidationError) as exc:
        await service.query(ActivityFilters(from_=utcnow(), to=utcnow() - timedelta(hours=1)))
    assert exc.value.code == ErrorCode.ACTIVITY_INVALID_RANGE
    assert exc.value.http_status == 422


async def test_limit_truncates_newest_first(seeded, db_session):
    assert await _ids(db_session, limit=2) == [seeded[3].id, seeded[2].id]


async def test_limit_is_clamped():
    service = QueryService(db=None, default_limit=100, max_limit=500)  # type: ignore[arg-type]
    assert service.effective_limit(None) == 100
    assert service.effective_limit(1000) == 500
    assert service.effective_limit(0) == 1
    assert service.effective_limit(25) == 25
