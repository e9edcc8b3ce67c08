"""
Unit tests for the ChainVerifier.

Tampering is done with raw SQL, the way an attacker with database access
would do it, bypassing the ORM's append-only guard.
"""
import pytest
import pytest_asyncio
from sqlalchemy import text

from activity_ledger.schemas.activity import ActivityEventIn
from activity_ledger.services.activity.verifier import ChainVerifier

pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def chain(recorder, ctx):
    """Five recorded events, oldest first."""
    rows = []
    for i in range(5):
        rows.append(
            await recorder.append(
                ctx,
                ActivityEventIn(
                    action="invoice.updated",
                    subject_type="invoice",
                    subject_id=f"inv-{i}",
                    meta={"step": i},
                ),
            )
        )
    return rows


async def _execute(session_factory, sql: str, **params) -> None:
    async with session_factory() as db:
        await db.execute(text(sql), params)
        await db.commit()


async def test_empty_log_is_intact(db_session):
    result = await ChainVerifier(db_session).verify(100)
    assert result.ok is True
    assert result.checked == 0
    assert result.broken_at is None


async def test_untouched_chain_is_intact(chain, db_session):
    result = await ChainVerifier(db_session).verify(100)
    assert result.ok is True
    assert result.checked == 5


async def test_limit_bounds_the_run(chain, db_session):
    result = await ChainVerifier(db_session).verify(3)
    assert result.ok is True
    assert result.checked == 3


async def test_small_batches_cover_the_whole_chain(chain, db_session):
    result = await ChainVerifier(db_session, batch_size=2).verify(100)
    assert result.ok is True
    assert result.checked == 5


async def test_edited_payload_is_detected(chain, session_factory, db_session):
    target = chain[2]
    await _execute(
        session_factory,
        "UPDATE activity_events SET meta = :meta WHERE id = :id",
        meta='{"step": 99}',
        id=target.id,
    )

    result = await ChainVerifier(db_session).verify(100)
    assert result.ok is False
    assert result.checked == 3
    assert result.broken_at == target.id


async def test_edited_severity_is_detected(chain, session_factory, db_session):
    await _execute(
        session_factory,
        "UPDATE activity_events SET severity = 40 WHERE id = :id",
        id=chain[0].id,
    )

    result = await ChainVerifier(db_session).verify(100)
    assert result.ok is False
    assert result.checked == 1
    assert result.broken_at == chain[0].id


async def test_rewritten_self_hash_is_detected(chain, session_factory, db_session):
    await _execute(
        session_factory,
        "UPDATE activity_events SET hash_self = :h WHERE id = :id",
        h="0" * 64,
        id=chain[1].id,
    )

    result = await ChainVerifier(db_session).verify(100)
    assert result.ok is False
    assert result.checked == 2
    assert result.broken_at == chain[1].id


async def test_rewritten_link_is_detected(chain, session_factory, db_session):
    await _execute(
        session_factory,
        "UPDATE activity_events SET hash_prev = :h WHERE id = :id",
        h="f" * 64,
        id=chain[3].id,
    )

    result = await ChainVerifier(db_session).verify(100)
    assert result.ok is False
    assert result.checked == 4
    assert result.broken_at == chain[3].id


async def test_deleted_row_is_detected(chain, session_factory, db_session):
    await _execute(session_factory, "DELETE FROM activity_events WHERE id = :id", id=chain[2].id)

    result = await ChainVerifier(db_session).verify(100)
    assert result.ok is False
    # The successor now sits where the deleted row was
    assert result.checked == 3
    assert result.broken_at == chain[3].id


async def test_tampering_after_limit_is_not_reported(chain, session_factory, db_session):
    await _execute(
        session_factory,
        "UPDATE activity_events SET meta = '{}' WHERE id = :id",
        id=chain[4].id,
    )

    assert (await ChainVerifier(db_session).verify(4)).ok is True
    assert (await ChainVerifier(db_session).verify(5)).ok is False


async def test_verifier_rereads_rows_after_out_of_band_change(chain, session_factory, db_session):
    verifier = ChainVerifier(db_session)
    assert (await verifier.verify(100)).ok is True

    await _execute(
        session_factory,
        "UPDATE activity_events SET action = 'invoice.deleted' WHERE id = :id",
        id=chain[1].id,
    )

    result = await verifier.verify(100)
    assert result.ok is False
    assert result.broken_at == chain[1].id


async def test_identical_payloads_still_verify(recorder, ctx, db_session):
    event = ActivityEventIn(action="heartbeat.tick", subject_type="system", subject_id="node-1")
    first = await recorder.append(ctx, event)
    second = await recorder.append(ctx, event)

    assert first.hash_self == second.hash_self
    assert second.hash_prev == first.hash_self
    result = await ChainVerifier(db_session).verify(10)
    assert result.ok is True
    assert result.checked == 2
