"""Activity log API endpoints. Every route is admin-only."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from activity_ledger.api.deps import (
    ADMIN_ROLE,
    AdminPrincipal,
    DbSession,
    Recorder,
    SessionFactory,
    SettingsDep,
    check_roles,
    get_request_context,
)
from activity_ledger.core.errors import RecordingError
from activity_ledger.core.security import authenticate_token
from activity_ledger.schemas.activity import (
    ActivityEventIn,
    ActivityEventOut,
    ActivityFilters,
    ActivityListResponse,
    ChainVerificationResult,
    RecordResult,
)
from activity_ledger.services.activity.context import RequestContext
from activity_ledger.services.activity.query import QueryService
from activity_ledger.services.activity.stream import ChangeStream
from activity_ledger.services.activity.verifier import ChainVerifier

_log = structlog.get_logger(__name__)

router = APIRouter(prefix="/activity", tags=["activity"])


@router.get(
    "",
    response_model=ActivityListResponse,
    summary="List activity events, newest first",
)
async def list_activity(
    _admin: AdminPrincipal,
    db: DbSession,
    settings: SettingsDep,
    subject_type: str | None = Query(default=None),
    subject_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    from_: datetime | None = Query(default=None, alias="from"),
    to: datetime | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, description="Capped at the configured maximum"),
) -> ActivityListResponse:
    """Return events matching every given filter, ordered by ``(at, id)`` descending."""
    service = QueryService(
        db,
        default_limit=settings.activity_query_default_limit,
        max_limit=settings.activity_query_max_limit,
    )
    filters = ActivityFilters(
        subject_type=subject_type,
        subject_id=subject_id,
        action=action,
        actor_id=actor_id,
        from_=from_,
        to=to,
    )
    rows = await service.query(filters, limit)
    return ActivityListResponse(
        items=[ActivityEventOut.model_validate(r) for r in rows],
        count=len(rows),
        limit=service.effective_limit(limit),
    )


@router.get(
    "/stream",
    summary="Live tail of new activity events (Server-Sent Events)",
)
async def stream_activity(
    request: Request,
    factory: SessionFactory,
    settings: SettingsDep,
    subject_type: str | None = Query(default=None),
    subject_id: str | None = Query(default=None),
    action: str | None = Query(default=None),
    actor_id: str | None = Query(default=None),
    token: str | None = Query(default=None, description="JWT access token"),
) -> EventSourceResponse:
    """
    Stream events appended after the connection opened.

    Browser EventSource cannot send an Authorization header, so the access
    token travels in ``?token=``. It is validated exactly like a header
    token, role check included, before the stream opens.

    Protocol:
      - each event is one ``data:`` frame holding a JSON ActivityEvent,
        with the event id as the SSE ``id``
      - a ``: ping`` comment is sent every heartbeat interval
      - the poll loop stops when the client disconnects
    """
    principal = check_roles(authenticate_token(token, settings), ADMIN_ROLE)

    stream = ChangeStream(
        factory,
        ActivityFilters(
            subject_type=subject_type,
            subject_id=subject_id,
            action=action,
            actor_id=actor_id,
        ),
        poll_seconds=settings.activity_stream_poll_seconds,
        batch_size=settings.activity_stream_batch_size,
    )
    await stream.open()
    _log.info("activity_stream_authorized", actor_id=principal.subject)

    async def frames() -> AsyncIterator[dict[str, str]]:
        async for row in stream.events(request.is_disconnected):
            yield {
                "id": str(row.id),
                "data": ActivityEventOut.model_validate(row).model_dump_json(),
            }

    return EventSourceResponse(
        frames(),
        ping=settings.activity_stream_heartbeat_seconds,
        headers={"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"},
    )


@router.post(
    "",
    response_model=RecordResult,
    summary="Record one activity event (diagnostic / manual entry)",
)
async def record_activity(
    body: ActivityEventIn,
    _admin: AdminPrincipal,
    context: Annotated[RequestContext, Depends(get_request_context)],
    recorder: Recorder,
) -> RecordResult:
    """
    Append an event and return its ``hashSelf``.

    Unlike the best-effort path used by business code, a failure here is
    reported to the operator.
    """
    try:
        row = await recorder.append(context, body)
    except Exception as exc:
        _log.error("activity_record_failed", action=body.action, exc_info=True)
        raise RecordingError() from exc
    return RecordResult(hash_self=row.hash_self)


@router.get(
    "/verify",
    response_model=ChainVerificationResult,
    summary="Verify activity hash chain integrity",
)
async def verify_chain(
    _admin: AdminPrincipal,
    db: DbSession,
    settings: SettingsDep,
    limit: int | None = Query(default=None, ge=1, description="Maximum events to check"),
) -> ChainVerificationResult:
    """
    Recompute every hash from the genesis event forward.

    ``checked`` is the number of events checked; when ``ok`` is false it is
    the position of the first divergent event.
    """
    effective = min(
        limit or settings.activity_verify_default_limit, settings.activity_verify_max_limit
    )
    result = await ChainVerifier(db).verify(effective)
    return ChainVerificationResult(ok=result.ok, checked=result.checked, broken_at=result.broken_at)
