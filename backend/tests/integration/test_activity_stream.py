"""
Integration tests for GET /api/v1/activity/stream frame output.

The route handler is driven directly with a Request whose client never
disconnects, and frames are read from the response body iterator. The
HTTP client in ``test_activity`` buffers whole bodies, which an endless
event stream never finishes.
"""
import asyncio
import json

import pytest
from starlette.requests import Request

from activity_ledger.api.v1.activity import stream_activity
from activity_ledger.schemas.activity import ActivityEventIn

pytestmark = pytest.mark.asyncio


async def _never_disconnect() -> dict:
    await asyncio.Event().wait()
    return {"type": "http.disconnect"}


def _request() -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/v1/activity/stream",
        "headers": [],
        "query_string": b"",
    }
    return Request(scope, receive=_never_disconnect)


def _event(action: str) -> ActivityEventIn:
    return ActivityEventIn(action=action, subject_type="order", subject_id="order-1")


async def _open(session_factory, settings, token: str, **filters):
    params = {"subject_type": None, "subject_id": None, "action": None, "actor_id": None}
    params.update(filters)
    return await stream_activity(
        request=_request(),
        factory=session_factory,
        settings=settings,
        token=token,
        **params,
    )


async def test_frames_carry_post_connect_events_only(
    recorder, ctx, session_factory, settings, admin_token
):
    history = [await recorder.append(ctx, _event("order.placed")) for _ in range(2)]

    resp = await _open(session_factory, settings, admin_token)
    written = [
        await recorder.append(ctx, _event(action))
        for action in ("order.paid", "order.packed", "order.shipped")
    ]

    frames = []
    try:
        for _ in written:
            frames.append(await asyncio.wait_for(anext(resp.body_iterator), timeout=5))
    finally:
        await resp.body_iterator.aclose()

    assert [f["id"] for f in frames] == [str(r.id) for r in written]
    payloads = [json.loads(f["data"]) for f in frames]
    assert [p["action"] for p in payloads] == ["order.paid", "order.packed", "order.shipped"]
    assert [p["hash_self"] for p in payloads] == [r.hash_self for r in written]
    assert payloads[0]["hash_prev"] == history[-1].hash_self
    assert not {str(r.id) for r in history} & {f["id"] for f in frames}


async def test_stream_filters_and_transport_settings(
    recorder, ctx, session_factory, settings, admin_token
):
    resp = await _open(session_factory, settings, admin_token, action="order.paid")
    assert resp.ping_interval == settings.activity_stream_heartbeat_seconds
    assert resp.headers["x-accel-buffering"] == "no"
    assert resp.headers["cache-control"] == "no-cache, no-transform"

    await recorder.append(ctx, _event("order.placed"))
    paid = await recorder.append(ctx, _event("order.paid"))

    try:
        frame = await asyncio.wait_for(anext(resp.body_iterator), timeout=5)
    finally:
        await resp.body_iterator.aclose()

    assert frame["id"] == str(paid.id)
    assert json.loads(frame["data"])["at"].endswith("Z")
