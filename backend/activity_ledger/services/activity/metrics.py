"""Prometheus instruments for the activity log."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

EVENTS_RECORDED = Counter(
    "activity_events_recorded_total",
    "Activity events durably appended to the chain",
    ["action"],
)
RECORD_FAILURES = Counter(
    "activity_record_failures_total",
    "Best-effort recordings that failed and were dropped",
)
CHAIN_VERIFICATIONS = Counter(
    "activity_chain_verifications_total",
    "Chain verification runs by outcome",
    ["outcome"],
)
STREAM_SUBSCRIBERS = Gauge(
    "activity_stream_subscribers",
    "Live tail connections currently open",
)
