"""Tamper-evident activity log: recording, querying, live tail and verification."""

from activity_ledger.services.activity.canonical import canonicalize, hash_payload
from activity_ledger.services.activity.context import RequestContext
from activity_ledger.services.activity.identity import normalize_id
from activity_ledger.services.activity.query import QueryService
from activity_ledger.services.activity.recorder import EventRecorder
from activity_ledger.services.activity.redaction import REDACTED, redact
from activity_ledger.services.activity.stream import ChangeStream
from activity_ledger.services.activity.verifier import ChainVerifier, VerificationResult

__all__ = [
    "REDACTED",
    "ChainVerifier",
    "ChangeStream",
    "EventRecorder",
    "QueryService",
    "RequestContext",
    "VerificationResult",
    "canonicalize",
    "hash_payload",
    "normalize_id",
    "redact",
]
