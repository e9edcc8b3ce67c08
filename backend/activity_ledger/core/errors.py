"""
Structured error taxonomy for the activity ledger.

Every application error has:
  - A stable error code (prefixed by domain)
  - An HTTP status code
  - A human-readable message
  - An optional detail dict for machine consumers

No internal state (stack traces, DB internals) is ever surfaced to clients.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable, versioned error codes. Never reuse a retired code."""

    # Auth
    AUTH_TOKEN_EXPIRED = "AUTH_002"
    AUTH_TOKEN_INVALID = "AUTH_003"
    AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_004"

    # Activity log
    ACTIVITY_RECORD_FAILED = "ACT_001"
    ACTIVITY_INVALID_RANGE = "ACT_002"

    # Generic
    VALIDATION_ERROR = "GEN_001"
    INTERNAL_ERROR = "GEN_002"


class AppError(Exception):
    """Base class for all application errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        http_status: int = 500,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "detail": self.detail,
            }
        }


# ── Typed convenience subclasses ──────────────────────────────────────── #


class AuthError(AppError):
    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message, http_status=401)


class ForbiddenError(AppError):
    def __init__(self, message: str = "Insufficient permissions") -> None:
        super().__init__(
            code=ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS,
            message=message,
            http_status=403,
        )


class ValidationError(AppError):
    def __init__(
        self,
        message: str,
        detail: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ) -> None:
        super().__init__(code=code, message=message, http_status=422, detail=detail)


class RecordingError(AppError):
    """An activity event could not be made durable."""

    def __init__(self, message: str = "Activity event could not be recorded") -> None:
        super().__init__(
            code=ErrorCode.ACTIVITY_RECORD_FAILED,
            message=message,
            http_status=500,
        )
