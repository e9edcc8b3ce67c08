"""
Security utilities: JWT creation and verification, principal extraction.

Tokens are self-contained; no session state is held in process memory.
Secrets are never logged.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from jose import ExpiredSignatureError, JWTError, jwt

from activity_ledger.config.settings import Settings, get_settings
from activity_ledger.core.errors import AuthError, ErrorCode


@dataclass(frozen=True, slots=True)
class Principal:
    """The authenticated caller as asserted by a validated access token."""

    subject: str
    role: str


def _now_utc() -> datetime:
    return datetime.now(UTC)


def create_access_token(
    subject: str,
    role: str,
    extra_claims: dict[str, object] | None = None,
    settings: Settings | None = None,
) -> str:
    """
    Create a signed JWT access token.

    Args:
        subject: The actor ID (``sub`` claim).
        role: The actor role name.
        extra_claims: Optional additional claims merged into the payload.
        settings: Settings override; defaults to the cached singleton.

    Returns:
        Signed compact JWT string.
    """
    cfg = settings or get_settings()
    expire = _now_utc() + timedelta(minutes=cfg.jwt_access_token_expire_minutes)
    payload: dict[str, object] = {
        "sub": subject,
        "role": role,
        "iat": _now_utc(),
        "exp": expire,
        "type": "access",
        "jti": secrets.token_hex(16),
    }
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(
        payload,
        cfg.jwt_secret_key.get_secret_value(),
        algorithm=cfg.jwt_algorithm,
    )


def decode_token(token: str, settings: Settings | None = None) -> dict[str, object]:
    """
    Decode and validate a JWT.

    Raises:
        JWTError: If the token is invalid, expired, or tampered with.
    """
    cfg = settings or get_settings()
    return jwt.decode(  # type: ignore[return-value]
        token,
        cfg.jwt_secret_key.get_secret_value(),
        algorithms=[cfg.jwt_algorithm],
    )


def authenticate_token(token: str | None, settings: Settings | None = None) -> Principal:
    """
    Turn a raw credential into a Principal or raise AuthError.

    This is the single validation path for every transport: the
    Authorization header and the ``?token=`` query parameter of the
    live stream both end up here.
    """
    if not token:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Credential missing")

    try:
        payload = decode_token(token, settings)
    except ExpiredSignatureError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_EXPIRED, "Token expired") from exc
    except JWTError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token invalid or expired") from exc

    if payload.get("type") != "access":
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token is not an access token")

    subject = payload.get("sub")
    role = payload.get("role")
    if not isinstance(subject, str) or not subject:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token missing subject")
    if not isinstance(role, str) or not role:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token missing role")

    return Principal(subject=subject, role=role)


__all__ = [
    "Principal",
    "authenticate_token",
    "create_access_token",
    "decode_token",
]
