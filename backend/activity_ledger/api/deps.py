"""
FastAPI dependency providers.

All authentication and authorization logic lives here, not in routes.
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from activity_ledger.config.settings import Settings, get_settings
from activity_ledger.core.errors import ForbiddenError
from activity_ledger.core.security import Principal, authenticate_token
from activity_ledger.db.session import get_db, get_sessionmaker
from activity_ledger.services.activity.context import RequestContext
from activity_ledger.services.activity.recorder import EventRecorder

_bearer = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"

SettingsDep = Annotated[Settings, Depends(get_settings)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_sessionmaker)]


def check_roles(principal: Principal, *roles: str) -> Principal:
    """Raise ForbiddenError unless the principal holds one of ``roles``."""
    if principal.role not in roles:
        raise ForbiddenError(
            f"This action requires one of: {list(roles)}. Your role is: {principal.role}"
        )
    return principal


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
    settings: SettingsDep,
) -> Principal:
    """
    Validate the JWT Bearer token and return the authenticated Principal.

    Raises AuthError on any JWT problem.
    """
    token = credentials.credentials if credentials is not None else None
    principal = authenticate_token(token, settings)
    structlog.contextvars.bind_contextvars(actor_id=principal.subject, actor_role=principal.role)
    return principal


CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]


def require_roles(*roles: str):
    """Return a dependency callable that enforces role membership."""

    async def _check(principal: CurrentPrincipal) -> Principal:
        return check_roles(principal, *roles)

    return _check


AdminPrincipal = Annotated[Principal, Depends(require_roles(ADMIN_ROLE))]


def build_request_context(request: Request, principal: Principal | None) -> RequestContext:
    return RequestContext(
        request_id=getattr(request.state, "correlation_id", None),
        actor_id=principal.subject if principal else None,
        actor_role=principal.role if principal else None,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


async def get_request_context(request: Request, principal: CurrentPrincipal) -> RequestContext:
    """Ambient facts about the current request, for the activity recorder."""
    return build_request_context(request, principal)


def get_event_recorder(factory: SessionFactory) -> EventRecorder:
    return EventRecorder(factory)


Recorder = Annotated[EventRecorder, Depends(get_event_recorder)]
