"""Ambient request facts attached to every recorded event."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RequestContext:
    request_id: str | None = None
    actor_id: str | None = None
    actor_role: str | None = None
    ip: str | None = None
    user_agent: str | None = None

    @classmethod
    def system(cls, request_id: str | None = None) -> RequestContext:
        """Context for events raised outside any HTTP request (jobs, startup)."""
        return cls(request_id=request_id, actor_role="system")
