"""Activity event schemas."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Severity(IntEnum):
    INFO = 10
    NOTICE = 20
    WARN = 30
    ERROR = 40


class ActivityEventIn(BaseModel):
    """
    Caller-supplied part of an activity event.

    Accepts both camelCase (HTTP body) and snake_case (Python callers).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action: str = Field(
        ...,
        min_length=1,
        max_length=100,
        pattern=r"^[a-z0-9_]+(?:\.[a-z0-9_]+)*$",
        description="Dot-separated verb, e.g. order.placed",
    )
    subject_type: str = Field(..., min_length=1, max_length=100)
    subject_id: str = Field(..., min_length=1, max_length=255)
    target_type: str | None = Field(default=None, max_length=100)
    target_id: str | None = Field(default=None, max_length=255)
    severity: int = Field(default=Severity.NOTICE, ge=0, le=100)
    meta: Any = None
    diff: dict[str, Any] | None = Field(
        default=None, description="Snapshot with optional 'before' and 'after' keys"
    )

    @field_validator("subject_id", "target_id", mode="before")
    @classmethod
    def _stringify_ids(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("diff")
    @classmethod
    def _diff_shape(cls, v: dict[str, Any] | None) -> dict[str, Any] | None:
        if v is not None and set(v) - {"before", "after"}:
            raise ValueError("diff may only contain 'before' and 'after'")
        return v


class ActivityEventOut(BaseModel):
    id: int
    at: datetime
    request_id: str | None
    actor_id: str | None
    actor_role: str | None
    action: str
    subject_type: str
    subject_id: str | None
    target_type: str | None
    target_id: str | None
    severity: int
    ip: str | None
    user_agent: str | None
    meta: Any
    diff: Any
    hash_prev: str | None
    hash_self: str

    model_config = {"from_attributes": True}

    @field_validator("at")
    @classmethod
    def _at_is_utc(cls, v: datetime) -> datetime:
        # SQLite hands DateTime(timezone=True) back naive
        return v.replace(tzinfo=UTC) if v.tzinfo is None else v


class ActivityFilters(BaseModel):
    """Conjunctive filters shared by the query endpoint and the live stream."""

    subject_type: str | None = None
    subject_id: str | None = None
    action: str | None = None
    actor_id: str | None = None
    from_: datetime | None = None
    to: datetime | None = None


class ActivityListResponse(BaseModel):
    items: list[ActivityEventOut]
    count: int
    limit: int


class RecordResult(BaseModel):
    ok: bool = True
    hash_self: str = Field(..., serialization_alias="hashSelf")


class ChainVerificationResult(BaseModel):
    ok: bool
    checked: int
    broken_at: int | None = Field(
        default=None, description="ID of the first event where the chain diverges"
    )
