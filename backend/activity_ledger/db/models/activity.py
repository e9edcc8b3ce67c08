"""
Append-only activity event model.

Events form a hash chain: each row stores the SHA-256 of its own
canonical payload (``hash_self``) and the ``hash_self`` of the row
before it in ``(at, id)`` order (``hash_prev``). Altering or removing a
historical row breaks the chain at that point.

Rows are written once by the EventRecorder. The ORM refuses to flush an
update or delete for this model; out-of-band changes are what the chain
verifier is for.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, SmallInteger, String, event, func
from sqlalchemy.orm import Mapped, mapped_column

from activity_ledger.db.base import Base, utcnow

# SQLite only autoincrements an INTEGER PRIMARY KEY
_ID_TYPE = BigInteger().with_variant(Integer, "sqlite")


class ActivityEvent(Base):
    """Single immutable activity event."""

    __tablename__ = "activity_events"
    __table_args__ = (
        Index("ix_activity_events_at_id", "at", "id"),
        Index("ix_activity_events_subject", "subject_type", "subject_id"),
    )

    id: Mapped[int] = mapped_column(_ID_TYPE, primary_key=True, autoincrement=True)
    # Set by the recorder inside the writer lock as max(now, tail.at) so that
    # (at, id) is chain order; server_default only covers out-of-band inserts
    at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    actor_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    actor_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    subject_type: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    target_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    target_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    severity: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=20)
    ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    meta: Mapped[Any] = mapped_column(JSON, nullable=False, default=dict)
    diff: Mapped[Any] = mapped_column(JSON, nullable=False, default=dict)

    # Hash of the preceding event; null for the genesis event
    hash_prev: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Hash of this event's canonical payload (excludes id, at and both hashes)
    hash_self: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<ActivityEvent #{self.id} {self.action} {self.subject_type}>"


class AppendOnlyViolation(RuntimeError):
    """Raised when code tries to update or delete a persisted activity event."""


@event.listens_for(ActivityEvent, "before_update")
def _refuse_update(mapper: Any, connection: Any, target: ActivityEvent) -> None:
    raise AppendOnlyViolation(f"activity event {target.id} is immutable")


@event.listens_for(ActivityEvent, "before_delete")
def _refuse_delete(mapper: Any, connection: Any, target: ActivityEvent) -> None:
    raise AppendOnlyViolation(f"activity event {target.id} cannot be deleted")
