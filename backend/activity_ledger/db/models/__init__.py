"""Database model registry. Import all models here so Alembic can discover them."""

from activity_ledger.db.models.activity import ActivityEvent, AppendOnlyViolation

__all__ = [
    "ActivityEvent",
    "AppendOnlyViolation",
]
