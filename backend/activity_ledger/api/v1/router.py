"""API v1 router aggregator."""

from fastapi import APIRouter

from activity_ledger.api.v1 import activity

router = APIRouter(prefix="/api/v1")
router.include_router(activity.router)
