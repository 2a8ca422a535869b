"""API routes for the compliance tracker."""

from fastapi import APIRouter

from .cron import router as cron_router
from .enrichment import router as enrichment_router
from .unsubscribe import router as unsubscribe_router
from .verification import router as verification_router

# Main API router
api_router = APIRouter()

# Scheduler-triggered pipelines
api_router.include_router(cron_router)

# Public links opened from emails
api_router.include_router(unsubscribe_router)

# Dashboard features
api_router.include_router(enrichment_router)
api_router.include_router(verification_router)

__all__ = ["api_router"]
