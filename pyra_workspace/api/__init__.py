"""API routers for Pyra Workspace."""

from fastapi import APIRouter
from pyra_workspace.api import activity, invoices, quotes, settings, webhooks

api_router = APIRouter(prefix="/api/v1")

# All routes require an admin bearer token
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(quotes.router, prefix="/quotes", tags=["quotes"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(settings.router, prefix="/settings", tags=["settings"])
api_router.include_router(activity.router, prefix="/activity", tags=["activity"])

__all__ = ["api_router"]
