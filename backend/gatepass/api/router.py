"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from gatepass.api.routes import checkin, events, registrations, vehicles, webhooks

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(webhooks.router)
api_router.include_router(registrations.router)
api_router.include_router(checkin.router)
api_router.include_router(events.router)
api_router.include_router(vehicles.router)
