"""API endpoints module."""

from fastapi import APIRouter

from calsync.api.sync import router as sync_router
from calsync.api.events import router as events_router
from calsync.api.connections import router as connections_router
from calsync.api.availability import router as availability_router
from calsync.api.bookings import router as bookings_router

api_router = APIRouter(prefix="/api")

api_router.include_router(sync_router)
api_router.include_router(events_router)
api_router.include_router(connections_router)
api_router.include_router(availability_router)
api_router.include_router(bookings_router)

__all__ = ["api_router"]
