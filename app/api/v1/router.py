"""API v1 router aggregating all route modules."""

from fastapi import APIRouter

from app.api.v1.routes import (
    auth,
    notifications,
    pins,
    public,
    result_sheets,
    results,
)

api_router = APIRouter()

api_router.include_router(auth.router)
api_router.include_router(result_sheets.router)
api_router.include_router(results.router)
api_router.include_router(pins.router)
api_router.include_router(public.router)
api_router.include_router(notifications.router)
