"""Centralized v1 API router."""

from fastapi import APIRouter

from eventbus.modules.events.router import router as events_router

v1_router = APIRouter(prefix="/api/v1")
v1_router.include_router(events_router)
