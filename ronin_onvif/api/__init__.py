"""API routes for ronin-onvif."""

from fastapi import APIRouter

from ronin_onvif.api import health, onvif

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(onvif.router)
