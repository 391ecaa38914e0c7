"""Health check endpoints."""

from fastapi import APIRouter

from ronin_onvif import __version__

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Service health."""
    return {"status": "ok", "version": __version__}
