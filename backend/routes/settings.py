"""Health check, settings and connection check endpoints."""

from fastapi import APIRouter, HTTPException
from pydantic import ValidationError

from lorechat import config
from lorechat.providers import provider_names
from lorechat.transport import HttpTransport, TransportError

from .models import CheckConnectionBody

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/providers")
async def list_providers():
    """Names of the supported API providers."""
    return provider_names()


@router.post("/check-connection")
async def check_connection(body: CheckConnectionBody):
    """Send a minimal request to verify provider credentials."""
    try:
        await HttpTransport(timeout=15).check_connection(body.provider, body.api_key, body.model)
    except (TransportError, ValueError) as e:
        return {"ok": False, "detail": str(e)}
    return {"ok": True}


@router.get("/settings")
async def get_settings():
    """Get global generation settings."""
    return config.get_config()


@router.patch("/settings")
async def update_settings(body: dict):
    """Update global generation settings (partial merge)."""
    try:
        return config.update_config(body)
    except ValidationError as e:
        raise HTTPException(400, f"Invalid settings: {e}")
