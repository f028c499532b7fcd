"""Health check endpoint."""
from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Basic health check."""
    settings = request.app.state.settings
    return {"status": "ok", "service": "utility-ingestion-api", "storage_backend": settings.storage_backend}
