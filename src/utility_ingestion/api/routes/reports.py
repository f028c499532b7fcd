"""Daily consumption report route."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ...ingestion.service import IngestionService
from .ingest import get_service

router = APIRouter()


@router.get("/reports")
async def daily_report(
    unit_id: str | None = Query(None),
    days: int = Query(30),
    service: IngestionService = Depends(get_service),
):
    """Apportioned daily series with weather for the last *days* days, optionally for one unit."""
    unit, units, days, rows = await service.report((unit_id or "").strip() or None, days)
    return {
        "unit": unit.model_dump(mode="json") if unit else None,
        "filters": {"unit_id": str(unit.id) if unit else None, "days": days},
        "units": [u.model_dump(mode="json") for u in units],
        "rows": [row.model_dump(mode="json") for row in rows],
    }
