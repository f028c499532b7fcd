"""Usage summary route."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from ...ingestion.service import IngestionService
from .ingest import get_service

router = APIRouter()


@router.get("/summary")
async def usage_summary(unit_id: str = Query(""), service: IngestionService = Depends(get_service)):
    """Usage windows, trend and cost estimates for every utility the unit reports."""
    unit, stats = await service.summary(unit_id)
    return {
        "unit": unit.model_dump(mode="json"),
        "stats_by_utility": {name: s.model_dump(mode="json") for name, s in stats.items()},
    }
