"""Ingest routes: manual JSON entry, bill PDF upload, meter photo upload."""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from ...ingestion.service import IngestionService
from ...models.internal import IngestResult
from ...models.schema import ManualEntryRequest

router = APIRouter()
logger = structlog.get_logger(__name__)


def get_service(request: Request) -> IngestionService:
    return request.app.state.service


def serialize_result(result: IngestResult) -> dict:
    payload = result.model_dump(mode="json")
    payload["inserted_count"] = result.inserted_count
    return payload


@router.post("")
async def ingest_manual(body: ManualEntryRequest, service: IngestionService = Depends(get_service)):
    """Record one manually entered meter read or billed usage total."""
    return serialize_result(await service.ingest_manual(body))


@router.post("/bill")
async def ingest_bill(
    file: UploadFile = File(...),
    unit_id: str = Form(""),
    utility_type: str | None = Form(None),
    timezone: str | None = Form(None),
    service: IngestionService = Depends(get_service),
):
    """Extract readings and charges from a bill PDF and record them for *unit_id*."""
    data = await file.read()
    logger.info("bill_upload_received", filename=file.filename, size=len(data), unit_id=unit_id)
    result = await service.ingest_bill(
        unit_id,
        data,
        file.filename or "bill.pdf",
        utility_type=(utility_type or "").strip() or None,
        timezone=timezone,
    )
    return serialize_result(result)


@router.post("/meter-image")
async def ingest_meter_image(
    file: UploadFile = File(...),
    unit_id: str | None = Form(None),
    manual_unit_override: bool = Form(False),
    timezone: str | None = Form(None),
    service: IngestionService = Depends(get_service),
):
    """Read a meter photo, resolve its meter and record the validated reading."""
    data = await file.read()
    logger.info("meter_image_received", filename=file.filename, size=len(data),
                manual_unit_override=manual_unit_override)
    result = await service.ingest_meter_image(
        data,
        file.filename or "meter.jpg",
        unit_id=(unit_id or "").strip() or None,
        manual_unit_override=manual_unit_override,
        timezone=timezone,
    )
    return serialize_result(result)
