"""Meter photo extraction: identifier, candidates and register value off a phone photo."""
from __future__ import annotations

import structlog
from pydantic import ValidationError

from ..errors import ExtractionError, InputValidationError
from ..llm.base import LLMClient
from ..llm.response_parser import extract_json_from_response
from ..models.schema import ExtractedMeterImage
from ..prompts.registry import PromptRegistry
from ..utils.dates import ensure_aware
from ..utils.image import get_image_dimensions, image_to_base64, normalize_meter_photo
from ..utils.pdf import detect_file_type

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = "You read utility meter displays and nameplates precisely."


class MeterPhotoExtractor:
    def __init__(
        self,
        llm_client: LLMClient,
        prompt_registry: PromptRegistry | None = None,
        *,
        temperature: float = 0.0,
    ):
        self._llm = llm_client
        self._prompts = prompt_registry or PromptRegistry()
        self._temperature = temperature

    async def extract(self, image_bytes: bytes, filename: str, timezone: str) -> ExtractedMeterImage:
        source_format = detect_file_type(image_bytes)
        try:
            photo = normalize_meter_photo(image_bytes)
            width, height = get_image_dimensions(photo)
        except ValueError as exc:
            raise InputValidationError("Could not read the meter photo.", filename=filename) from exc

        prompt = self._prompts.render("meter_photo", {"timezone": timezone})
        try:
            response = await self._llm.complete_vision(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=prompt,
                images=[image_to_base64(photo)],
                media_type="image/jpeg",
                temperature=self._temperature,
                max_tokens=1024,
                json_mode=True,
            )
        except Exception as exc:
            logger.error("meter_photo_call_failed", filename=filename, error=str(exc))
            raise ExtractionError("Meter photo extraction failed.", filename=filename) from exc

        try:
            payload = extract_json_from_response(response.content)
            reading = ExtractedMeterImage.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            raise ExtractionError(
                "Meter photo extraction is missing the identifier or reading.", filename=filename,
            ) from exc

        if reading.captured_at is not None:
            reading = reading.model_copy(update={"captured_at": ensure_aware(reading.captured_at, timezone)})
        logger.info("meter_photo_extracted", filename=filename, model=response.model,
                    meter_identifier=reading.meter_identifier,
                    candidates=len(reading.meter_identifier_candidates),
                    confidence=reading.confidence, source_format=source_format,
                    width=width, height=height)
        return reading
