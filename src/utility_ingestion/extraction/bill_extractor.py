"""Bill PDF extraction: rendered pages + text layer -> validated entries and charges.

Everything the model returns is untrusted.  Items that fail validation are
collected in ``BillExtraction.rejected`` with the reason, never persisted.
"""
from __future__ import annotations

import structlog
from pydantic import ValidationError

from ..errors import ExtractionError, InputValidationError
from ..llm.base import LLMClient
from ..llm.response_parser import extract_json_from_response
from ..models.schema import (
    BillExtraction,
    ExtractedCharge,
    ExtractedEntry,
    UtilityType,
    default_reading_unit,
)
from ..prompts.registry import PromptRegistry
from ..utils.dates import ensure_aware
from ..utils.image import image_to_base64
from ..utils.pdf import MAX_BILL_PAGES, detect_file_type, extract_text_layer, get_page_count, render_pdf_to_images

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = "You are a meticulous utility bill analyst. You only report values printed on the bill."
MAX_TEXT_LAYER_CHARS = 12000


def _first_error(exc: ValidationError) -> str:
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    return f"{location}: {error.get('msg')}" if location else str(error.get("msg"))


class BillExtractor:
    """Extract meter reads, billed usage and total charges from a bill PDF."""

    def __init__(
        self,
        llm_client: LLMClient,
        prompt_registry: PromptRegistry | None = None,
        *,
        dpi: int = 200,
        temperature: float = 0.0,
    ):
        self._llm = llm_client
        self._prompts = prompt_registry or PromptRegistry()
        self._dpi = dpi
        self._temperature = temperature

    async def extract(
        self,
        pdf_bytes: bytes,
        filename: str,
        timezone: str,
        utility_override: UtilityType | None = None,
    ) -> BillExtraction:
        if detect_file_type(pdf_bytes) != "pdf":
            raise InputValidationError("Uploaded bill is not a PDF.", filename=filename)

        try:
            page_count = get_page_count(pdf_bytes)
            pages = render_pdf_to_images(pdf_bytes, dpi=self._dpi)
            text_layer = extract_text_layer(pdf_bytes)
        except Exception as exc:
            raise InputValidationError("Could not read the PDF.", filename=filename) from exc
        if not pages:
            raise InputValidationError("The PDF has no pages.", filename=filename)
        if page_count > MAX_BILL_PAGES:
            logger.warning("bill_pages_truncated", filename=filename, page_count=page_count, max_pages=MAX_BILL_PAGES)

        utility_hint = (
            f"- Every entry and charge on this bill is for utility_type \"{utility_override}\"."
            if utility_override else ""
        )
        prompt = self._prompts.render("bill_extraction", {"timezone": timezone, "utility_hint": utility_hint})
        if text_layer:
            prompt += "\n\nEmbedded text layer of the bill:\n" + text_layer[:MAX_TEXT_LAYER_CHARS]

        logger.info("bill_extraction_started", filename=filename, pages=len(pages),
                    has_text_layer=bool(text_layer), prompt_version=self._prompts.get_version("bill_extraction"))
        try:
            response = await self._llm.complete_vision(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=prompt,
                images=[image_to_base64(p) for p in pages],
                temperature=self._temperature,
                max_tokens=8192,
                json_mode=True,
            )
        except Exception as exc:
            logger.error("bill_extraction_call_failed", filename=filename, error=str(exc))
            raise ExtractionError("Bill extraction failed.", filename=filename) from exc

        try:
            payload = extract_json_from_response(response.content)
        except ValueError as exc:
            raise ExtractionError("Could not parse the bill extraction response.", filename=filename) from exc

        extraction = parse_bill_payload(payload, timezone, utility_override)
        logger.info("bill_extraction_completed", filename=filename, model=response.model,
                    entries=len(extraction.entries), charges=len(extraction.charges),
                    rejected=len(extraction.rejected))
        return extraction


def parse_bill_payload(
    payload: dict,
    timezone: str,
    utility_override: UtilityType | None = None,
) -> BillExtraction:
    """Validate a raw extraction payload item by item."""
    raw_entries = payload.get("entries")
    if not isinstance(raw_entries, list):
        raise ExtractionError("Invalid extraction payload: 'entries' must be a list.")
    raw_charges = payload.get("charges") or []
    if not isinstance(raw_charges, list):
        raw_charges = []

    extraction = BillExtraction()
    for raw in raw_entries:
        if not isinstance(raw, dict):
            extraction.rejected.append({"item": raw, "reason": "entry is not an object"})
            continue
        item = dict(raw)
        if utility_override:
            item["utility_type"] = str(utility_override)
        if not item.get("reading_unit") and item.get("utility_type") in set(UtilityType):
            item["reading_unit"] = default_reading_unit(item["utility_type"])
        try:
            entry = ExtractedEntry.model_validate(item)
        except ValidationError as exc:
            extraction.rejected.append({"item": raw, "reason": _first_error(exc)})
            continue
        extraction.entries.append(
            entry.model_copy(update={"captured_at": ensure_aware(entry.captured_at, timezone)})
        )

    for raw in raw_charges:
        if not isinstance(raw, dict):
            continue
        item = dict(raw)
        if utility_override:
            item["utility_type"] = str(utility_override)
        try:
            extraction.charges.append(ExtractedCharge.model_validate(item))
        except ValidationError as exc:
            extraction.rejected.append({"item": raw, "reason": _first_error(exc)})

    return extraction
