"""Request-scoped failure taxonomy.

Every failure carries a machine-checkable ``category`` plus a human-readable
message.  None of these are fatal to the process, only to the request that
raised them.
"""
from __future__ import annotations

from typing import Any


class IngestionError(Exception):
    """Base class for all user-visible ingestion failures."""

    category = "ingestion"
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.category, "detail": self.message, **self.details}


class InputValidationError(IngestionError):
    """Malformed or disallowed input, rejected before any external call."""

    category = "validation"
    status_code = 400


class NotFoundError(IngestionError):
    category = "not_found"
    status_code = 404


class ExtractionError(IngestionError):
    """The AI extraction call failed or returned an unusable payload."""

    category = "extraction"
    status_code = 502


class ReviewRequiredError(IngestionError):
    """A reading failed plausibility checks and needs a human decision."""

    category = "review_required"
    status_code = 422


class MappingError(IngestionError):
    """Unknown meter identifier or a unit selection that contradicts the mapping."""

    category = "mapping"
    status_code = 422


class PersistenceError(IngestionError):
    category = "persistence"
    status_code = 503


class ReadingConflictError(PersistenceError):
    """The latest reading moved between validation and insert."""

    category = "conflict"
    status_code = 409
