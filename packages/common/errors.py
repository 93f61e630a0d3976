"""
Error taxonomy for the classification and mapping engine

Retryable errors (extraction, classification) park a document in `error`
with a retry counter. Conflicts are surfaced to the caller and never retried
automatically. Validation errors are raised before anything is written.
"""
from typing import Any, Optional


class EngineError(Exception):
    """Base class for every error raised by the engine"""

    retryable = False
    code = "engine_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.context}


class ExtractionError(EngineError):
    """OCR or storage failure while reading a document"""

    retryable = True
    code = "extraction_error"


class ClassificationError(EngineError):
    """Catalog unavailable or classifier failure"""

    retryable = True
    code = "classification_error"


class ConflictError(EngineError):
    """A write would contradict a value another actor already committed"""

    code = "conflict"


class InvalidStateError(EngineError):
    """Operation attempted against a record that is not in the required state"""

    code = "invalid_state"


class ItemAlreadyConfirmedError(InvalidStateError):
    """Item already confirmed with the same code; callers treat it as a no-op"""

    code = "already_confirmed"

    def __init__(self, message: str, item: Optional[Any] = None, **context: Any):
        super().__init__(message, **context)
        self.item = item


class ValidationError(EngineError):
    """Malformed input (unknown account, confidence out of range, bad upload)"""

    code = "validation_error"


class NotFoundError(EngineError):
    """Referenced document, item or mapping does not exist"""

    code = "not_found"
