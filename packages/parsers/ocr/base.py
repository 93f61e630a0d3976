"""
OCR collaborator contract

The pipeline reads the stored upload and passes bytes plus the declared MIME
type; providers never see storage paths. Anything the provider cannot read is
an ExtractionError, which parks the document in `error/extraction_failed`.
"""
from dataclasses import dataclass
from typing import Protocol


@dataclass
class OcrResult:
    """
    Text recovered from one upload.

    `confidence` is on the 0-1 scale (Tesseract word confidences are rescaled,
    a PDF text layer is 1.0). It is stored on the document as
    `ocr_confidence`; the classifier does not use it.
    """
    text: str
    confidence: float
    page_count: int
    method: str  # tesseract | pdf_text_extraction

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 1:
            raise ValueError(f"OCR confidence must be within [0, 1], got {self.confidence}")


class OcrProvider(Protocol):
    async def extract(self, content: bytes, mime_type: str) -> OcrResult:
        """Return the document text; raise ExtractionError when it cannot be read"""
        ...
