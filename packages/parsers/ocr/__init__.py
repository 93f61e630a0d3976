"""
OCR Package

Pluggable text extraction behind the OcrProvider protocol.

Main entry point:
    from packages.parsers.ocr import get_ocr_provider

    result = await get_ocr_provider().extract(content, "application/pdf")

Available providers:
    - TesseractProvider: Tesseract OCR for images and scanned PDFs
    - PDFTextExtractor: Direct PDF text extraction (fast, for text-based PDFs)

Configuration via environment:
    - TESSERACT_CMD: Path to tesseract binary
    - TESSERACT_LANG: Language data (default: por)
    - PDF_TEXT_MIN_CHARS: Minimum text layer size before falling back to OCR
"""
from packages.parsers.ocr.base import OcrProvider, OcrResult
from packages.parsers.ocr.factory import OcrProviderFactory, get_ocr_provider
from packages.parsers.ocr.provider_tesseract import PDFTextExtractor, TesseractProvider

__all__ = [
    "OcrResult",
    "OcrProvider",
    "OcrProviderFactory",
    "PDFTextExtractor",
    "TesseractProvider",
    "get_ocr_provider",
]
