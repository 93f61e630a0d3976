"""
OCR Provider Factory

Picks the extraction strategy by MIME type:
- Images: Tesseract
- PDFs: embedded text layer first, Tesseract when the PDF is scanned
"""
from typing import Optional

import structlog

from packages.common.config import settings
from packages.common.errors import ExtractionError
from packages.parsers.ocr.base import OcrResult
from packages.parsers.ocr.provider_tesseract import PDFTextExtractor, TesseractProvider

logger = structlog.get_logger()


class OcrProviderFactory:
    """Strategy wrapper implementing the OcrProvider protocol"""

    def __init__(
        self,
        tesseract_cmd: Optional[str] = None,
        tesseract_lang: Optional[str] = None,
        pdf_text_min_chars: Optional[int] = None,
    ):
        self.tesseract_cmd = tesseract_cmd or settings.tesseract_cmd
        self.tesseract_lang = tesseract_lang or settings.tesseract_lang
        self.pdf_text_min_chars = pdf_text_min_chars or settings.pdf_text_min_chars

        # Initialize providers lazily
        self._tesseract_provider: Optional[TesseractProvider] = None
        self._pdf_text_extractor: Optional[PDFTextExtractor] = None

    @property
    def tesseract_provider(self) -> TesseractProvider:
        if self._tesseract_provider is None:
            self._tesseract_provider = TesseractProvider(
                tesseract_cmd=self.tesseract_cmd,
                lang=self.tesseract_lang,
            )
        return self._tesseract_provider

    @property
    def pdf_text_extractor(self) -> PDFTextExtractor:
        if self._pdf_text_extractor is None:
            self._pdf_text_extractor = PDFTextExtractor(min_chars=self.pdf_text_min_chars)
        return self._pdf_text_extractor

    async def extract(self, content: bytes, mime_type: str) -> OcrResult:
        """
        Extract text using the strategy for this MIME type.

        Raises:
            ExtractionError: Unsupported type or every method failed
        """
        logger.info("ocr_extract_started", mime_type=mime_type, size_bytes=len(content))

        if mime_type == "application/pdf":
            return await self._extract_from_pdf(content)
        if mime_type in TesseractProvider.IMAGE_TYPES:
            return await self.tesseract_provider.extract(content, mime_type)
        raise ExtractionError(f"Unsupported file type: {mime_type}", mime_type=mime_type)

    async def _extract_from_pdf(self, content: bytes) -> OcrResult:
        try:
            return await self.pdf_text_extractor.extract(content)
        except ValueError as e:
            # Scanned PDF - need OCR
            logger.info("pdf_requires_ocr", reason=str(e))

        return await self.tesseract_provider.extract(content, "application/pdf")


_default_factory: Optional[OcrProviderFactory] = None


def get_ocr_provider() -> OcrProviderFactory:
    """Default OCR provider configured from settings (singleton)"""
    global _default_factory

    if _default_factory is None:
        _default_factory = OcrProviderFactory()
        logger.info("default_ocr_factory_created",
                    tesseract_lang=_default_factory.tesseract_lang)

    return _default_factory
