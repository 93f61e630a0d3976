"""
Tesseract OCR Provider

Local OCR for images and scanned PDFs (Portuguese language data by default).
Requires the tesseract-ocr system package; PDF rasterization needs poppler.

PDFTextExtractor reads the embedded text layer of digital PDFs without OCR.
"""
import asyncio
import io
from typing import List, Optional, Tuple

import pypdf
import pytesseract
import structlog
from pdf2image import convert_from_bytes
from PIL import Image

from packages.common.errors import ExtractionError
from packages.parsers.ocr.base import OcrResult

logger = structlog.get_logger()

PAGE_BREAK = "\n\n--- PAGE BREAK ---\n\n"


class TesseractProvider:
    """
    Tesseract OCR provider.

    Images are read straight from bytes; PDFs are rendered at 300 dpi first.
    Confidence is the mean word confidence reported by Tesseract.
    """

    IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/tiff"}

    def __init__(self, tesseract_cmd: Optional[str] = None, lang: str = "por"):
        """
        Initialize Tesseract provider.

        Args:
            tesseract_cmd: Path to tesseract binary (PATH lookup if None)
            lang: Tesseract language code
        """
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.lang = lang
        logger.info("tesseract_provider_initialized", lang=lang)

    def supports(self, mime_type: str) -> bool:
        return mime_type in self.IMAGE_TYPES or mime_type == "application/pdf"

    def _ocr_page(self, image: Image.Image) -> Tuple[str, float]:
        data = pytesseract.image_to_data(
            image,
            lang=self.lang,
            output_type=pytesseract.Output.DICT,
            config="--psm 6",
        )
        text = pytesseract.image_to_string(image, lang=self.lang, config="--psm 6")

        confidences = [
            float(conf) for conf, word in zip(data["conf"], data["text"])
            if float(conf) >= 0 and word.strip()
        ]
        average = sum(confidences) / len(confidences) if confidences else 0.0
        return text, average

    def _load_pages(self, content: bytes, mime_type: str) -> List[Image.Image]:
        if mime_type == "application/pdf":
            return convert_from_bytes(content, dpi=300, grayscale=True)
        image = Image.open(io.BytesIO(content))
        image.load()
        return [image]

    def _extract_sync(self, content: bytes, mime_type: str) -> OcrResult:
        pages = self._load_pages(content, mime_type)

        page_texts = []
        page_confidences = []
        for page_num, image in enumerate(pages, start=1):
            text, confidence = self._ocr_page(image)
            logger.info("page_tesseract_complete",
                        page=page_num,
                        confidence=confidence,
                        chars=len(text))
            page_texts.append(text)
            page_confidences.append(confidence)

        overall = sum(page_confidences) / len(page_confidences) if page_confidences else 0.0
        return OcrResult(
            text=PAGE_BREAK.join(page_texts),
            confidence=min(1.0, overall / 100),  # Convert to 0-1
            page_count=len(pages),
            method="tesseract",
        )

    async def extract(self, content: bytes, mime_type: str) -> OcrResult:
        """
        Run Tesseract on an image or scanned PDF.

        Raises:
            ExtractionError: Unsupported type, unreadable file or Tesseract failure
        """
        if not self.supports(mime_type):
            raise ExtractionError(f"Unsupported file type for Tesseract: {mime_type}", mime_type=mime_type)

        logger.info("tesseract_processing", mime_type=mime_type, size_bytes=len(content))
        try:
            result = await asyncio.to_thread(self._extract_sync, content, mime_type)
        except ExtractionError:
            raise
        except Exception as e:
            logger.error("tesseract_failed", error=str(e), mime_type=mime_type, exc_info=True)
            raise ExtractionError(f"Tesseract extraction failed: {e}", mime_type=mime_type) from e

        logger.info("tesseract_complete",
                    pages=result.page_count,
                    chars=len(result.text),
                    confidence=result.confidence)
        return result


class PDFTextExtractor:
    """
    Direct PDF text extraction provider.

    Only works for text-based PDFs; scanned PDFs raise ValueError so the
    caller can fall back to OCR.
    """

    def __init__(self, min_chars: int = 50):
        self.min_chars = min_chars

    def _extract_sync(self, content: bytes) -> OcrResult:
        reader = pypdf.PdfReader(io.BytesIO(content))
        page_texts = [page.extract_text() or "" for page in reader.pages]
        combined = PAGE_BREAK.join(page_texts)

        char_count = len(combined.strip())
        if char_count < self.min_chars:
            raise ValueError(f"PDF appears to be scanned (insufficient text: {char_count} chars)")

        return OcrResult(
            text=combined,
            confidence=1.0,
            page_count=len(reader.pages),
            method="pdf_text_extraction",
        )

    async def extract(self, content: bytes, mime_type: str = "application/pdf") -> OcrResult:
        """
        Extract the embedded text layer.

        Raises:
            ValueError: PDF has no usable text layer
            ExtractionError: PDF could not be parsed
        """
        try:
            result = await asyncio.to_thread(self._extract_sync, content)
        except pypdf.errors.PdfReadError as e:
            logger.error("pdf_read_error", error=str(e))
            raise ExtractionError(f"Failed to read PDF: {e}") from e

        logger.info("pdf_text_extracted_successfully",
                    pages=result.page_count,
                    chars=len(result.text))
        return result
