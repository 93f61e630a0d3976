"""
Document Pipeline - drives a document from upload to awaiting_validation

Flow for one document:
1. Claim: uploaded/error → processing in a short transaction (a retry also
   discards previous items, suggestions, feedback and summary)
2. Extract: read the stored file and run OCR with a timeout; no database
   session is open while OCR runs, and the OCR task can be cancelled
3. Split text into line items, load the classification context, classify the
   document type and every item concurrently (all-or-nothing)
4. Write items, suggestions, feedback, summary and the state change in one
   transaction

Any failure moves the document to `error` in a fresh transaction with an
error_reason (extraction_failed, classification_failed, no_line_items,
cancelled). A timeout is a cancellation whose error_detail starts with
"timeout". Extracted text is kept for diagnosis when available.

Every claim stamps a fresh attempt_id on the document. Results and failures
are only written while that attempt still owns the document, so a worker that
outlives a cancel cannot touch the retry that followed it.
"""
import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import delete, select

from packages.common import metrics
from packages.common.config import settings
from packages.common.database import DatabaseSessionManager, sessionmanager
from packages.common.errors import (
    ClassificationError,
    EngineError,
    ExtractionError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from packages.common.models import Document, DocumentFeedback, DocumentItem, ItemSuggestion
from packages.common.schemas.document import (
    DocumentStatus,
    DocumentType,
    ErrorReason,
    ItemKind,
    SuggestedSummary,
)
from packages.common.storage import BlobStorage, build_path, storage
from packages.domain.classification.classification_service import (
    ClassificationService,
    classification_service,
)
from packages.domain.classification.schemas import (
    ClassificationResult,
    DocumentTypeResult,
    LineItemInput,
)
from packages.domain.documents.state_machine import retries_exhausted, transition
from packages.domain.mapping.mapping_store import MappingStore, mapping_store
from packages.domain.mapping.statistics import assess_compliance, summarize
from packages.parsers.line_items import LineItemExtractor, extract_party, line_item_extractor
from packages.parsers.ocr.base import OcrProvider, OcrResult

logger = structlog.get_logger()

TIMEOUT_DETAIL = "timeout"


class ProcessingAborted(Exception):
    """OCR stopped before producing text (timeout or cancellation)"""

    def __init__(self, reason: ErrorReason, detail: str):
        super().__init__(detail)
        self.reason = reason
        self.detail = detail


def item_kind_for(document_type: DocumentType, explicit: Optional[str] = None) -> ItemKind:
    """entrada documents carry revenue; everything else is treated as cost"""
    if explicit:
        return ItemKind(explicit)
    if DocumentType(document_type) == DocumentType.ENTRADA:
        return ItemKind.REVENUE
    return ItemKind.COST


class DocumentPipeline:
    """
    Orchestrates storage, OCR, extraction, classification and the Mapping Store.

    Collaborators are injectable; defaults are the module singletons.
    """

    def __init__(
        self,
        sessions: Optional[DatabaseSessionManager] = None,
        ocr: Optional[OcrProvider] = None,
        blob_storage: Optional[BlobStorage] = None,
        extractor: Optional[LineItemExtractor] = None,
        service: Optional[ClassificationService] = None,
        store: Optional[MappingStore] = None,
        ocr_timeout: Optional[float] = None,
    ):
        self.sessions = sessions or sessionmanager
        self._ocr = ocr
        self.storage = blob_storage or storage
        self.extractor = extractor or line_item_extractor
        self.classification = service or classification_service
        self.store = store or mapping_store
        self.ocr_timeout = ocr_timeout or settings.ocr_timeout_seconds
        self._inflight: Dict[uuid.UUID, asyncio.Task] = {}

    @property
    def ocr(self) -> OcrProvider:
        if self._ocr is None:
            from packages.parsers.ocr.factory import get_ocr_provider
            self._ocr = get_ocr_provider()
        return self._ocr

    # ---- Upload ---------------------------------------------------------------

    def validate_upload(
        self,
        filename: str,
        mime_type: str,
        content: bytes,
        item_kind: Optional[str] = None,
    ) -> None:
        """
        Reject malformed uploads before anything is stored.

        Raises:
            ValidationError: Missing name, unsupported type, empty or oversized file
        """
        if not filename or not filename.strip():
            raise ValidationError("Filename is required")
        if mime_type not in settings.allowed_mime_types:
            raise ValidationError(
                f"Unsupported file type: {mime_type}",
                allowed=settings.allowed_mime_types,
            )
        if not content:
            raise ValidationError("Uploaded file is empty", filename=filename)
        if len(content) > settings.max_upload_bytes:
            raise ValidationError(
                "Uploaded file is too large",
                size_bytes=len(content),
                max_bytes=settings.max_upload_bytes,
            )
        if item_kind is not None:
            try:
                ItemKind(item_kind)
            except ValueError as e:
                raise ValidationError(f"Unknown item kind: {item_kind}") from e

    async def upload(
        self,
        filename: str,
        mime_type: str,
        content: bytes,
        uploaded_by: str,
        item_kind: Optional[str] = None,
        risk_id: Optional[str] = None,
    ) -> Document:
        """Store the file and create the document in `uploaded`"""
        self.validate_upload(filename, mime_type, content, item_kind)

        document_id = uuid.uuid4()
        path = build_path(document_id, mime_type)
        await self.storage.write(path, content)

        async with self.sessions.session() as db:
            document = Document(
                id=document_id,
                filename=filename,
                storage_path=path,
                mime_type=mime_type,
                size_bytes=len(content),
                uploaded_by=uploaded_by,
                status=DocumentStatus.UPLOADED.value,
                item_kind=ItemKind(item_kind).value if item_kind else None,
                risk_id=risk_id,
                retry_count=0,
            )
            db.add(document)

        metrics.documents_uploaded_total.labels(mime_type=mime_type).inc()
        logger.info("document_uploaded",
                    document_id=str(document_id),
                    filename=filename,
                    mime_type=mime_type,
                    size_bytes=len(content),
                    uploaded_by=uploaded_by)
        return document

    # ---- Processing -----------------------------------------------------------

    async def process(self, document_id: uuid.UUID) -> Document:
        """
        Run the pipeline for an uploaded (or retry-eligible) document.

        Returns:
            The document in awaiting_validation, or in error with error_reason set

        Raises:
            NotFoundError: Unknown document
            InvalidStateError: Document cannot enter processing
            Exception: Unexpected failures are re-raised after the document moved to error
        """
        document = await self._claim(document_id)
        attempt = document.attempt_id
        ocr_result = None
        try:
            try:
                ocr_result = await self._extract(document)
            except ProcessingAborted as e:
                return await self._fail(document_id, attempt, e.reason, e.detail)
            except ExtractionError as e:
                return await self._fail(document_id, attempt, ErrorReason.EXTRACTION_FAILED, e.message)

            items = self.extractor.extract(ocr_result.text)
            if not items:
                return await self._fail(
                    document_id, attempt, ErrorReason.NO_LINE_ITEMS,
                    "No line items found in extracted text", ocr_result=ocr_result,
                )

            try:
                document_type, kind, classified = await self._classify(document, ocr_result.text, items)
                return await self._complete(document_id, attempt, ocr_result, document_type, kind, classified)
            except EngineError as e:
                return await self._fail(
                    document_id, attempt, ErrorReason.CLASSIFICATION_FAILED, e.message, ocr_result=ocr_result,
                )
        except asyncio.CancelledError:
            await self._fail(document_id, attempt, ErrorReason.CANCELLED, "Processing cancelled",
                             ocr_result=ocr_result)
            raise
        except Exception as e:
            # Failures outside the engine taxonomy still park the document in error
            reason = ErrorReason.EXTRACTION_FAILED if ocr_result is None else ErrorReason.CLASSIFICATION_FAILED
            logger.error("document_processing_crashed",
                         document_id=str(document_id),
                         reason=reason.value,
                         error=str(e),
                         exc_info=True)
            await self._fail(document_id, attempt, reason, f"{type(e).__name__}: {e}", ocr_result=ocr_result)
            raise

    async def retry(self, document_id: uuid.UUID) -> Document:
        """Explicit retry of a failed document; refused once retries are exhausted"""
        await self.ensure_retryable(document_id)
        return await self.process(document_id)

    async def ensure_retryable(self, document_id: uuid.UUID) -> Document:
        """
        Check a document may re-enter processing.

        Raises:
            NotFoundError: Unknown document
            InvalidStateError: Not in error, or retries exhausted
        """
        async with self.sessions.session() as db:
            document = await self._get(db, document_id)
            if document.status != DocumentStatus.ERROR.value:
                raise InvalidStateError("Only failed documents can be retried",
                                        document_id=str(document_id), status=document.status)
            if retries_exhausted(document):
                raise InvalidStateError("Document failed permanently; upload it again",
                                        document_id=str(document_id), retry_count=document.retry_count)
            return document

    async def cancel(self, document_id: uuid.UUID) -> bool:
        """
        Cancel in-flight processing.

        A local OCR task is cancelled and the running pipeline records the
        error. Otherwise the document is moved to error directly and the
        worker discards its result when it finishes.

        Raises:
            InvalidStateError: Document is not processing
        """
        task = self._inflight.get(document_id)
        if task is not None and not task.done():
            task.cancel()
            logger.info("document_cancel_requested", document_id=str(document_id), local=True)
            return True

        async with self.sessions.session() as db:
            document = await self._get(db, document_id, lock=True)
            if document.status != DocumentStatus.PROCESSING.value:
                raise InvalidStateError("Document is not being processed",
                                        document_id=str(document_id), status=document.status)
            transition(document, DocumentStatus.ERROR, ErrorReason.CANCELLED, "Processing cancelled")

        metrics.documents_failed_total.labels(reason=ErrorReason.CANCELLED.value).inc()
        logger.info("document_cancel_requested", document_id=str(document_id), local=False)
        return True

    async def reject(self, document_id: uuid.UUID, detail: Optional[str], user_id: str) -> Document:
        """Send an awaiting_validation document back to error (user escape hatch)"""
        async with self.sessions.session() as db:
            document = await self._get(db, document_id, lock=True)
            transition(document, DocumentStatus.ERROR, ErrorReason.REJECTED, detail)

        metrics.documents_failed_total.labels(reason=ErrorReason.REJECTED.value).inc()
        logger.info("document_rejected", document_id=str(document_id), user_id=user_id, detail=detail)
        return document

    # ---- Steps ----------------------------------------------------------------

    async def _claim(self, document_id: uuid.UUID) -> Document:
        async with self.sessions.session() as db:
            document = await self._get(db, document_id, lock=True)
            retrying = document.status == DocumentStatus.ERROR.value
            transition(document, DocumentStatus.PROCESSING)
            document.attempt_id = uuid.uuid4()
            if retrying:
                await self._reset(db, document)
        logger.info("document_processing_started",
                    document_id=str(document_id),
                    attempt_id=str(document.attempt_id),
                    retry=retrying,
                    retry_count=document.retry_count)
        return document

    async def _reset(self, db, document: Document) -> None:
        """Discard everything a previous attempt produced; only the file reference survives"""
        item_ids = select(DocumentItem.id).where(DocumentItem.document_id == document.id)
        await db.execute(delete(ItemSuggestion).where(ItemSuggestion.item_id.in_(item_ids)))
        await db.execute(delete(DocumentItem).where(DocumentItem.document_id == document.id))
        await db.execute(delete(DocumentFeedback).where(DocumentFeedback.document_id == document.id))
        document.ocr_confidence = None
        document.extracted_text = None
        document.suggested_summary = None
        document.processed_at = None

    async def _extract(self, document: Document) -> OcrResult:
        content = await self.storage.read(document.storage_path)

        task = asyncio.create_task(self.ocr.extract(content, document.mime_type))
        self._inflight[document.id] = task
        started = time.monotonic()
        try:
            done, _ = await asyncio.wait({task}, timeout=self.ocr_timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._inflight.pop(document.id, None)
            metrics.ocr_duration_seconds.observe(time.monotonic() - started)

        if not done:
            task.cancel()
            raise ProcessingAborted(ErrorReason.CANCELLED, f"{TIMEOUT_DETAIL}: OCR exceeded {self.ocr_timeout}s")
        if task.cancelled():
            raise ProcessingAborted(ErrorReason.CANCELLED, "Processing cancelled")

        error = task.exception()
        if isinstance(error, ExtractionError):
            raise error
        if error is not None:
            raise ExtractionError(f"OCR failed: {error}") from error

        result = task.result()
        logger.info("ocr_complete",
                    document_id=str(document.id),
                    method=result.method,
                    confidence=result.confidence,
                    chars=len(result.text))
        return result

    async def _classify(
        self,
        document: Document,
        text: str,
        items: List[LineItemInput],
    ) -> Tuple[DocumentTypeResult, ItemKind, List[Tuple[LineItemInput, ClassificationResult]]]:
        async with self.sessions.session() as db:
            context = await self.classification.load_context(db)

        try:
            document_type = self.classification.classify_document_type(text, context)
        except EngineError:
            raise
        except Exception as e:
            raise ClassificationError(f"Document type classification failed: {e}") from e

        kind = item_kind_for(document_type.document_type, document.item_kind)
        classified = await self.classification.classify_items(items, kind, context)
        return document_type, kind, classified

    async def _complete(
        self,
        document_id: uuid.UUID,
        attempt: uuid.UUID,
        ocr_result: OcrResult,
        document_type: DocumentTypeResult,
        kind: ItemKind,
        classified: List[Tuple[LineItemInput, ClassificationResult]],
    ) -> Document:
        async with self.sessions.session() as db:
            document = await self._get(db, document_id, lock=True)
            if not self._owns(document, attempt):
                logger.warning("processing_result_discarded",
                               document_id=str(document_id),
                               attempt_id=str(attempt),
                               status=document.status)
                return document

            for line, result in classified:
                item = DocumentItem(
                    id=uuid.uuid4(),
                    document_id=document_id,
                    line_number=line.line_number,
                    original_description=line.description,
                    amount=line.amount,
                    adjusted_by_user=False,
                    version=1,
                )
                db.add(item)
                await self.store.create_suggestion(db, item, result)

            db.add(DocumentFeedback(
                document_id=document_id,
                suggested_type=document_type.document_type.value,
                classification_confidence=document_type.confidence,
            ))

            tops = [(result.top.account_code, result.top.confidence) for _, result in classified]
            stats = summarize(tops)
            summary = SuggestedSummary(
                document_type=document_type.document_type,
                classification_confidence=document_type.confidence,
                item_kind=kind,
                party=extract_party(ocr_result.text),
                statistics=stats,
                compliance=assess_compliance(stats, codes=[code for code, _ in tops]),
            )

            document.item_kind = kind.value
            document.ocr_confidence = ocr_result.confidence
            document.extracted_text = ocr_result.text
            document.suggested_summary = summary.model_dump(mode="json")
            document.processed_at = datetime.now(timezone.utc)
            transition(document, DocumentStatus.AWAITING_VALIDATION)

        metrics.documents_processed_total.labels(document_type=document_type.document_type.value).inc()
        logger.info("document_processed",
                    document_id=str(document_id),
                    document_type=document_type.document_type.value,
                    item_kind=kind.value,
                    items=len(classified),
                    needing_review=stats.needing_review)
        return document

    async def _fail(
        self,
        document_id: uuid.UUID,
        attempt: uuid.UUID,
        reason: ErrorReason,
        detail: Optional[str],
        ocr_result: Optional[OcrResult] = None,
    ) -> Document:
        async with self.sessions.session() as db:
            document = await self._get(db, document_id, lock=True)
            if not self._owns(document, attempt):
                logger.warning("document_failure_ignored",
                               document_id=str(document_id),
                               attempt_id=str(attempt),
                               status=document.status,
                               reason=reason.value)
                return document

            if ocr_result is not None:
                document.extracted_text = ocr_result.text
                document.ocr_confidence = ocr_result.confidence
            transition(document, DocumentStatus.ERROR, reason, detail)

        metrics.documents_failed_total.labels(reason=reason.value).inc()
        logger.error("document_processing_failed",
                     document_id=str(document_id),
                     reason=reason.value,
                     detail=detail,
                     retry_count=document.retry_count)
        return document

    @staticmethod
    def _owns(document: Document, attempt: uuid.UUID) -> bool:
        return document.status == DocumentStatus.PROCESSING.value and document.attempt_id == attempt

    @staticmethod
    async def _get(db, document_id: uuid.UUID, lock: bool = False) -> Document:
        document = await db.get(Document, document_id, with_for_update=lock or None)
        if document is None:
            raise NotFoundError("Document not found", document_id=str(document_id))
        return document


document_pipeline = DocumentPipeline()
