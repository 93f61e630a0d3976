"""
Document processing task

Flow:
1. Open a database engine for this task's event loop
2. Run the Document Pipeline (OCR → line items → classification → store)
3. Retry with backoff when the document failed for a retryable reason
   (extraction_failed, classification_failed, or an OCR timeout) and retries
   remain

User cancellations, rejections and item-less documents are never retried
automatically. A crash inside the pipeline has already moved the document to
error, so the task retries it the same way.
"""
import asyncio
from typing import Any, Dict
from uuid import UUID

import structlog
from celery import Task

from services.worker.celery_app import app
from packages.common.config import settings
from packages.common.database import sessionmanager
from packages.common.errors import InvalidStateError, NotFoundError
from packages.common.schemas.document import DocumentStatus, ErrorReason
from packages.domain.documents.pipeline import TIMEOUT_DETAIL, document_pipeline

logger = structlog.get_logger()

RETRYABLE_REASONS = frozenset({
    ErrorReason.EXTRACTION_FAILED.value,
    ErrorReason.CLASSIFICATION_FAILED.value,
})


class DocumentTask(Task):
    """Base task for document processing; retries are decided from the outcome"""
    max_retries = settings.max_processing_retries


def timed_out(outcome: Dict[str, Any]) -> bool:
    return (
        outcome.get("error_reason") == ErrorReason.CANCELLED.value
        and (outcome.get("error_detail") or "").startswith(TIMEOUT_DETAIL)
    )


def should_retry(outcome: Dict[str, Any]) -> bool:
    if outcome.get("status") != DocumentStatus.ERROR.value:
        return False
    if outcome.get("retry_count", 0) >= settings.max_processing_retries:
        return False
    return outcome.get("error_reason") in RETRYABLE_REASONS or timed_out(outcome)


async def run_pipeline(document_id: str) -> Dict[str, Any]:
    """Process one document with an engine scoped to the current event loop"""
    await sessionmanager.init(settings.database_url)
    try:
        document = await document_pipeline.process(UUID(document_id))
    except (InvalidStateError, NotFoundError) as e:
        logger.warning("document_task_skipped",
                       document_id=document_id,
                       error=e.code,
                       message=e.message)
        return {"success": False, "document_id": document_id, "status": None, "error": e.code}
    finally:
        await sessionmanager.close()

    return {
        "success": document.status == DocumentStatus.AWAITING_VALIDATION.value,
        "document_id": document_id,
        "status": document.status,
        "error_reason": document.error_reason,
        "error_detail": document.error_detail,
        "retry_count": document.retry_count,
    }


@app.task(bind=True, base=DocumentTask, name="services.worker.tasks.process_document.process_document_task")
def process_document_task(self, document_id: str) -> Dict[str, Any]:
    """
    Process an uploaded document.

    Args:
        document_id: UUID of the document record

    Returns:
        Dict with the final status, error reason and retry count
    """
    logger.info("document_task_started", document_id=document_id, attempt=self.request.retries + 1)

    try:
        outcome = asyncio.run(run_pipeline(document_id))
    except Exception as e:
        logger.error("document_task_crashed",
                     document_id=document_id,
                     error=str(e),
                     attempt=self.request.retries + 1)
        raise self.retry(exc=e, countdown=2 ** self.request.retries * 30)

    if should_retry(outcome):
        logger.warning("document_task_retrying",
                       document_id=document_id,
                       reason=outcome["error_reason"],
                       retry_count=outcome["retry_count"])
        raise self.retry(countdown=2 ** self.request.retries * 30)

    logger.info("document_task_complete", **outcome)
    return outcome
