"""
Document lifecycle

    uploaded → processing → awaiting_validation → validated
                   │                 │
                   └──────→ error ←──┘
                              │
                              └──→ processing   (retry, while retries remain)

`validated` is terminal. `error` is terminal only once retry_count reaches
MAX_PROCESSING_RETRIES.
"""
from typing import Dict, FrozenSet, Optional

import structlog

from packages.common.config import settings
from packages.common.errors import InvalidStateError
from packages.common.models import Document
from packages.common.schemas.document import DocumentStatus, ErrorReason

logger = structlog.get_logger()

ALLOWED_TRANSITIONS: Dict[DocumentStatus, FrozenSet[DocumentStatus]] = {
    DocumentStatus.UPLOADED: frozenset({DocumentStatus.PROCESSING}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.AWAITING_VALIDATION, DocumentStatus.ERROR}),
    DocumentStatus.AWAITING_VALIDATION: frozenset({DocumentStatus.VALIDATED, DocumentStatus.ERROR}),
    DocumentStatus.VALIDATED: frozenset(),
    DocumentStatus.ERROR: frozenset({DocumentStatus.PROCESSING}),
}


def can_transition(current: DocumentStatus, target: DocumentStatus) -> bool:
    return DocumentStatus(target) in ALLOWED_TRANSITIONS[DocumentStatus(current)]


def retries_exhausted(document: Document, max_retries: Optional[int] = None) -> bool:
    limit = settings.max_processing_retries if max_retries is None else max_retries
    return document.retry_count >= limit


def transition(
    document: Document,
    target: DocumentStatus,
    reason: Optional[ErrorReason] = None,
    detail: Optional[str] = None,
    max_retries: Optional[int] = None,
) -> Document:
    """
    Move a document to `target`, enforcing the lifecycle.

    Entering `error` bumps the retry counter, except for user rejection of an
    extracted document which does not count as a failed attempt.

    Raises:
        InvalidStateError: Transition not allowed, or retries exhausted
    """
    current = DocumentStatus(document.status)
    target = DocumentStatus(target)

    if not can_transition(current, target):
        raise InvalidStateError(
            f"Cannot move document from {current.value} to {target.value}",
            document_id=str(document.id),
            status=current.value,
        )

    if current == DocumentStatus.ERROR and retries_exhausted(document, max_retries):
        raise InvalidStateError(
            "Document failed permanently; upload it again",
            document_id=str(document.id),
            retry_count=document.retry_count,
        )

    document.status = target.value
    if target == DocumentStatus.ERROR:
        document.error_reason = (reason or ErrorReason.EXTRACTION_FAILED).value
        document.error_detail = detail
        if reason != ErrorReason.REJECTED:
            document.retry_count = (document.retry_count or 0) + 1
    elif target == DocumentStatus.PROCESSING:
        document.error_reason = None
        document.error_detail = None

    logger.info("document_transition",
                document_id=str(document.id),
                from_status=current.value,
                to_status=target.value,
                reason=document.error_reason if target == DocumentStatus.ERROR else None,
                retry_count=document.retry_count)
    return document
