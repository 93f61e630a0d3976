import uuid

import pytest

from packages.common.errors import InvalidStateError
from packages.common.models import Document
from packages.common.schemas.document import DocumentStatus, ErrorReason
from packages.domain.documents.state_machine import can_transition, retries_exhausted, transition


def make_document(status: DocumentStatus = DocumentStatus.UPLOADED, retry_count: int = 0) -> Document:
    return Document(
        id=uuid.uuid4(),
        filename="recibo.pdf",
        storage_path="2026/10/recibo.pdf",
        mime_type="application/pdf",
        size_bytes=10,
        uploaded_by="user-1",
        status=status.value,
        retry_count=retry_count,
    )


@pytest.mark.parametrize("current,target,allowed", [
    (DocumentStatus.UPLOADED, DocumentStatus.PROCESSING, True),
    (DocumentStatus.UPLOADED, DocumentStatus.AWAITING_VALIDATION, False),
    (DocumentStatus.PROCESSING, DocumentStatus.AWAITING_VALIDATION, True),
    (DocumentStatus.PROCESSING, DocumentStatus.ERROR, True),
    (DocumentStatus.AWAITING_VALIDATION, DocumentStatus.VALIDATED, True),
    (DocumentStatus.AWAITING_VALIDATION, DocumentStatus.ERROR, True),
    (DocumentStatus.ERROR, DocumentStatus.PROCESSING, True),
    (DocumentStatus.ERROR, DocumentStatus.VALIDATED, False),
    (DocumentStatus.VALIDATED, DocumentStatus.PROCESSING, False),
    (DocumentStatus.VALIDATED, DocumentStatus.ERROR, False),
])
def test_allowed_transitions(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_entering_error_records_reason_and_counts_attempt():
    document = make_document(DocumentStatus.PROCESSING)

    transition(document, DocumentStatus.ERROR, ErrorReason.CANCELLED, "timeout: OCR exceeded 120s")

    assert document.status == "error"
    assert document.error_reason == "cancelled"
    assert document.error_detail == "timeout: OCR exceeded 120s"
    assert document.retry_count == 1


def test_rejection_does_not_count_as_attempt():
    document = make_document(DocumentStatus.AWAITING_VALIDATION)

    transition(document, DocumentStatus.ERROR, ErrorReason.REJECTED, "wrong file")

    assert document.error_reason == "rejected"
    assert document.retry_count == 0


def test_retry_clears_error():
    document = make_document(DocumentStatus.PROCESSING)
    transition(document, DocumentStatus.ERROR, ErrorReason.EXTRACTION_FAILED)

    transition(document, DocumentStatus.PROCESSING, max_retries=3)

    assert document.status == "processing"
    assert document.error_reason is None
    assert document.error_detail is None
    assert document.retry_count == 1


def test_exhausted_retries_block_processing():
    document = make_document(DocumentStatus.ERROR, retry_count=3)

    assert retries_exhausted(document, max_retries=3)
    with pytest.raises(InvalidStateError):
        transition(document, DocumentStatus.PROCESSING, max_retries=3)
    assert document.status == "error"


def test_validated_is_terminal():
    document = make_document(DocumentStatus.VALIDATED)
    with pytest.raises(InvalidStateError):
        transition(document, DocumentStatus.ERROR, ErrorReason.REJECTED)
