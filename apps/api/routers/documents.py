"""
Documents API - upload, processing control, review and confirmation

Uploads are stored and queued; OCR and classification run in the Celery
worker. Confirmation endpoints go through the Feedback Reconciler so every
user decision is recorded exactly once.
"""
from typing import List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.dependencies import get_user_id
from apps.api.tasks import queue_document_processing
from packages.common.database import get_db_session
from packages.common.document_repository import document_repository
from packages.common.errors import InvalidStateError, NotFoundError
from packages.common.models import Document
from packages.common.schemas.document import (
    AccountChoice,
    DocumentConfirmation,
    DocumentItemRead,
    DocumentRead,
    DocumentRejection,
    DocumentStatus,
    DocumentUploadResponse,
    ItemKind,
)
from packages.domain.documents.pipeline import document_pipeline
from packages.domain.mapping.reconciler import feedback_reconciler

logger = structlog.get_logger()
router = APIRouter()


@router.post("/upload", response_model=DocumentUploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def upload_document(
    file: UploadFile = File(...),
    item_kind: Optional[ItemKind] = Form(default=None),
    risk_id: Optional[str] = Form(default=None),
    user_id: str = Depends(get_user_id),
):
    """
    Upload a document for processing

    - **file**: PDF or image (JPEG, PNG, TIFF), at most MAX_UPLOAD_BYTES
    - **item_kind**: revenue, cost or asset; derived from the document type when omitted
    - **risk_id**: optional risk-category reference

    Returns the document id and queues OCR + classification
    """
    logger.info("document_upload_started",
                filename=file.filename,
                content_type=file.content_type,
                user_id=user_id)

    content = await file.read()
    document = await document_pipeline.upload(
        filename=file.filename or "",
        mime_type=file.content_type or "",
        content=content,
        uploaded_by=user_id,
        item_kind=item_kind.value if item_kind else None,
        risk_id=risk_id,
    )

    task_id = queue_document_processing(str(document.id))
    logger.info("document_queued_for_processing", document_id=str(document.id), task_id=task_id)

    return DocumentUploadResponse(
        document_id=document.id,
        status=DocumentStatus(document.status),
        message="Document uploaded and queued for processing",
        task_id=task_id,
    )


@router.get("/", response_model=List[DocumentRead])
async def list_documents(
    status_filter: Optional[DocumentStatus] = Query(None, alias="status", description="Filter by status"),
    limit: int = Query(50, ge=1, le=200, description="Page size"),
    offset: int = Query(0, ge=0, description="Page offset"),
    db: AsyncSession = Depends(get_db_session),
):
    return await document_repository.list_documents(db, status=status_filter, limit=limit, offset=offset)


@router.get("/{document_id}", response_model=DocumentRead)
async def get_document(document_id: UUID, db: AsyncSession = Depends(get_db_session)):
    """Document with items (Kz display amounts, latest suggestion) and type feedback"""
    return await document_repository.get_document(db, document_id)


@router.post("/{document_id}/process", response_model=DocumentUploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def process_document(document_id: UUID, db: AsyncSession = Depends(get_db_session)):
    """Queue an uploaded document that was not processed yet"""
    document = await db.get(Document, document_id)
    if document is None:
        raise NotFoundError("Document not found", document_id=str(document_id))
    if document.status != DocumentStatus.UPLOADED.value:
        raise InvalidStateError("Only uploaded documents can be queued; use retry for failed ones",
                                document_id=str(document_id), status=document.status)

    task_id = queue_document_processing(str(document_id))
    return DocumentUploadResponse(
        document_id=document_id,
        status=DocumentStatus.UPLOADED,
        message="Document queued for processing",
        task_id=task_id,
    )


@router.post("/{document_id}/retry", response_model=DocumentUploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def retry_document(document_id: UUID, user_id: str = Depends(get_user_id)):
    """Queue a failed document again; refused once retries are exhausted"""
    document = await document_pipeline.ensure_retryable(document_id)
    task_id = queue_document_processing(str(document_id))
    logger.info("document_retry_queued", document_id=str(document_id), user_id=user_id, task_id=task_id)
    return DocumentUploadResponse(
        document_id=document_id,
        status=DocumentStatus(document.status),
        message="Document queued for retry",
        task_id=task_id,
    )


@router.post("/{document_id}/cancel", response_model=DocumentRead)
async def cancel_document(
    document_id: UUID,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db_session),
):
    await document_pipeline.cancel(document_id)
    logger.info("document_cancelled", document_id=str(document_id), user_id=user_id)
    return await document_repository.get_document(db, document_id)


@router.post("/{document_id}/reject", response_model=DocumentRead)
async def reject_document(
    document_id: UUID,
    rejection: DocumentRejection,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db_session),
):
    """Send a document under review back to error (e.g. wrong file uploaded)"""
    await document_pipeline.reject(document_id, rejection.reason, user_id)
    return await document_repository.get_document(db, document_id)


@router.post("/{document_id}/items/{item_id}/confirm", response_model=DocumentItemRead)
async def confirm_item(
    document_id: UUID,
    item_id: UUID,
    choice: AccountChoice,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db_session),
):
    """Confirm one item; 409 when it was already confirmed with another account"""
    await feedback_reconciler.confirm_item(db, document_id, item_id, choice.account_code, user_id)
    return await document_repository.get_item(db, document_id, item_id)


@router.post("/{document_id}/confirm", response_model=DocumentRead)
async def confirm_document(
    document_id: UUID,
    confirmation: DocumentConfirmation,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db_session),
):
    """Confirm the document type and items; the document becomes validated"""
    await feedback_reconciler.confirm_document(db, document_id, confirmation, user_id)
    return await document_repository.get_document(db, document_id)
