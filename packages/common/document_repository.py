"""
Document Repository - read models for documents, items and feedback

Builds the API view of a document: items in line order with their Kz display
amount and latest suggestion version, plus the document-type feedback.
Writes go through the pipeline, the Mapping Store and the reconciler only.
"""
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from packages.common.errors import NotFoundError
from packages.common.models import Document, DocumentItem
from packages.common.schemas.document import (
    DocumentFeedbackRead,
    DocumentItemRead,
    DocumentRead,
    DocumentStatus,
    ItemSuggestionRead,
)
from packages.parsers.line_items import format_kwanza

logger = structlog.get_logger()


class DocumentRepository:
    """Read access to documents for the HTTP surface and scripts"""

    @staticmethod
    def _item_read(item: DocumentItem) -> DocumentItemRead:
        read = DocumentItemRead.model_validate(item)
        read.amount_display = format_kwanza(item.amount)
        if item.suggestions:
            read.latest_suggestion = ItemSuggestionRead.model_validate(item.suggestions[-1])
        return read

    async def get_document(self, db: AsyncSession, document_id: UUID) -> DocumentRead:
        """
        Load a document with items, suggestion history and feedback.

        Raises:
            NotFoundError: Unknown document
        """
        document = await db.scalar(
            select(Document)
            .where(Document.id == document_id)
            .options(
                selectinload(Document.items).selectinload(DocumentItem.suggestions),
                selectinload(Document.feedback),
            )
            .execution_options(populate_existing=True)
        )
        if document is None:
            raise NotFoundError("Document not found", document_id=str(document_id))

        return self._document_read(document)

    def _document_read(self, document: Document) -> DocumentRead:
        return DocumentRead(
            id=document.id,
            filename=document.filename,
            mime_type=document.mime_type,
            size_bytes=document.size_bytes,
            uploaded_by=document.uploaded_by,
            status=DocumentStatus(document.status),
            error_reason=document.error_reason,
            error_detail=document.error_detail,
            retry_count=document.retry_count,
            ocr_confidence=document.ocr_confidence,
            extracted_text=document.extracted_text,
            suggested_summary=document.suggested_summary,
            processed_at=document.processed_at,
            risk_id=document.risk_id,
            items=[self._item_read(item) for item in document.items],
            feedback=DocumentFeedbackRead.model_validate(document.feedback) if document.feedback else None,
        )

    async def get_item(self, db: AsyncSession, document_id: UUID, item_id: UUID) -> DocumentItemRead:
        item = await db.scalar(
            select(DocumentItem)
            .where(DocumentItem.id == item_id, DocumentItem.document_id == document_id)
            .options(selectinload(DocumentItem.suggestions))
            .execution_options(populate_existing=True)
        )
        if item is None:
            raise NotFoundError("Document item not found", document_id=str(document_id), item_id=str(item_id))
        return self._item_read(item)

    async def list_documents(
        self,
        db: AsyncSession,
        status: Optional[DocumentStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[DocumentRead]:
        """Most recent documents first, optionally filtered by status"""
        query = (
            select(Document)
            .options(
                selectinload(Document.items).selectinload(DocumentItem.suggestions),
                selectinload(Document.feedback),
            )
            .order_by(Document.created_at.desc(), Document.id)
            .limit(limit)
            .offset(offset)
        )
        if status is not None:
            query = query.where(Document.status == DocumentStatus(status).value)

        documents = (await db.execute(query)).scalars().all()
        logger.debug("documents_listed", count=len(documents), status=status.value if status else None)
        return [self._document_read(document) for document in documents]


document_repository = DocumentRepository()
