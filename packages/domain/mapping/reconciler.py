"""
Feedback Reconciler - applies user confirmations and feeds them back

For every confirmation:
1. The Mapping Store writes the confirmed value (compare-and-set)
2. If the user picked a different account than suggested, the record is
   marked adjusted and the item's tokens join that account's lexicon
3. A ReconciliationMarker makes step 2 happen once per record and account

Repeating an identical confirmation returns the current state unchanged.
Original suggestions and snapshots are never touched here.
"""
import uuid
from datetime import datetime, timezone
from typing import List, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common import metrics
from packages.common.errors import (
    ConflictError,
    InvalidStateError,
    ItemAlreadyConfirmedError,
    NotFoundError,
)
from packages.common.models import (
    Document,
    DocumentFeedback,
    DocumentItem,
    PgcMapping,
    ReconciliationMarker,
)
from packages.common.schemas.document import DocumentConfirmation, DocumentStatus, DocumentType
from packages.domain.classification.catalog import CatalogSnapshot, catalog_repository
from packages.domain.classification.document_type import document_type_repository
from packages.domain.classification.lexicon import lexicon_repository
from packages.domain.classification.normalizer import normalize
from packages.domain.documents.state_machine import transition
from packages.domain.mapping.mapping_store import MappingStore, mapping_store

logger = structlog.get_logger()


class FeedbackReconciler:
    """Entry points for user decisions on items, feedback and budget mappings"""

    def __init__(self, store: Optional[MappingStore] = None):
        self.store = store or mapping_store

    async def confirm_item(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        item_id: uuid.UUID,
        account_code: str,
        user_id: str,
        catalog: Optional[CatalogSnapshot] = None,
    ) -> DocumentItem:
        """
        Confirm one document item.

        Raises:
            ValidationError: Unknown account code
            NotFoundError: Item not found in this document
            InvalidStateError: Document not awaiting validation
            ConflictError: Item already confirmed with another account
        """
        catalog = catalog or await catalog_repository.load(db)
        catalog.require(account_code)

        item = await db.get(DocumentItem, item_id)
        if item is None or item.document_id != document_id:
            raise NotFoundError("Document item not found", document_id=str(document_id), item_id=str(item_id))

        try:
            item = await self.store.confirm(db, item_id, account_code, user_id, catalog)
        except ItemAlreadyConfirmedError as e:
            logger.info("item_confirmation_repeated", item_id=str(item_id), account_code=account_code)
            return e.item

        metrics.confirmations_total.labels(
            record_kind="document_item", adjusted=str(item.adjusted_by_user).lower()
        ).inc()

        if item.adjusted_by_user:
            await self._learn_tokens(
                db, "document_item", item.id, item.confirmed_code, item.original_description
            )
        return item

    async def confirm_feedback(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        document_type: DocumentType,
        user_id: str,
    ) -> DocumentFeedback:
        """
        Confirm (or override) the suggested document type.

        The feedback row is written once; the confirmed type trains the
        document-type model once per document.
        """
        document_type = DocumentType(document_type)
        document = await self._get_document(db, document_id)
        if document.status != DocumentStatus.AWAITING_VALIDATION.value:
            raise InvalidStateError("Document is not awaiting validation",
                                    document_id=str(document_id), status=document.status)

        feedback = await db.scalar(select(DocumentFeedback).where(DocumentFeedback.document_id == document_id))
        if feedback is None:
            raise InvalidStateError("Document has no type suggestion to confirm", document_id=str(document_id))

        if feedback.confirmed_type is None:
            result = await db.execute(
                update(DocumentFeedback)
                .where(DocumentFeedback.id == feedback.id, DocumentFeedback.confirmed_type.is_(None))
                .values(
                    confirmed_type=document_type.value,
                    confirmed_by=user_id,
                    confirmed_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            feedback = await db.get(DocumentFeedback, feedback.id, populate_existing=True)
            if result.rowcount == 1:
                metrics.confirmations_total.labels(
                    record_kind="document_feedback",
                    adjusted=str(feedback.suggested_type != document_type.value).lower(),
                ).inc()

        if feedback.confirmed_type != document_type.value:
            metrics.confirmation_conflicts_total.labels(record_kind="document_feedback").inc()
            raise ConflictError(
                "Document type already confirmed with a different value",
                document_id=str(document_id),
                confirmed_type=feedback.confirmed_type,
                requested_type=document_type.value,
            )

        if await self._mark_reconciled(db, "document_feedback", feedback.id, document_type.value):
            await document_type_repository.learn(db, document.extracted_text or "", document_type)

        logger.info("document_type_confirmed",
                    document_id=str(document_id),
                    suggested_type=feedback.suggested_type,
                    confirmed_type=feedback.confirmed_type,
                    user_id=user_id)
        return feedback

    async def confirm_document(
        self,
        db: AsyncSession,
        document_id: uuid.UUID,
        confirmation: DocumentConfirmation,
        user_id: str,
    ) -> Document:
        """
        Confirm the document type and items, then mark the document validated.

        Every item must end up confirmed (in this call or before). Codes and
        coverage are checked before anything is written.

        Raises:
            ValidationError: Unknown account code
            InvalidStateError: Wrong document state, or items left unconfirmed
            ConflictError: A confirmation contradicts a stored value
        """
        catalog = await catalog_repository.load(db)
        for decision in confirmation.items:
            catalog.require(decision.account_code)

        document = await self._get_document(db, document_id)
        items = await self._items(db, document_id)
        requested = {d.item_id: d.account_code for d in confirmation.items}

        if document.status == DocumentStatus.VALIDATED.value:
            return await self._repeat_validation(db, document, items, requested, confirmation.document_type)

        if document.status != DocumentStatus.AWAITING_VALIDATION.value:
            raise InvalidStateError("Document is not awaiting validation",
                                    document_id=str(document_id), status=document.status)

        known = {item.id for item in items}
        unknown = [str(i) for i in requested if i not in known]
        if unknown:
            raise NotFoundError("Items do not belong to this document", item_ids=unknown)

        missing = [str(i.id) for i in items if i.confirmed_code is None and i.id not in requested]
        if missing:
            raise InvalidStateError("Every item must be confirmed before validation",
                                    document_id=str(document_id), unconfirmed=missing)

        for item_id, account_code in requested.items():
            await self.confirm_item(db, document_id, item_id, account_code, user_id, catalog)

        await self.confirm_feedback(db, document_id, confirmation.document_type, user_id)

        pending = await db.scalar(
            select(func.count()).select_from(DocumentItem).where(
                DocumentItem.document_id == document_id,
                DocumentItem.confirmed_code.is_(None),
            )
        )
        if pending:
            raise InvalidStateError("Items left unconfirmed", document_id=str(document_id), unconfirmed=pending)

        document = await db.get(Document, document_id, populate_existing=True)
        transition(document, DocumentStatus.VALIDATED)
        await db.flush()

        logger.info("document_validated",
                    document_id=str(document_id),
                    items=len(items),
                    document_type=confirmation.document_type.value,
                    user_id=user_id)
        return document

    async def confirm_mapping(
        self,
        db: AsyncSession,
        mapping_id: uuid.UUID,
        account_code: str,
        user_id: str,
    ) -> PgcMapping:
        """Confirm a budget mapping; learns when the account differs from the snapshot"""
        catalog = await catalog_repository.load(db)
        try:
            mapping = await self.store.confirm_mapping(db, mapping_id, account_code, user_id, catalog)
        except ItemAlreadyConfirmedError as e:
            logger.info("mapping_confirmation_repeated", mapping_id=str(mapping_id), account_code=account_code)
            return e.item

        metrics.confirmations_total.labels(
            record_kind="pgc_mapping", adjusted=str(mapping.adjusted_by_user).lower()
        ).inc()

        original_code = (mapping.original_mapping or {}).get("account_code")
        if mapping.account_code != original_code:
            await self._learn_tokens(
                db, "pgc_mapping", mapping.id, mapping.account_code, mapping.original_description
            )
        return mapping

    # ---- Learning signal ------------------------------------------------------

    async def _learn_tokens(
        self,
        db: AsyncSession,
        record_kind: str,
        record_id: uuid.UUID,
        account_code: str,
        description: str,
    ) -> bool:
        if not await self._mark_reconciled(db, record_kind, record_id, account_code):
            return False

        tokens = normalize(description)
        evicted = await lexicon_repository.merge(db, account_code, tokens)
        logger.info("lexicon_updated",
                    record_kind=record_kind,
                    record_id=str(record_id),
                    account_code=account_code,
                    tokens=len(tokens),
                    evicted=evicted)
        return True

    async def _mark_reconciled(
        self,
        db: AsyncSession,
        record_kind: str,
        record_id: uuid.UUID,
        account_code: str,
    ) -> bool:
        """Insert the marker; False if this record/account was already reconciled"""
        existing = await db.scalar(
            select(ReconciliationMarker.id).where(
                ReconciliationMarker.record_kind == record_kind,
                ReconciliationMarker.record_id == record_id,
                ReconciliationMarker.account_code == account_code,
            )
        )
        if existing is not None:
            return False
        try:
            async with db.begin_nested():
                db.add(ReconciliationMarker(
                    record_kind=record_kind,
                    record_id=record_id,
                    account_code=account_code,
                ))
        except IntegrityError:
            return False
        return True

    # ---- Helpers --------------------------------------------------------------

    async def _repeat_validation(
        self,
        db: AsyncSession,
        document: Document,
        items: List[DocumentItem],
        requested: dict,
        document_type: DocumentType,
    ) -> Document:
        """A validated document accepts the same confirmation again as a no-op"""
        feedback = await db.scalar(select(DocumentFeedback).where(DocumentFeedback.document_id == document.id))
        confirmed = {item.id: item.confirmed_code for item in items}
        same_items = all(confirmed.get(i) == code for i, code in requested.items())
        same_type = feedback is not None and feedback.confirmed_type == DocumentType(document_type).value
        if not (same_items and same_type):
            raise ConflictError("Document already validated with different values", document_id=str(document.id))
        return document

    @staticmethod
    async def _get_document(db: AsyncSession, document_id: uuid.UUID) -> Document:
        document = await db.get(Document, document_id)
        if document is None:
            raise NotFoundError("Document not found", document_id=str(document_id))
        return document

    @staticmethod
    async def _items(db: AsyncSession, document_id: uuid.UUID) -> List[DocumentItem]:
        return list((await db.execute(
            select(DocumentItem)
            .where(DocumentItem.document_id == document_id)
            .order_by(DocumentItem.line_number)
        )).scalars())


feedback_reconciler = FeedbackReconciler()
