"""
Mapping Store - persistence rules for suggestions, confirmations and snapshots

Document items:
- create_suggestion() writes the classifier's top candidate exactly once
- reclassify() appends a new suggestion version, never editing earlier ones
- confirm() is a compare-and-set on the item version: the write only lands if
  nobody confirmed the item since it was read

Budget mappings (PgcMapping):
- create_mapping() freezes the first automated result via snapshot_original()
- reclassify_mapping() updates an untouched mapping, but only proposes a
  pending candidate once the user has adjusted it
- confirm_mapping() follows the same compare-and-set rules as items

A confirmation that matches the stored value raises ItemAlreadyConfirmedError
(callers treat it as a no-op); one that contradicts it raises ConflictError.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional

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
from packages.common.models import Document, DocumentItem, ItemSuggestion, PgcMapping
from packages.common.schemas.document import DocumentStatus, ItemKind
from packages.common.schemas.mapping import (
    BudgetItem,
    CandidateSnapshot,
    MappingCandidate,
    OriginalMapping,
)
from packages.domain.classification.catalog import CatalogSnapshot
from packages.domain.classification.schemas import ClassificationResult

logger = structlog.get_logger()


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MappingStore:
    """Write rules for DocumentItem suggestions/confirmations and PgcMapping records"""

    # ---- Document items -------------------------------------------------------

    async def create_suggestion(
        self,
        db: AsyncSession,
        item: DocumentItem,
        result: ClassificationResult,
    ) -> DocumentItem:
        """
        Write the top candidate into the item's suggested fields.

        Raises:
            ConflictError: If the item already carries a suggestion
        """
        if item.id is None:
            item.id = uuid.uuid4()

        if item.suggested_code is not None:
            raise ConflictError("Item already has a suggestion", item_id=str(item.id))

        existing = await db.scalar(
            select(func.count()).select_from(ItemSuggestion).where(ItemSuggestion.item_id == item.id)
        )
        if existing:
            raise ConflictError("Item already has a suggestion", item_id=str(item.id))

        top = result.top
        item.suggested_code = top.account_code
        item.suggested_name = top.account_name
        item.suggestion_confidence = top.confidence
        item.requires_manual_review = result.requires_manual_review

        db.add(self._suggestion_row(item.id, 1, result))
        return item

    async def reclassify(
        self,
        db: AsyncSession,
        item_id: uuid.UUID,
        result: ClassificationResult,
    ) -> ItemSuggestion:
        """
        Record a new classification as the next suggestion version.

        The item's original suggested fields and any confirmation are left as they are.

        Raises:
            NotFoundError: Unknown item
            InvalidStateError: Item was never suggested (use create_suggestion)
            ConflictError: Another reclassification took the same version
        """
        item = await self._get_item(db, item_id)
        if item.suggested_code is None:
            raise InvalidStateError("Item has no suggestion to version", item_id=str(item_id))

        current = await db.scalar(
            select(func.max(ItemSuggestion.version)).where(ItemSuggestion.item_id == item_id)
        )
        row = self._suggestion_row(item_id, (current or 1) + 1, result)
        db.add(row)
        try:
            await db.flush()
        except IntegrityError as e:
            raise ConflictError("Concurrent reclassification", item_id=str(item_id)) from e

        logger.info("item_reclassified",
                    item_id=str(item_id),
                    version=row.version,
                    account_code=row.account_code,
                    confidence=row.confidence)
        return row

    async def confirm(
        self,
        db: AsyncSession,
        item_id: uuid.UUID,
        account_code: str,
        user_id: str,
        catalog: CatalogSnapshot,
    ) -> DocumentItem:
        """
        Confirm an item's final account (compare-and-set on version).

        Args:
            db: Database session
            item_id: Document item id
            account_code: Code chosen by the user
            user_id: Opaque id from the identity collaborator
            catalog: Catalog snapshot used to validate the code

        Returns:
            The confirmed item

        Raises:
            ValidationError: Unknown account code (nothing written)
            NotFoundError: Unknown item
            InvalidStateError: Document not awaiting validation, or item never suggested
            ItemAlreadyConfirmedError: Already confirmed with this code
            ConflictError: Already confirmed with a different code
        """
        account = catalog.require(account_code)
        item = await self._get_item(db, item_id)

        document = await db.get(Document, item.document_id)
        if document is None or document.status != DocumentStatus.AWAITING_VALIDATION.value:
            raise InvalidStateError(
                "Document is not awaiting validation",
                item_id=str(item_id),
                status=document.status if document else None,
            )
        if item.suggested_code is None:
            raise InvalidStateError("Item has no suggestion yet", item_id=str(item_id))
        if item.confirmed_code is not None:
            self._raise_confirmed("document_item", item, item.confirmed_code, account_code)

        expected_version = item.version
        adjusted = account.code != item.suggested_code
        result = await db.execute(
            update(DocumentItem)
            .where(
                DocumentItem.id == item_id,
                DocumentItem.version == expected_version,
                DocumentItem.confirmed_code.is_(None),
            )
            .values(
                confirmed_code=account.code,
                confirmed_name=account.description,
                confirmed_by=user_id,
                confirmed_at=_now(),
                adjusted_by_user=adjusted,
                version=expected_version + 1,
            )
            .execution_options(synchronize_session=False)
        )

        item = await self._get_item(db, item_id, refresh=True)
        if result.rowcount != 1:
            if item.confirmed_code is not None:
                self._raise_confirmed("document_item", item, item.confirmed_code, account_code)
            metrics.confirmation_conflicts_total.labels(record_kind="document_item").inc()
            raise ConflictError("Item changed while confirming", item_id=str(item_id))

        logger.info("item_confirmed",
                    item_id=str(item_id),
                    document_id=str(item.document_id),
                    suggested_code=item.suggested_code,
                    confirmed_code=item.confirmed_code,
                    adjusted=adjusted,
                    user_id=user_id)
        return item

    async def latest_suggestion(self, db: AsyncSession, item_id: uuid.UUID) -> Optional[ItemSuggestion]:
        return await db.scalar(
            select(ItemSuggestion)
            .where(ItemSuggestion.item_id == item_id)
            .order_by(ItemSuggestion.version.desc())
            .limit(1)
        )

    # ---- Budget mappings ------------------------------------------------------

    def snapshot_original(
        self,
        mapping: PgcMapping,
        result: ClassificationResult,
        item: BudgetItem,
    ) -> OriginalMapping:
        """
        Freeze the first automated result on the mapping.

        Raises:
            ConflictError: If the mapping already has a snapshot
        """
        if mapping.original_mapping is not None:
            raise ConflictError("Original mapping is already frozen", mapping_id=str(mapping.id))

        top = result.top
        snapshot = OriginalMapping(
            account_code=top.account_code,
            account_name=top.account_name,
            confidence=top.confidence,
            requires_manual_review=result.requires_manual_review,
            candidates=[
                CandidateSnapshot(code=c.account_code, name=c.account_name, confidence=c.confidence)
                for c in result.candidates
            ],
            description=item.description,
            amount=item.amount,
            item_kind=item.kind,
            category=item.category,
            method=result.method.value,
            classified_at=_now(),
        )
        mapping.original_mapping = snapshot.model_dump(mode="json")
        return snapshot

    async def create_mapping(
        self,
        db: AsyncSession,
        budget_id: uuid.UUID,
        item: BudgetItem,
        result: ClassificationResult,
        custom_category: Optional[str] = None,
    ) -> PgcMapping:
        """
        Persist the mapping for a budget item and freeze its snapshot.

        Raises:
            ConflictError: If the item is already mapped in this budget
        """
        existing = await self.find_mapping(db, budget_id, item.kind, item.item_id)
        if existing is not None:
            raise ConflictError("Budget item already mapped", mapping_id=str(existing.id))

        top = result.top
        mapping = PgcMapping(
            id=uuid.uuid4(),
            budget_id=budget_id,
            item_kind=ItemKind(item.kind).value,
            item_id=item.item_id,
            original_description=item.description,
            amount=item.amount,
            account_code=top.account_code,
            account_name=top.account_name,
            confidence=top.confidence,
            custom_category=custom_category,
            adjusted_by_user=False,
            requires_manual_review=result.requires_manual_review,
            version=1,
        )
        self.snapshot_original(mapping, result, item)
        db.add(mapping)
        await db.flush()
        return mapping

    async def find_mapping(
        self,
        db: AsyncSession,
        budget_id: uuid.UUID,
        kind: ItemKind,
        item_id: uuid.UUID,
    ) -> Optional[PgcMapping]:
        return await db.scalar(
            select(PgcMapping).where(
                PgcMapping.budget_id == budget_id,
                PgcMapping.item_kind == ItemKind(kind).value,
                PgcMapping.item_id == item_id,
            )
        )

    async def reclassify_mapping(
        self,
        db: AsyncSession,
        mapping_id: uuid.UUID,
        result: ClassificationResult,
        custom_category: Optional[str] = None,
    ) -> PgcMapping:
        """
        Apply a new automated classification to a mapping.

        Untouched mappings take the new account and custom category directly.
        Mappings the user adjusted only get a pending candidate to re-confirm.
        The original snapshot is never modified.
        """
        mapping = await self._get_mapping(db, mapping_id)
        top = result.top
        expected_version = mapping.version

        if mapping.adjusted_by_user or mapping.confirmed_by is not None:
            if top.account_code == mapping.account_code:
                # Classifier now agrees with the user; nothing to re-confirm
                values = {"pending_candidate": None}
            else:
                candidate = MappingCandidate(
                    account_code=top.account_code,
                    account_name=top.account_name,
                    confidence=top.confidence,
                    proposed_at=_now(),
                )
                values = {"pending_candidate": candidate.model_dump(mode="json")}
        else:
            values = {
                "account_code": top.account_code,
                "account_name": top.account_name,
                "confidence": top.confidence,
                "requires_manual_review": result.requires_manual_review,
                "custom_category": custom_category,
            }

        outcome = await db.execute(
            update(PgcMapping)
            .where(PgcMapping.id == mapping_id, PgcMapping.version == expected_version)
            .values(version=expected_version + 1, updated_at=_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if outcome.rowcount != 1:
            raise ConflictError("Mapping changed while reclassifying", mapping_id=str(mapping_id))

        mapping = await self._get_mapping(db, mapping_id, refresh=True)
        logger.info("mapping_reclassified",
                    mapping_id=str(mapping_id),
                    pending=mapping.pending_candidate is not None,
                    account_code=top.account_code,
                    confidence=top.confidence)
        return mapping

    async def confirm_mapping(
        self,
        db: AsyncSession,
        mapping_id: uuid.UUID,
        account_code: str,
        user_id: str,
        catalog: CatalogSnapshot,
    ) -> PgcMapping:
        """
        Confirm a budget mapping's account (compare-and-set on version).

        A confirmed mapping can be confirmed again only to accept its pending
        candidate.

        Raises:
            ValidationError: Unknown account code
            NotFoundError: Unknown mapping
            ItemAlreadyConfirmedError: Already confirmed with this code
            ConflictError: Contradicts the confirmed value, or lost a race
        """
        account = catalog.require(account_code)
        mapping = await self._get_mapping(db, mapping_id)

        accepting_candidate = (
            mapping.pending_candidate is not None
            and mapping.pending_candidate.get("account_code") == account.code
        )
        if mapping.confirmed_by is not None and not accepting_candidate:
            self._raise_confirmed("pgc_mapping", mapping, mapping.account_code, account_code)

        original_code = (mapping.original_mapping or {}).get("account_code")
        expected_version = mapping.version
        conditions = [PgcMapping.id == mapping_id, PgcMapping.version == expected_version]
        if not accepting_candidate:
            conditions.append(PgcMapping.confirmed_by.is_(None))

        result = await db.execute(
            update(PgcMapping)
            .where(*conditions)
            .values(
                account_code=account.code,
                account_name=account.description,
                confidence=100,
                adjusted_by_user=mapping.adjusted_by_user or account.code != original_code,
                requires_manual_review=False,
                pending_candidate=None,
                confirmed_by=user_id,
                confirmed_at=_now(),
                version=expected_version + 1,
                updated_at=_now(),
            )
            .execution_options(synchronize_session=False)
        )

        mapping = await self._get_mapping(db, mapping_id, refresh=True)
        if result.rowcount != 1:
            if mapping.confirmed_by is not None:
                self._raise_confirmed("pgc_mapping", mapping, mapping.account_code, account_code)
            metrics.confirmation_conflicts_total.labels(record_kind="pgc_mapping").inc()
            raise ConflictError("Mapping changed while confirming", mapping_id=str(mapping_id))

        logger.info("mapping_confirmed",
                    mapping_id=str(mapping_id),
                    original_code=original_code,
                    confirmed_code=mapping.account_code,
                    adjusted=mapping.adjusted_by_user,
                    user_id=user_id)
        return mapping

    # ---- Helpers --------------------------------------------------------------

    @staticmethod
    def _suggestion_row(item_id: uuid.UUID, version: int, result: ClassificationResult) -> ItemSuggestion:
        top = result.top
        return ItemSuggestion(
            item_id=item_id,
            version=version,
            account_code=top.account_code,
            account_name=top.account_name,
            confidence=top.confidence,
            requires_manual_review=result.requires_manual_review,
            candidates=[c.model_dump() for c in result.candidates],
            created_at=_now(),
        )

    @staticmethod
    def _raise_confirmed(record_kind: str, record, confirmed_code: str, requested_code: str):
        if confirmed_code == requested_code:
            raise ItemAlreadyConfirmedError(
                "Already confirmed with this account",
                item=record,
                record_id=str(record.id),
                account_code=confirmed_code,
            )
        metrics.confirmation_conflicts_total.labels(record_kind=record_kind).inc()
        raise ConflictError(
            "Already confirmed with a different account",
            record_id=str(record.id),
            confirmed_code=confirmed_code,
            requested_code=requested_code,
        )

    @staticmethod
    async def _get_item(db: AsyncSession, item_id: uuid.UUID, refresh: bool = False) -> DocumentItem:
        item = await db.get(DocumentItem, item_id, populate_existing=refresh)
        if item is None:
            raise NotFoundError("Document item not found", item_id=str(item_id))
        return item

    @staticmethod
    async def _get_mapping(db: AsyncSession, mapping_id: uuid.UUID, refresh: bool = False) -> PgcMapping:
        mapping = await db.get(PgcMapping, mapping_id, populate_existing=refresh)
        if mapping is None:
            raise NotFoundError("PGC mapping not found", mapping_id=str(mapping_id))
        return mapping


mapping_store = MappingStore()
