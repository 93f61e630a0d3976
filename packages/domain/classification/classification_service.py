"""
Classification Service - normalizes and classifies line items in batches

Flow:
1. load_context(): one read of catalog, learned lexicon and document-type model
2. classify_items(): normalize + classify every item of a document concurrently
3. All items succeed or the batch raises ClassificationError; callers never see
   a partial result

Example:
- Input: "Compra de combustível 5000 AOA" (cost)
- Normalize: ["compra", "combustivel"]
- Classify: 613 Combustíveis e Lubrificantes (41), ...
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import FrozenSet, List, Mapping, Optional, Sequence, Tuple

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common import metrics
from packages.common.errors import ClassificationError, EngineError
from packages.common.schemas.document import ItemKind
from packages.domain.classification.catalog import CatalogSnapshot, catalog_repository
from packages.domain.classification.classifier import Classifier, classifier
from packages.domain.classification.document_type import (
    DocumentTypeModel,
    classify_document_type,
    document_type_repository,
)
from packages.domain.classification.lexicon import lexicon_repository
from packages.domain.classification.normalizer import normalize
from packages.domain.classification.schemas import (
    ClassificationResult,
    DocumentTypeResult,
    LineItemInput,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class ClassificationContext:
    """Read-only inputs shared by every classification in a batch"""
    catalog: CatalogSnapshot
    lexicon: Mapping[str, FrozenSet[str]]
    document_types: DocumentTypeModel


class ClassificationService:
    """
    Batch classification over a frozen context.

    Usage:
        async with sessionmanager.session() as db:
            context = await classification_service.load_context(db)
        results = await classification_service.classify_items(items, ItemKind.COST, context)
    """

    def __init__(self, item_classifier: Optional[Classifier] = None):
        self.classifier = item_classifier or classifier

    async def load_context(self, db: AsyncSession) -> ClassificationContext:
        catalog = await catalog_repository.load(db)
        try:
            lexicon = await lexicon_repository.load(db)
            document_types = await document_type_repository.load(db)
        except Exception as e:
            logger.error("learned_state_load_failed", error=str(e))
            raise ClassificationError(f"Learned classification state unavailable: {e}") from e

        logger.info("classification_context_loaded",
                    accounts=len(catalog),
                    lexicon_tokens=len(lexicon))

        return ClassificationContext(
            catalog=catalog,
            lexicon=lexicon.snapshot(),
            document_types=document_types,
        )

    def classify_description(
        self,
        description: str,
        kind: ItemKind,
        context: ClassificationContext,
        amount: Optional[Decimal] = None,
    ) -> ClassificationResult:
        """Normalize one description and rank accounts for it"""
        tokens = normalize(description)
        return self.classifier.classify(
            tokens,
            kind,
            context.catalog,
            amount=amount,
            lexicon=context.lexicon,
        )

    def classify_document_type(self, text: str, context: ClassificationContext) -> DocumentTypeResult:
        return classify_document_type(text, context.document_types)

    async def classify_items(
        self,
        items: Sequence[LineItemInput],
        kind: ItemKind,
        context: ClassificationContext,
    ) -> List[Tuple[LineItemInput, ClassificationResult]]:
        """
        Classify all items of a document concurrently.

        Args:
            items: Extracted line items
            kind: Item kind for the whole document
            context: Frozen catalog/lexicon snapshot

        Returns:
            (item, result) pairs in input order

        Raises:
            ClassificationError: If any item fails; no partial results are returned
        """
        logger.info("batch_classification_started", item_count=len(items), item_kind=ItemKind(kind).value)

        tasks = [
            asyncio.to_thread(self.classify_description, item.description, kind, context, item.amount)
            for item in items
        ]
        try:
            results = await asyncio.gather(*tasks)
        except EngineError:
            raise
        except Exception as e:
            logger.error("batch_classification_failed", error=str(e))
            raise ClassificationError(f"Classification failed: {e}") from e

        for result in results:
            metrics.items_classified_total.labels(
                item_kind=result.item_kind.value,
                requires_review=str(result.requires_manual_review).lower(),
            ).inc()

        review_count = sum(1 for r in results if r.requires_manual_review)
        logger.info("batch_classification_complete",
                    item_count=len(results),
                    needing_review=review_count)

        return list(zip(items, results))


classification_service = ClassificationService()
