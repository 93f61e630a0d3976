"""
Classifier - ranks PGC accounts for a normalized line item

Pure and stateless per call: the catalog and learned lexicon arrive as
immutable snapshots, nothing is written. Learning happens only through the
feedback reconciler.

Scoring:
1. Restrict the catalog to the classes allowed for the item kind
2. Account vocabulary = description tokens + seed keywords + learned tokens
3. score = 0.75 * coverage (share of item tokens found) + 0.25 * precision
   (share of the vocabulary matched); confidence = score on a 0-100 scale
4. Rank by confidence, ties by ascending numeric code; keep the top N

Nothing overlapping means the kind's catch-all account at confidence 0,
flagged for manual review. Results under the minimum confidence keep their
best candidate and are flagged too.
"""
from decimal import Decimal
from typing import FrozenSet, List, Mapping, Optional, Sequence

import structlog

from packages.common.config import settings
from packages.common.errors import ClassificationError
from packages.common.schemas.document import ItemKind
from packages.domain.classification.catalog import CatalogAccount, CatalogSnapshot
from packages.domain.classification.schemas import (
    Candidate,
    ClassificationMethod,
    ClassificationResult,
)

logger = structlog.get_logger()

COVERAGE_WEIGHT = 0.75
PRECISION_WEIGHT = 0.25


def overlap_confidence(item_tokens: FrozenSet[str], vocabulary: FrozenSet[str]) -> int:
    """Confidence (0-100) from token overlap; 0 when nothing overlaps"""
    if not item_tokens or not vocabulary:
        return 0
    overlap = len(item_tokens & vocabulary)
    if overlap == 0:
        return 0
    score = COVERAGE_WEIGHT * overlap / len(item_tokens) + PRECISION_WEIGHT * overlap / len(vocabulary)
    return max(1, min(100, int(score * 100 + 0.5)))


def rank(candidates: List[Candidate]) -> List[Candidate]:
    return sorted(candidates, key=lambda c: (-c.confidence, int(c.account_code)))


def _candidate(account: CatalogAccount, confidence: int) -> Candidate:
    return Candidate(
        account_code=account.code,
        account_name=account.description,
        account_class=account.account_class,
        confidence=confidence,
    )


class Classifier:
    """Token-overlap classifier over the PGC catalog"""

    def __init__(
        self,
        max_candidates: Optional[int] = None,
        min_confidence: Optional[int] = None,
        capitalization_threshold: Optional[int] = None,
    ):
        self.max_candidates = max_candidates or settings.max_candidates
        self.min_confidence = settings.min_confidence if min_confidence is None else min_confidence
        self.capitalization_threshold = (
            settings.capitalization_threshold
            if capitalization_threshold is None
            else capitalization_threshold
        )

    def classify(
        self,
        tokens: Sequence[str],
        kind: ItemKind,
        catalog: CatalogSnapshot,
        amount: Optional[Decimal] = None,
        lexicon: Optional[Mapping[str, FrozenSet[str]]] = None,
    ) -> ClassificationResult:
        """
        Rank catalog accounts for one item.

        Args:
            tokens: Output of normalize() for the item description
            kind: Item kind; selects the allowed account classes
            catalog: Catalog snapshot
            amount: Item amount, only used to flag capitalisable costs
            lexicon: Learned tokens per account code

        Returns:
            ClassificationResult with at least one candidate

        Raises:
            ClassificationError: If the catalog has no account for this kind
        """
        kind = ItemKind(kind)
        if len(catalog) == 0:
            raise ClassificationError("PGC catalog is empty")

        accounts = catalog.for_kind(kind)
        if not accounts:
            raise ClassificationError(f"No PGC accounts available for {kind.value} items", item_kind=kind.value)

        lexicon = lexicon or {}
        item_tokens = frozenset(tokens)

        scored = []
        for account in accounts:
            vocabulary = account.tokens | lexicon.get(account.code, frozenset())
            confidence = overlap_confidence(item_tokens, vocabulary)
            if confidence > 0:
                scored.append(_candidate(account, confidence))

        method = ClassificationMethod.LEXICON
        if scored:
            candidates = rank(scored)[: self.max_candidates]
        else:
            fallback = catalog.fallback_for(kind) or min(accounts, key=lambda a: a.sort_key)
            candidates = [_candidate(fallback, 0)]
            method = ClassificationMethod.FALLBACK

        requires_review = False
        review_reason = None
        if candidates[0].confidence < self.min_confidence:
            requires_review = True
            review_reason = "low_confidence"
        elif (
            kind == ItemKind.COST
            and amount is not None
            and amount >= self.capitalization_threshold
        ):
            # Large costs may belong in class 1 instead
            requires_review = True
            review_reason = "amount_above_capitalization_threshold"

        logger.debug(
            "item_classified",
            item_kind=kind.value,
            tokens=len(item_tokens),
            top_code=candidates[0].account_code,
            top_confidence=candidates[0].confidence,
            candidates=len(candidates),
            requires_review=requires_review,
        )

        return ClassificationResult(
            item_kind=kind,
            tokens=list(tokens),
            candidates=candidates,
            requires_manual_review=requires_review,
            review_reason=review_reason,
            method=method,
        )


classifier = Classifier()
