"""
Budget Mapping Service - maps committed budget items (revenue/cost/asset) to PGC

Costs carry a cost-type hint from the budget form. A confident hint wins over
the lexicon classifier:
- material → 611 (75)
- servico  → 622 (75)
- pessoal  → 632 (90), or 635 (95) for INSS / contribuição
- fixo     → 626 (70), or 624 (90) for energia / água, 625 (90) for transporte / frete

Items whose top confidence stays under CUSTOM_CATEGORY_THRESHOLD keep the
budget's own category as a custom category next to the PGC account.
"""
import uuid
from typing import List, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.config import settings
from packages.common.models import PgcMapping
from packages.common.schemas.document import ItemKind
from packages.common.schemas.mapping import BudgetItem, BudgetMappingResult, PgcMappingRead
from packages.domain.classification.classification_service import (
    ClassificationContext,
    classification_service,
)
from packages.domain.classification.normalizer import normalize
from packages.domain.classification.classifier import rank
from packages.domain.classification.schemas import (
    Candidate,
    ClassificationMethod,
    ClassificationResult,
)
from packages.domain.mapping.mapping_store import mapping_store
from packages.domain.mapping.statistics import assess_compliance, summarize

logger = structlog.get_logger()

HINT_MIN_CONFIDENCE = 70

COST_TYPE_DEFAULTS = {
    "material": ("611", 75),
    "servico": ("622", 75),
    "pessoal": ("632", 90),
    "fixo": ("626", 70),
}

# (cost type, trigger tokens, account, confidence), checked in order
COST_TYPE_REFINEMENTS = (
    ("pessoal", frozenset({"inss", "contribuicao", "contribuicoes"}), "635", 95),
    ("fixo", frozenset({"energia", "agua", "eletricidade", "electricidade"}), "624", 90),
    ("fixo", frozenset({"transporte", "transportes", "frete", "fretes"}), "625", 90),
)


def cost_type_hint(
    cost_type: Optional[str],
    tokens: Sequence[str],
    context: ClassificationContext,
) -> Optional[Candidate]:
    """Account suggested by the cost type alone, if the catalog has it"""
    normalized = normalize(cost_type or "")
    if not normalized:
        return None
    cost_type = normalized[0]

    token_set = set(tokens)
    choice = None
    for kind, triggers, code, confidence in COST_TYPE_REFINEMENTS:
        if kind == cost_type and token_set & triggers:
            choice = (code, confidence)
            break
    if choice is None:
        choice = COST_TYPE_DEFAULTS.get(cost_type)
    if choice is None:
        return None

    account = context.catalog.get(choice[0])
    if account is None:
        return None
    return Candidate(
        account_code=account.code,
        account_name=account.description,
        account_class=account.account_class,
        confidence=choice[1],
    )


class BudgetMappingService:
    """Maps budget items and reports statistics per budget"""

    def classify_budget_item(self, item: BudgetItem, context: ClassificationContext) -> ClassificationResult:
        result = classification_service.classify_description(
            item.description, item.kind, context, amount=item.amount
        )
        if item.kind != ItemKind.COST:
            return result

        hint = cost_type_hint(item.cost_type, result.tokens, context)
        if hint is None or hint.confidence < HINT_MIN_CONFIDENCE or hint.confidence <= result.top.confidence:
            return result

        others = [c for c in result.candidates if c.account_code != hint.account_code]
        if result.method == ClassificationMethod.FALLBACK:
            others = []
        candidates = rank([hint, *others])[: classification_service.classifier.max_candidates]
        return ClassificationResult(
            item_kind=result.item_kind,
            tokens=result.tokens,
            candidates=candidates,
            requires_manual_review=result.review_reason == "amount_above_capitalization_threshold",
            review_reason=(
                result.review_reason
                if result.review_reason == "amount_above_capitalization_threshold"
                else None
            ),
            method=ClassificationMethod.COST_TYPE,
        )

    async def map_budget_items(
        self,
        db: AsyncSession,
        budget_id: uuid.UUID,
        items: Sequence[BudgetItem],
    ) -> BudgetMappingResult:
        """
        Create or refresh the PgcMapping of every item of a budget.

        New items get a mapping with a frozen original snapshot. Items already
        mapped go through reclassify_mapping(), which leaves user-adjusted
        mappings untouched apart from a pending candidate.
        """
        logger.info("budget_mapping_started", budget_id=str(budget_id), item_count=len(items))
        context = await classification_service.load_context(db)

        created = refreshed = 0
        for item in items:
            result = self.classify_budget_item(item, context)
            top = result.top
            custom_category = item.category if top.confidence < settings.custom_category_threshold else None

            existing = await mapping_store.find_mapping(db, budget_id, item.kind, item.item_id)
            if existing is None:
                await mapping_store.create_mapping(db, budget_id, item, result, custom_category)
                created += 1
            else:
                await mapping_store.reclassify_mapping(db, existing.id, result, custom_category)
                refreshed += 1

        outcome = await self.get_budget_mappings(db, budget_id)
        logger.info("budget_mapping_complete",
                    budget_id=str(budget_id),
                    created=created,
                    refreshed=refreshed,
                    confidence_pct=outcome.statistics.confidence_pct,
                    compliance=outcome.compliance.level)
        return outcome

    async def get_budget_mappings(self, db: AsyncSession, budget_id: uuid.UUID) -> BudgetMappingResult:
        rows: List[PgcMapping] = list((await db.execute(
            select(PgcMapping)
            .where(PgcMapping.budget_id == budget_id)
            .order_by(PgcMapping.item_kind, PgcMapping.created_at, PgcMapping.id)
        )).scalars())

        stats = summarize((m.account_code, m.confidence) for m in rows)
        compliance = assess_compliance(
            stats,
            codes=[m.account_code for m in rows],
            require_revenue_and_cost=True,
        )
        return BudgetMappingResult(
            budget_id=budget_id,
            mappings=[PgcMappingRead.model_validate(m) for m in rows],
            statistics=stats,
            compliance=compliance,
        )


budget_mapping_service = BudgetMappingService()
