"""
Mapping statistics and PGC compliance scoring
"""
from typing import Iterable, Optional, Tuple

from packages.common.config import settings
from packages.common.schemas.document import Compliance, ItemStatistics


def summarize(
    mapped: Iterable[Tuple[str, int]],
    high_confidence: Optional[int] = None,
) -> ItemStatistics:
    """
    Summarize (account_code, confidence) pairs.

    Distinct classes counts two-digit account groups (61, 62, 71, ...).
    """
    threshold = settings.high_confidence if high_confidence is None else high_confidence
    pairs = list(mapped)
    total = len(pairs)
    if total == 0:
        return ItemStatistics()

    high = sum(1 for _, confidence in pairs if confidence >= threshold)
    return ItemStatistics(
        total_items=total,
        high_confidence_items=high,
        needing_review=total - high,
        confidence_pct=round(high / total * 100),
        average_confidence=round(sum(c for _, c in pairs) / total, 1),
        distinct_classes=len({code[:2] for code, _ in pairs}),
    )


def assess_compliance(
    stats: ItemStatistics,
    codes: Iterable[str] = (),
    require_revenue_and_cost: bool = False,
) -> Compliance:
    """
    Score how well a set of mappings fits the PGC.

    Level: baixo below 70% high-confidence items, medio below 85%, else alto.
    Score: min(100, pct * 0.7 + distinct_classes * 5).
    """
    issues = []
    if stats.confidence_pct < 70:
        level = "baixo"
        issues.append("Muitos itens com mapeamento incerto")
    elif stats.confidence_pct < 85:
        level = "medio"
        issues.append("Alguns itens precisam de revisão")
    else:
        level = "alto"

    if require_revenue_and_cost:
        codes = list(codes)
        if not any(code.startswith("7") for code in codes):
            issues.append("Nenhuma receita identificada")
        if not any(code.startswith("6") for code in codes):
            issues.append("Nenhum custo identificado")

    score = min(100.0, stats.confidence_pct * 0.7 + stats.distinct_classes * 5)
    return Compliance(score=round(score, 1), level=level, issues=issues)
