"""
Document-type classification (entrada / saida / contrato / desconhecido)

Keyword signals combined with a multinomial naive Bayes model (Laplace
smoothing, log priors) trained from confirmed document types. Log scores are
soft-maxed into a 0-100 confidence. Business rule: an `entrada` verdict with
no revenue signal in the text is turned into `saida` (confidence at least 60),
since most uploaded documents are purchases.
"""
import math
from dataclasses import dataclass, field
from typing import Dict, List, Sequence, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.models import DocumentTypeTerm, DocumentTypeTotal
from packages.common.schemas.document import DocumentType
from packages.domain.classification.normalizer import normalize
from packages.domain.classification.schemas import DocumentTypeResult

logger = structlog.get_logger()

# Order matters for ties: first maximal type wins
DOCUMENT_TYPES: Tuple[DocumentType, ...] = (
    DocumentType.ENTRADA,
    DocumentType.SAIDA,
    DocumentType.CONTRATO,
    DocumentType.DESCONHECIDO,
)

KEYWORD_SIGNALS: Dict[DocumentType, Tuple[str, ...]] = {
    DocumentType.ENTRADA: ("fatura", "venda", "vendas", "receita", "cliente", "nota de crédito"),
    DocumentType.SAIDA: ("nota fiscal", "compra", "fornecedor", "despesa", "custo", "recibo", "pagamento"),
    DocumentType.CONTRATO: ("contrato", "fornecimento", "vigência", "condições", "cláusula"),
}

ENTRADA_EVIDENCE: Tuple[str, ...] = ("venda", "receita", "nota de crédito", "cliente")

KEYWORD_WEIGHT = 2
SAIDA_BIAS_CONFIDENCE = 60
MIN_TOKEN_LENGTH = 3


def _phrase(text: str) -> str:
    return " ".join(normalize(text))


def _contains(haystack: str, phrase: str) -> bool:
    return bool(phrase) and f" {phrase} " in f" {haystack} "


def tokenize(text: str) -> List[str]:
    return [t for t in normalize(text) if len(t) >= MIN_TOKEN_LENGTH]


@dataclass
class DocumentTypeModel:
    """Term counts per document type"""

    terms: Dict[DocumentType, Dict[str, int]] = field(
        default_factory=lambda: {t: {} for t in DOCUMENT_TYPES}
    )
    docs: Dict[DocumentType, int] = field(
        default_factory=lambda: {t: 0 for t in DOCUMENT_TYPES}
    )

    @property
    def total_docs(self) -> int:
        return sum(self.docs.values())

    def learn(self, tokens: Sequence[str], label: DocumentType) -> None:
        counts = self.terms.setdefault(label, {})
        for token in tokens:
            counts[token] = counts.get(token, 0) + 1
        self.docs[label] = self.docs.get(label, 0) + 1


def keyword_scores(text: str) -> Dict[DocumentType, int]:
    haystack = _phrase(text)
    scores = {t: 0 for t in DOCUMENT_TYPES}
    for doc_type, words in KEYWORD_SIGNALS.items():
        for word in words:
            if _contains(haystack, _phrase(word)):
                scores[doc_type] += KEYWORD_WEIGHT
    return scores


def bayes_scores(tokens: Sequence[str], model: DocumentTypeModel) -> Dict[DocumentType, float]:
    scores = {}
    total_docs = max(1, model.total_docs)
    for doc_type in DOCUMENT_TYPES:
        terms = model.terms.get(doc_type, {})
        docs = max(1, model.docs.get(doc_type, 0))
        vocab = len(terms) or 1
        total_terms = sum(terms.values()) or 1

        score = math.log(docs / total_docs)
        for token in tokens:
            score += math.log((terms.get(token, 0) + 1) / (total_terms + vocab))
        scores[doc_type] = score
    return scores


def _softmax_best(scores: Dict[DocumentType, float]) -> Tuple[DocumentType, int]:
    top = max(scores.values())
    exps = {k: math.exp(v - top) for k, v in scores.items()}
    total = sum(exps.values()) or 1.0

    best, best_prob = DocumentType.DESCONHECIDO, 0.0
    for doc_type in DOCUMENT_TYPES:
        prob = exps[doc_type] / total
        if prob > best_prob:
            best, best_prob = doc_type, prob
    return best, int(best_prob * 100 + 0.5)


def classify_document_type(text: str, model: DocumentTypeModel) -> DocumentTypeResult:
    """Suggest the document type of an extracted text"""
    tokens = tokenize(text)
    signals = keyword_scores(text)
    bayes = bayes_scores(tokens, model)

    combined = {t: bayes[t] + math.log(signals[t] + 1) for t in DOCUMENT_TYPES}
    best, confidence = _softmax_best(combined)

    if best == DocumentType.ENTRADA:
        haystack = _phrase(text)
        if not any(_contains(haystack, _phrase(word)) for word in ENTRADA_EVIDENCE):
            best = DocumentType.SAIDA
            confidence = max(confidence, SAIDA_BIAS_CONFIDENCE)

    return DocumentTypeResult(
        document_type=best,
        confidence=confidence,
        keyword_hits=sum(signals.values()) // KEYWORD_WEIGHT,
    )


class DocumentTypeRepository:
    """Persistence for the naive Bayes counts"""

    async def load(self, db: AsyncSession) -> DocumentTypeModel:
        model = DocumentTypeModel()
        for row in (await db.execute(select(DocumentTypeTotal))).scalars():
            model.docs[DocumentType(row.document_type)] = row.docs
        for row in (await db.execute(select(DocumentTypeTerm))).scalars():
            model.terms.setdefault(DocumentType(row.document_type), {})[row.token] = row.count
        return model

    async def learn(self, db: AsyncSession, text: str, label: DocumentType) -> int:
        """
        Add a confirmed document to the model.

        Returns:
            Number of tokens counted
        """
        label = DocumentType(label)
        tokens = tokenize(text)

        counts: Dict[str, int] = {}
        for token in tokens:
            counts[token] = counts.get(token, 0) + 1

        if counts:
            existing = {
                row.token: row
                for row in (await db.execute(
                    select(DocumentTypeTerm).where(
                        DocumentTypeTerm.document_type == label.value,
                        DocumentTypeTerm.token.in_(list(counts)),
                    )
                )).scalars()
            }
            for token, count in counts.items():
                if token in existing:
                    existing[token].count += count
                else:
                    db.add(DocumentTypeTerm(document_type=label.value, token=token, count=count))

        total = await db.get(DocumentTypeTotal, label.value)
        if total is None:
            db.add(DocumentTypeTotal(document_type=label.value, docs=1))
        else:
            total.docs += 1

        await db.flush()
        logger.info("document_type_model_updated", label=label.value, tokens=len(tokens))
        return len(tokens)


document_type_repository = DocumentTypeRepository()
