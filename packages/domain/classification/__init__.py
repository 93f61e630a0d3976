"""
Classification Module - PGC account suggestions for financial line items

Two signals:
1. Item classification: token overlap between a normalized description and
   each account's vocabulary (description, seed keywords, learned lexicon)
2. Document classification: entrada/saida/contrato via keyword signals and a
   naive Bayes model trained from confirmed documents

Learning loop:
- User confirms a different account → item tokens join that account's lexicon
- User confirms a document type → the Bayes model counts the document text
- Both happen in the feedback reconciler, never while classifying

Example flow:
- "Compra de combustível 5000 AOA" → ["compra", "combustivel"] → 613 (cost)
- "Venda de milho" → ["venda", "milho"] → 711, then 714 (revenue)
"""

from packages.domain.classification.catalog import (
    KIND_CLASSES,
    CatalogSnapshot,
    catalog_repository,
)
from packages.domain.classification.classifier import Classifier, classifier
from packages.domain.classification.normalizer import normalize
from packages.domain.classification.schemas import (
    Candidate,
    ClassificationResult,
    DocumentTypeResult,
)

__all__ = [
    'KIND_CLASSES',
    'CatalogSnapshot',
    'catalog_repository',
    'Classifier',
    'classifier',
    'normalize',
    'Candidate',
    'ClassificationResult',
    'DocumentTypeResult',
]
