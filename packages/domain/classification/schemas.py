"""
Data schemas for classification module
"""
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from packages.common.schemas.document import DocumentType, ItemKind


class ClassificationMethod(str, Enum):
    """How a mapping was produced"""
    LEXICON = "lexicon"         # Token overlap against catalog + learned lexicon
    COST_TYPE = "cost_type"     # Budget cost-type hint
    FALLBACK = "fallback"       # Nothing overlapped; catch-all account
    USER_OVERRIDE = "user"      # User confirmed a different account


class Candidate(BaseModel):
    """One ranked account proposal"""
    account_code: str
    account_name: str
    account_class: int = Field(..., ge=1, le=8)
    confidence: int = Field(..., ge=0, le=100)

    class Config:
        json_schema_extra = {
            "example": {
                "account_code": "613",
                "account_name": "Combustíveis e Lubrificantes",
                "account_class": 6,
                "confidence": 41,
            }
        }


class ClassificationResult(BaseModel):
    """
    Classifier output for a single item.

    Candidates are ordered by descending confidence, ties by ascending
    numeric account code. Never empty.
    """
    item_kind: ItemKind
    tokens: List[str]
    candidates: List[Candidate] = Field(..., min_length=1)
    requires_manual_review: bool = False
    review_reason: Optional[str] = None
    method: ClassificationMethod = ClassificationMethod.LEXICON

    @property
    def top(self) -> Candidate:
        return self.candidates[0]


class DocumentTypeResult(BaseModel):
    document_type: DocumentType
    confidence: int = Field(..., ge=0, le=100)
    keyword_hits: int = 0


class LineItemInput(BaseModel):
    """Candidate line item handed from extraction to classification"""
    line_number: int
    description: str
    amount: Optional[Decimal] = None
