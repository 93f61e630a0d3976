"""
Document schemas (Pydantic models)
Versioned structures for the JSON columns plus the read models served by the API
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    """Pipeline states"""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    AWAITING_VALIDATION = "awaiting_validation"
    VALIDATED = "validated"
    ERROR = "error"


class ErrorReason(str, Enum):
    """Why a document sits in `error`"""
    EXTRACTION_FAILED = "extraction_failed"
    CLASSIFICATION_FAILED = "classification_failed"
    NO_LINE_ITEMS = "no_line_items"
    CANCELLED = "cancelled"      # user cancel or OCR timeout (error_detail says which)
    REJECTED = "rejected"


class DocumentType(str, Enum):
    """Document-level classification"""
    ENTRADA = "entrada"          # sales invoices, receipts of revenue
    SAIDA = "saida"              # purchases, expenses, payments
    CONTRATO = "contrato"
    DESCONHECIDO = "desconhecido"


class ItemKind(str, Enum):
    """Financial nature of a line item; restricts the PGC classes it may map to"""
    REVENUE = "revenue"
    COST = "cost"
    ASSET = "asset"


class Party(BaseModel):
    """Counterparty found in the document header"""
    fornecedor: Optional[str] = None
    beneficiario: Optional[str] = None


class ItemStatistics(BaseModel):
    total_items: int = 0
    high_confidence_items: int = 0
    needing_review: int = 0
    confidence_pct: float = 0.0
    average_confidence: float = 0.0
    distinct_classes: int = 0


class Compliance(BaseModel):
    score: float
    level: Literal["baixo", "medio", "alto"]
    issues: List[str] = Field(default_factory=list)


class SuggestedSummary(BaseModel):
    """Pipeline output stored on the document once items are classified"""
    schema_version: Literal[1] = 1
    document_type: DocumentType
    classification_confidence: int = Field(..., ge=0, le=100)
    item_kind: ItemKind
    party: Optional[Party] = None
    statistics: ItemStatistics
    compliance: Optional[Compliance] = None

    class Config:
        json_schema_extra = {
            "example": {
                "schema_version": 1,
                "document_type": "saida",
                "classification_confidence": 72,
                "item_kind": "cost",
                "party": {"fornecedor": "SONANGOL DISTRIBUIDORA"},
                "statistics": {
                    "total_items": 2,
                    "high_confidence_items": 1,
                    "needing_review": 0,
                    "confidence_pct": 50.0,
                    "average_confidence": 66.5,
                    "distinct_classes": 1,
                },
            }
        }


class ItemSuggestionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    version: int
    account_code: str
    account_name: str
    confidence: int
    requires_manual_review: bool
    created_at: Optional[datetime] = None


class DocumentItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    line_number: int
    original_description: str
    amount: Optional[Decimal] = None
    amount_display: Optional[str] = None
    suggested_code: Optional[str] = None
    suggested_name: Optional[str] = None
    suggestion_confidence: Optional[int] = None
    requires_manual_review: bool = False
    confirmed_code: Optional[str] = None
    confirmed_name: Optional[str] = None
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    adjusted_by_user: bool = False
    version: int
    latest_suggestion: Optional[ItemSuggestionRead] = None


class DocumentFeedbackRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    suggested_type: DocumentType
    confirmed_type: Optional[DocumentType] = None
    classification_confidence: int
    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None


class DocumentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    filename: str
    mime_type: str
    size_bytes: int
    uploaded_by: str
    status: DocumentStatus
    error_reason: Optional[str] = None
    error_detail: Optional[str] = None
    retry_count: int = 0
    ocr_confidence: Optional[float] = None
    extracted_text: Optional[str] = None
    suggested_summary: Optional[SuggestedSummary] = None
    processed_at: Optional[datetime] = None
    risk_id: Optional[str] = None
    items: List[DocumentItemRead] = Field(default_factory=list)
    feedback: Optional[DocumentFeedbackRead] = None


class ItemConfirmation(BaseModel):
    """One user decision for one document item"""
    item_id: UUID
    account_code: str = Field(..., min_length=1, max_length=20)


class DocumentConfirmation(BaseModel):
    """Payload confirming a whole document"""
    document_type: DocumentType
    items: List[ItemConfirmation] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "document_type": "saida",
                "items": [
                    {"item_id": "6f1c2a9e-3b0d-4b8e-9d0a-2f7c1e5b8a11", "account_code": "613"}
                ],
            }
        }


class AccountChoice(BaseModel):
    """Account picked by the user for a single item"""
    account_code: str = Field(..., min_length=1, max_length=20)


class DocumentRejection(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class DocumentUploadResponse(BaseModel):
    """Response after a document upload"""
    document_id: UUID
    status: DocumentStatus
    message: str
    task_id: Optional[str] = None
