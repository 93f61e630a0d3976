"""
PGC mapping schemas

`OriginalMapping` is the frozen first automated result stored on every
PgcMapping row; `MappingCandidate` is what automated re-classification may
propose after a user has adjusted the mapping.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from packages.common.schemas.document import Compliance, ItemKind, ItemStatistics


class AccountStatus(str, Enum):
    """Catalog validation status"""
    PENDENTE = "pendente"
    VALIDADA = "validada"
    ERRO = "erro"
    REVISAO = "revisao"


class CandidateSnapshot(BaseModel):
    code: str
    name: str
    confidence: int = Field(..., ge=0, le=100)


class OriginalMapping(BaseModel):
    """Immutable snapshot of the first automated classification"""
    schema_version: Literal[1] = 1
    account_code: str
    account_name: str
    confidence: int = Field(..., ge=0, le=100)
    requires_manual_review: bool
    candidates: List[CandidateSnapshot] = Field(default_factory=list)
    description: str
    amount: Optional[Decimal] = None
    item_kind: ItemKind
    category: Optional[str] = None
    method: str = "lexicon"
    classified_at: datetime


class MappingCandidate(BaseModel):
    """Automated proposal awaiting user re-confirmation"""
    schema_version: Literal[1] = 1
    account_code: str
    account_name: str
    confidence: int = Field(..., ge=0, le=100)
    proposed_at: datetime


class BudgetItem(BaseModel):
    """Committed financial line item supplied by the budget collaborator"""
    item_id: UUID
    kind: ItemKind
    description: str = Field(..., min_length=1)
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    cost_type: Optional[str] = Field(None, description="material, servico, pessoal, fixo")

    class Config:
        json_schema_extra = {
            "example": {
                "item_id": "0b7e9c1a-1f1e-4c55-a1f0-4f3a2b9d6c10",
                "kind": "cost",
                "description": "Gasóleo para geradores",
                "amount": "250000.00",
                "category": "Energia",
                "cost_type": "fixo",
            }
        }


class PgcMappingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    budget_id: UUID
    item_kind: ItemKind
    item_id: UUID
    original_description: str
    account_code: str
    account_name: str
    confidence: int
    custom_category: Optional[str] = None
    adjusted_by_user: bool
    requires_manual_review: bool
    original_mapping: OriginalMapping
    pending_candidate: Optional[MappingCandidate] = None
    confirmed_by: Optional[str] = None
    version: int


class BudgetMappingResult(BaseModel):
    budget_id: UUID
    mappings: List[PgcMappingRead]
    statistics: ItemStatistics
    compliance: Compliance


class MappingConfirmation(BaseModel):
    account_code: str = Field(..., min_length=1, max_length=20)


class PgcAccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    description: str
    account_class: int
    account_type: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    status: AccountStatus


class BudgetMappingRequest(BaseModel):
    """Committed items of one budget, as handed over by the budget collaborator"""
    items: List[BudgetItem] = Field(..., min_length=1)
