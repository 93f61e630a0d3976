"""
Mappings API - budget item mapping to the PGC and catalog lookup
"""
from typing import List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from apps.api.dependencies import get_user_id
from packages.common.database import get_db_session
from packages.common.schemas.mapping import (
    BudgetMappingRequest,
    BudgetMappingResult,
    MappingConfirmation,
    PgcAccountRead,
    PgcMappingRead,
)
from packages.domain.classification.catalog import catalog_repository
from packages.domain.mapping.budget_mapping import budget_mapping_service
from packages.domain.mapping.reconciler import feedback_reconciler

logger = structlog.get_logger()
router = APIRouter()


@router.get("/accounts", response_model=List[PgcAccountRead])
async def list_accounts(
    account_class: Optional[int] = Query(None, ge=1, le=8, description="PGC class (1-8)"),
    search: Optional[str] = Query(None, min_length=1, description="Code prefix or description words"),
    db: AsyncSession = Depends(get_db_session),
):
    return await catalog_repository.list_accounts(db, account_class=account_class, search=search)


@router.post("/budgets/{budget_id}", response_model=BudgetMappingResult)
async def map_budget(
    budget_id: UUID,
    request: BudgetMappingRequest,
    db: AsyncSession = Depends(get_db_session),
):
    """
    Map committed budget items to PGC accounts

    Existing mappings are refreshed; user-adjusted ones only receive a pending candidate.
    """
    return await budget_mapping_service.map_budget_items(db, budget_id, request.items)


@router.get("/budgets/{budget_id}", response_model=BudgetMappingResult)
async def get_budget_mappings(budget_id: UUID, db: AsyncSession = Depends(get_db_session)):
    return await budget_mapping_service.get_budget_mappings(db, budget_id)


@router.post("/{mapping_id}/confirm", response_model=PgcMappingRead)
async def confirm_mapping(
    mapping_id: UUID,
    confirmation: MappingConfirmation,
    user_id: str = Depends(get_user_id),
    db: AsyncSession = Depends(get_db_session),
):
    """Confirm a budget mapping; 409 when it was already confirmed with another account"""
    mapping = await feedback_reconciler.confirm_mapping(db, mapping_id, confirmation.account_code, user_id)
    return PgcMappingRead.model_validate(mapping)
