import uuid
from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shareit.api.deps import get_current_user, get_db, require_role
from shareit.common.enums import SettlementStatus, UserRole
from shareit.common.exceptions import PermissionDeniedError
from shareit.common.pagination import PaginatedResponse, PaginationParams, paginate
from shareit.core.settlement.service import SettlementService
from shareit.db.models.settlement import DepositSettlement
from shareit.db.models.user import User

router = APIRouter(prefix="/settlements", tags=["Settlements"])


# ---------- Schemas ----------


class SettlementResponse(BaseModel):
    id: uuid.UUID
    violation_id: uuid.UUID
    order_id: uuid.UUID
    customer_id: uuid.UUID
    original_deposit_amount: Decimal
    penalty_amount: Decimal
    refund_amount: Decimal
    uncovered_penalty_amount: Decimal
    status: str
    notes: str | None
    processed_at: datetime | None
    external_transaction_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class PayoutDecision(BaseModel):
    approved: bool
    notes: str | None = None
    external_transaction_id: str | None = None


class PendingCountResponse(BaseModel):
    pending: int


# ---------- Endpoints ----------


@router.get("", response_model=PaginatedResponse[SettlementResponse])
async def list_settlements(
    status: SettlementStatus | None = None,
    params: PaginationParams = Depends(),
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.STAFF)),
    db: AsyncSession = Depends(get_db),
):
    query = select(DepositSettlement).order_by(DepositSettlement.created_at.desc())
    if status is not None:
        query = query.where(DepositSettlement.status == status.value)
    items, total = await paginate(db, query, params)
    return PaginatedResponse[SettlementResponse](
        items=[SettlementResponse.model_validate(s) for s in items],
        total=total,
        page=params.page,
        page_size=params.page_size,
        total_pages=params.total_pages(total),
    )


@router.get("/pending-count", response_model=PendingCountResponse)
async def pending_count(
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.STAFF)),
    db: AsyncSession = Depends(get_db),
):
    return PendingCountResponse(pending=await SettlementService().pending_count(db))


@router.get("/mine", response_model=list[SettlementResponse])
async def my_settlements(
    current_user: User = Depends(require_role(UserRole.CUSTOMER)),
    db: AsyncSession = Depends(get_db),
):
    settlements = await SettlementService().list_for_customer(db, current_user.id)
    return [SettlementResponse.model_validate(s) for s in settlements]


@router.get("/{settlement_id}", response_model=SettlementResponse)
async def get_settlement(
    settlement_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    settlement = await SettlementService().get(db, settlement_id)
    if not current_user.is_staff and settlement.customer_id != current_user.id:
        raise PermissionDeniedError("You do not have access to this settlement")
    return SettlementResponse.model_validate(settlement)


@router.post("/{settlement_id}/process", response_model=SettlementResponse)
async def process_payout(
    settlement_id: uuid.UUID,
    body: PayoutDecision,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    settlement = await SettlementService().process_payout(
        db, settlement_id, current_user, body.approved, body.notes, body.external_transaction_id
    )
    return SettlementResponse.model_validate(settlement)


@router.post("/{settlement_id}/reopen", response_model=SettlementResponse)
async def reopen_settlement(
    settlement_id: uuid.UUID,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    settlement = await SettlementService().reopen(db, settlement_id)
    return SettlementResponse.model_validate(settlement)
