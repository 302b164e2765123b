import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from shareit.api.deps import get_db, require_role
from shareit.common.enums import UserRole, ViolationStatus
from shareit.common.logging import get_logger
from shareit.core.disputes.schemas import (
    CaseDossier,
    PendingCase,
    ResolutionOut,
    ResolutionRequest,
)
from shareit.core.disputes.service import ArbitrationService
from shareit.core.settlement.calculator import is_settlement_eligible
from shareit.db.models.user import User
from shareit.tasks.settlement_tasks import settle_violation

router = APIRouter(prefix="/admin/disputes", tags=["Disputes"])

logger = get_logger("api.disputes")


@router.get("", response_model=list[PendingCase])
async def list_pending_disputes(
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.STAFF)),
    db: AsyncSession = Depends(get_db),
):
    return await ArbitrationService().list_pending_cases(db)


@router.get("/{violation_id}", response_model=CaseDossier)
async def get_dispute(
    violation_id: uuid.UUID,
    current_user: User = Depends(require_role(UserRole.ADMIN, UserRole.STAFF)),
    db: AsyncSession = Depends(get_db),
):
    return await ArbitrationService().get_case_dossier(db, violation_id)


@router.post("/{violation_id}/resolve", response_model=ResolutionOut, status_code=201)
async def resolve_dispute(
    violation_id: uuid.UUID,
    body: ResolutionRequest,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    db: AsyncSession = Depends(get_db),
):
    resolution = await ArbitrationService().record_resolution(
        db,
        violation_id,
        current_user,
        body.resolution_type,
        body.reason,
        body.customer_fine_amount,
        body.provider_compensation_amount,
    )
    await db.commit()
    if is_settlement_eligible(ViolationStatus.RESOLVED.value, body.resolution_type.value):
        settle_violation.delay(str(violation_id))
        logger.info("Queued settlement for violation %s", violation_id)
    return ResolutionOut.model_validate(resolution)
