import json
import uuid

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.datastructures import UploadFile as StarletteUploadFile

from shareit.api.deps import get_current_user, get_db, get_storage, require_role
from shareit.common.enums import UserRole
from shareit.common.exceptions import BadRequestError
from shareit.common.logging import get_logger
from shareit.core.violations.evidence import EvidenceFile
from shareit.core.violations.schemas import (
    CustomerResponse,
    EscalationRequest,
    ProviderReply,
    ViolationDetail,
    ViolationOut,
    ViolationPatch,
    ViolationReportItem,
)
from shareit.core.violations.service import ViolationService
from shareit.db.models.user import User
from shareit.integrations.storage import EvidenceStorageClient
from shareit.tasks.settlement_tasks import settle_violation

router = APIRouter(tags=["Violations"])

logger = get_logger("api.violations")


async def _to_evidence(upload: StarletteUploadFile) -> EvidenceFile:
    content = await upload.read()
    return EvidenceFile(
        filename=upload.filename or "evidence",
        content_type=upload.content_type or "application/octet-stream",
        content=content,
    )


def _validation_message(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
    )


# ---------- Provider ----------


@router.post(
    "/orders/{order_id}/violations",
    response_model=list[ViolationOut],
    status_code=201,
)
async def report_violations(
    order_id: uuid.UUID,
    request: Request,
    current_user: User = Depends(require_role(UserRole.PROVIDER)),
    db: AsyncSession = Depends(get_db),
    storage: EvidenceStorageClient = Depends(get_storage),
):
    """Report one or more damaged, late or missing items on an order.

    Multipart form: ``items`` is a JSON array of item reports and the
    evidence for the n-th entry is sent under the field ``evidence_<n>``.
    """
    form = await request.form()
    raw_items = form.get("items")
    if not isinstance(raw_items, str):
        raise BadRequestError("Form field 'items' is required")
    try:
        entries = json.loads(raw_items)
    except json.JSONDecodeError:
        raise BadRequestError("Form field 'items' must be a JSON array")
    if not isinstance(entries, list):
        raise BadRequestError("Form field 'items' must be a JSON array")

    items: list[ViolationReportItem] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise BadRequestError(f"Item {index} must be an object")
        files = [
            await _to_evidence(f)
            for f in form.getlist(f"evidence_{index}")
            if isinstance(f, StarletteUploadFile)
        ]
        try:
            items.append(ViolationReportItem.model_validate({**entry, "evidence_files": files}))
        except ValidationError as e:
            raise BadRequestError(f"Item {index}: {_validation_message(e)}")

    service = ViolationService(storage)
    violations = await service.report_violations(db, order_id, current_user, items)
    return [ViolationOut.from_violation(v) for v in violations]


@router.patch("/violations/{violation_id}", response_model=ViolationOut)
async def revise_violation(
    violation_id: uuid.UUID,
    body: ViolationPatch,
    current_user: User = Depends(require_role(UserRole.PROVIDER)),
    db: AsyncSession = Depends(get_db),
):
    violation = await ViolationService().provider_revise(db, violation_id, current_user, body)
    return ViolationOut.from_violation(violation)


@router.post("/violations/{violation_id}/reply", response_model=ViolationOut)
async def reply_to_customer(
    violation_id: uuid.UUID,
    body: ProviderReply,
    current_user: User = Depends(require_role(UserRole.PROVIDER)),
    db: AsyncSession = Depends(get_db),
):
    violation = await ViolationService().provider_respond_to_customer(
        db, violation_id, current_user, body.response
    )
    return ViolationOut.from_violation(violation)


# ---------- Customer ----------


@router.post("/violations/{violation_id}/respond", response_model=ViolationOut)
async def respond_to_violation(
    violation_id: uuid.UUID,
    accepted: bool = Form(...),
    notes: str | None = Form(None),
    evidence: list[UploadFile] = File(default=[]),
    current_user: User = Depends(require_role(UserRole.CUSTOMER)),
    db: AsyncSession = Depends(get_db),
    storage: EvidenceStorageClient = Depends(get_storage),
):
    try:
        body = CustomerResponse(accepted=accepted, notes=notes)
    except ValidationError as e:
        raise BadRequestError(_validation_message(e))

    files = [await _to_evidence(f) for f in evidence]
    violation = await ViolationService(storage).customer_respond(
        db, violation_id, current_user, body.accepted, body.notes, files
    )

    if body.accepted:
        await db.commit()
        settle_violation.delay(str(violation.id))
        logger.info("Queued settlement for violation %s", violation.id)
    return ViolationOut.from_violation(violation)


# ---------- Both parties ----------


@router.post("/violations/{violation_id}/escalate", response_model=ViolationOut)
async def escalate_violation(
    violation_id: uuid.UUID,
    body: EscalationRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    violation = await ViolationService().escalate(db, violation_id, current_user, body.reason)
    return ViolationOut.from_violation(violation)


@router.get("/violations/mine", response_model=list[ViolationOut])
async def list_my_violations(
    current_user: User = Depends(require_role(UserRole.CUSTOMER, UserRole.PROVIDER)),
    db: AsyncSession = Depends(get_db),
):
    service = ViolationService()
    if current_user.role == UserRole.PROVIDER.value:
        violations = await service.list_for_provider(db, current_user.id)
    else:
        violations = await service.list_for_customer(db, current_user.id)
    return [ViolationOut.from_violation(v) for v in violations]


@router.get("/violations/{violation_id}", response_model=ViolationDetail)
async def get_violation(
    violation_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ViolationService().get_violation_detail(db, violation_id, current_user)


@router.get("/orders/{order_id}/violations", response_model=list[ViolationOut])
async def list_order_violations(
    order_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    violations = await ViolationService().list_for_order(db, order_id, current_user)
    return [ViolationOut.from_violation(v) for v in violations]
