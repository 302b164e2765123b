import uuid
from decimal import Decimal

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shareit.common.enums import (
    EvidenceUploadedBy,
    NotificationCategory,
    ResolutionType,
    ViolationStatus,
)
from shareit.common.exceptions import ConflictError, InvalidTransitionError, NotFoundError
from shareit.common.logging import get_logger
from shareit.core.disputes.schemas import (
    CaseDossier,
    ChatLine,
    OrderItemInfo,
    PartyInfo,
    PendingCase,
    ProductInfo,
)
from shareit.core.notifications.service import notify
from shareit.core.settlement.calculator import ZERO, to_money
from shareit.core.violations import store
from shareit.core.violations.schemas import EvidenceOut, ViolationOut
from shareit.core.violations.service import ViolationService
from shareit.core.violations.workflow import (
    resolution_label,
    uploader_label,
    violation_type_label,
)
from shareit.db.models.message import Message
from shareit.db.models.resolution import IssueResolution
from shareit.db.models.user import User

logger = get_logger("disputes.service")


def resolve_amounts(
    resolution_type: ResolutionType,
    current_penalty: Decimal,
    customer_fine_amount: Decimal | None = None,
    provider_compensation_amount: Decimal | None = None,
) -> tuple[Decimal, Decimal]:
    """Return (customer fine, provider compensation) for an admin decision.

    The fine also becomes the case penalty that settlement charges against
    the deposit.
    """
    if resolution_type == ResolutionType.UPHOLD_CLAIM:
        fine = to_money(current_penalty)
        return fine, fine
    if resolution_type == ResolutionType.REJECT_CLAIM:
        return ZERO, ZERO

    fine = to_money(current_penalty if customer_fine_amount is None else customer_fine_amount)
    compensation = fine if provider_compensation_amount is None else to_money(provider_compensation_amount)
    return fine, compensation


class ArbitrationService:
    """Admin review of escalated violation cases."""

    def __init__(self, violations: ViolationService | None = None) -> None:
        self.violations = violations or ViolationService()

    async def list_pending_cases(self, db: AsyncSession) -> list[PendingCase]:
        cases = await store.list_by_status(db, ViolationStatus.PENDING_ADMIN_REVIEW)
        summaries = []
        for v in cases:
            order = v.order
            product = v.order_item.product
            summaries.append(PendingCase(
                violation_id=v.id,
                order_id=order.id,
                violation_type=v.violation_type,
                violation_type_label=violation_type_label(v.violation_type),
                description=v.description,
                requested_compensation=v.penalty_amount,
                product_name=product.name if product else None,
                product_image_url=product.image_url if product else None,
                provider_id=order.provider_id,
                provider_name=order.provider.full_name,
                customer_id=order.customer_id,
                customer_name=order.customer.full_name,
                escalated_at=v.escalated_at,
                created_at=v.created_at,
            ))
        return summaries

    async def get_case_dossier(self, db: AsyncSession, violation_id: uuid.UUID) -> CaseDossier:
        violation = await store.get_violation(db, violation_id)
        if not violation:
            raise NotFoundError("Violation", str(violation_id))

        item = violation.order_item
        order = violation.order
        product = item.product

        evidence = [
            EvidenceOut(
                id=e.id,
                uploaded_by=e.uploaded_by,
                uploaded_by_label=uploader_label(e.uploaded_by),
                file_url=e.file_url,
                file_type=e.file_type,
                created_at=e.created_at,
            )
            for e in violation.evidence
        ]
        chat = await self._chat_between(db, order.customer_id, order.provider_id)

        return CaseDossier(
            violation=ViolationOut.from_violation(violation),
            provider_escalation_reason=violation.provider_escalation_reason,
            customer_escalation_reason=violation.customer_escalation_reason,
            provider_evidence=[e for e in evidence if e.uploaded_by == EvidenceUploadedBy.PROVIDER.value],
            customer_evidence=[e for e in evidence if e.uploaded_by == EvidenceUploadedBy.CUSTOMER.value],
            chat=chat,
            product=ProductInfo(
                id=product.id,
                name=product.name,
                image_url=product.image_url,
                value=product.value,
                compensation_policy=product.compensation_policy,
            ) if product else None,
            order_item=OrderItemInfo(
                id=item.id,
                quantity=item.quantity,
                deposit_per_unit=item.deposit_per_unit,
                total_deposit=item.total_deposit,
                rental_start=order.rental_start,
                rental_end=order.rental_end,
            ),
            provider=_party(order.provider),
            customer=_party(order.customer),
        )

    async def record_resolution(
        self,
        db: AsyncSession,
        violation_id: uuid.UUID,
        admin: User,
        resolution_type: ResolutionType,
        reason: str,
        customer_fine_amount: Decimal | None = None,
        provider_compensation_amount: Decimal | None = None,
    ) -> IssueResolution:
        violation = await store.get_violation(db, violation_id)
        if not violation:
            raise NotFoundError("Violation", str(violation_id))
        if violation.status != ViolationStatus.PENDING_ADMIN_REVIEW.value:
            raise InvalidTransitionError(
                violation.status, ViolationStatus.RESOLVED.value,
                detail="Only cases awaiting admin review can be resolved",
            )
        if violation.resolution is not None:
            raise ConflictError("This violation already has a resolution")

        fine, compensation = resolve_amounts(
            resolution_type, violation.penalty_amount,
            customer_fine_amount, provider_compensation_amount,
        )
        resolution = IssueResolution(
            violation_id=violation.id,
            resolution_type=resolution_type.value,
            reason=reason,
            customer_fine_amount=fine,
            provider_compensation_amount=compensation,
            processed_by_admin_id=admin.id,
        )

        try:
            async with db.begin_nested():
                ok = await store.compare_and_set(
                    db, violation.id, (ViolationStatus.PENDING_ADMIN_REVIEW.value,),
                    {
                        "status": ViolationStatus.RESOLVED.value,
                        "resolution_type": resolution_type.value,
                        "admin_resolution_note": reason,
                        "penalty_amount": fine,
                    },
                )
                if not ok:
                    raise InvalidTransitionError(
                        ViolationStatus.PENDING_ADMIN_REVIEW.value,
                        ViolationStatus.RESOLVED.value,
                        detail="The case was resolved by another request",
                    )
                db.add(resolution)
        except IntegrityError as e:
            raise ConflictError("This violation already has a resolution") from e

        order = violation.order
        label = resolution_label(resolution_type.value)
        await notify(
            db,
            order.customer_id,
            f"An admin resolved the dispute on order #{order.code}: {label}. Fine: {fine}.",
            NotificationCategory.DISPUTE,
            order.id,
        )
        await notify(
            db,
            order.provider_id,
            f"An admin resolved the dispute on order #{order.code}: {label}. "
            f"Compensation: {compensation}.",
            NotificationCategory.DISPUTE,
            order.id,
        )
        await self.violations.sync_order_after_violations(db, order.id)

        logger.info(
            "Admin %s resolved violation %s: %s (fine=%s compensation=%s)",
            admin.id, violation_id, resolution_type.value, fine, compensation,
        )
        result = await db.execute(
            select(IssueResolution)
            .where(IssueResolution.violation_id == violation.id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    @staticmethod
    async def _chat_between(
        db: AsyncSession, customer_id: uuid.UUID, provider_id: uuid.UUID
    ) -> list[ChatLine]:
        result = await db.execute(
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == customer_id, Message.receiver_id == provider_id),
                    and_(Message.sender_id == provider_id, Message.receiver_id == customer_id),
                ),
                Message.is_deleted.is_(False),
            )
            .order_by(Message.created_at.asc())
        )
        return [
            ChatLine(
                id=m.id,
                sender_id=m.sender_id,
                receiver_id=m.receiver_id,
                sender_name=m.sender.full_name if m.sender else None,
                content=m.content,
                attachment_url=m.attachment_url,
                attachment_type=m.attachment_type,
                attachment_name=m.attachment_name,
                sent_at=m.created_at,
            )
            for m in result.scalars().all()
        ]


def _party(user: User) -> PartyInfo:
    return PartyInfo(
        id=user.id, full_name=user.full_name, email=user.email, avatar_url=user.avatar_url
    )

