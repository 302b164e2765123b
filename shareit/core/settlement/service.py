import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shareit.common.enums import NotificationCategory, SettlementStatus, ViolationStatus
from shareit.common.exceptions import BadRequestError, NotFoundError
from shareit.common.logging import get_logger
from shareit.core.notifications.service import notify
from shareit.core.settlement.calculator import compute_settlement, is_settlement_eligible
from shareit.core.violations import store
from shareit.core.violations.service import ViolationService
from shareit.db.models.settlement import DepositSettlement
from shareit.db.models.user import User
from shareit.db.models.violation import RentalViolation

logger = get_logger("settlement.service")


class SettlementService:
    def __init__(self, violations: ViolationService | None = None) -> None:
        self.violations = violations or ViolationService()

    async def get_for_violation(
        self, db: AsyncSession, violation_id: uuid.UUID
    ) -> DepositSettlement | None:
        result = await db.execute(
            select(DepositSettlement)
            .where(DepositSettlement.violation_id == violation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, db: AsyncSession, settlement_id: uuid.UUID) -> DepositSettlement:
        result = await db.execute(
            select(DepositSettlement)
            .where(DepositSettlement.id == settlement_id)
            .execution_options(populate_existing=True)
        )
        settlement = result.scalar_one_or_none()
        if not settlement:
            raise NotFoundError("Settlement", str(settlement_id))
        return settlement

    async def settle(self, db: AsyncSession, violation_id: uuid.UUID) -> DepositSettlement:
        """Record the deposit outcome for a closed case, at most once.

        Calling this again for an already settled case returns the existing
        ledger row untouched.
        """
        existing = await self.get_for_violation(db, violation_id)
        if existing:
            logger.info("Violation %s already settled (settlement=%s)", violation_id, existing.id)
            return existing

        violation = await store.get_violation(db, violation_id)
        if not violation:
            raise NotFoundError("Violation", str(violation_id))
        if not is_settlement_eligible(violation.status, violation.resolution_type):
            raise BadRequestError(
                f"Violation in status '{violation.status}' is not ready for settlement"
            )

        item = violation.order_item
        order = violation.order
        quote = compute_settlement(item.deposit_per_unit, item.quantity, violation.penalty_amount)

        settlement = DepositSettlement(
            violation_id=violation.id,
            order_id=order.id,
            customer_id=order.customer_id,
            original_deposit_amount=quote.deposit_amount,
            penalty_amount=quote.penalty_amount,
            refund_amount=quote.refund_amount,
            uncovered_penalty_amount=quote.uncovered_penalty,
            status=SettlementStatus.INITIATED.value,
        )
        try:
            async with db.begin_nested():
                db.add(settlement)
        except IntegrityError:
            # A concurrent worker won the insert; its row is the settlement
            winner = await self.get_for_violation(db, violation_id)
            if winner is None:
                raise
            logger.info("Violation %s settled concurrently (settlement=%s)", violation_id, winner.id)
            return winner

        await self._close_case(db, violation)
        await self.violations.sync_order_after_violations(db, order.id)

        message = (
            f"Deposit settlement for order #{order.code}: deposit {quote.deposit_amount}, "
            f"penalty {quote.penalty_amount}, refund {quote.refund_amount}."
        )
        if not quote.fully_covered:
            message += f" Outstanding penalty not covered by the deposit: {quote.uncovered_penalty}."
        await notify(db, order.customer_id, message, NotificationCategory.SETTLEMENT, order.id)
        await notify(db, order.provider_id, message, NotificationCategory.SETTLEMENT, order.id)

        logger.info(
            "Settled violation %s: deposit=%s penalty=%s refund=%s uncovered=%s",
            violation_id, quote.deposit_amount, quote.penalty_amount,
            quote.refund_amount, quote.uncovered_penalty,
        )
        return await self.get(db, settlement.id)

    async def _close_case(self, db: AsyncSession, violation: RentalViolation) -> None:
        values: dict = {"settled_at": datetime.now(timezone.utc)}
        if violation.status == ViolationStatus.CUSTOMER_ACCEPTED.value:
            values["status"] = ViolationStatus.RESOLVED.value
        await store.compare_and_set(db, violation.id, (violation.status,), values)

    async def find_unsettled(self, db: AsyncSession, limit: int = 100) -> list[uuid.UUID]:
        """Closed cases that still have no ledger row, oldest first."""
        result = await db.execute(
            select(RentalViolation.id, RentalViolation.status, RentalViolation.resolution_type)
            .outerjoin(DepositSettlement, DepositSettlement.violation_id == RentalViolation.id)
            .where(
                DepositSettlement.id.is_(None),
                RentalViolation.status.in_([
                    ViolationStatus.CUSTOMER_ACCEPTED.value,
                    ViolationStatus.RESOLVED.value,
                ]),
            )
            .order_by(RentalViolation.created_at.asc())
            .limit(limit)
        )
        return [
            row.id for row in result.all()
            if is_settlement_eligible(row.status, row.resolution_type)
        ]

    # ---------- Payout processing ----------

    async def process_payout(
        self,
        db: AsyncSession,
        settlement_id: uuid.UUID,
        admin: User,
        approved: bool,
        notes: str | None = None,
        external_transaction_id: str | None = None,
    ) -> DepositSettlement:
        settlement = await self.get(db, settlement_id)
        if settlement.status != SettlementStatus.INITIATED.value:
            raise BadRequestError(f"Settlement is already {settlement.status}")
        if not approved and not (notes and notes.strip()):
            raise BadRequestError("A reason is required when rejecting a payout")

        settlement.status = (
            SettlementStatus.COMPLETED.value if approved else SettlementStatus.FAILED.value
        )
        settlement.notes = notes
        settlement.processed_by_admin_id = admin.id
        settlement.processed_at = datetime.now(timezone.utc)
        if external_transaction_id:
            settlement.external_transaction_id = external_transaction_id
        await db.flush()

        if approved:
            message = f"Your deposit refund of {settlement.refund_amount} has been processed."
        else:
            message = f"Your deposit refund could not be processed: {notes}"
        await notify(
            db, settlement.customer_id, message,
            NotificationCategory.SETTLEMENT, settlement.order_id,
        )
        logger.info(
            "Settlement %s %s by admin %s",
            settlement_id, settlement.status, admin.id,
        )
        return await self.get(db, settlement_id)

    async def reopen(self, db: AsyncSession, settlement_id: uuid.UUID) -> DepositSettlement:
        settlement = await self.get(db, settlement_id)
        if settlement.status != SettlementStatus.FAILED.value:
            raise BadRequestError("Only failed settlements can be reopened")
        settlement.status = SettlementStatus.INITIATED.value
        settlement.processed_by_admin_id = None
        settlement.processed_at = None
        await db.flush()
        logger.info("Settlement %s reopened", settlement_id)
        return await self.get(db, settlement_id)

    async def list_settlements(
        self, db: AsyncSession, status: SettlementStatus | None = None
    ) -> list[DepositSettlement]:
        query = select(DepositSettlement)
        if status is not None:
            query = query.where(DepositSettlement.status == status.value)
        result = await db.execute(query.order_by(DepositSettlement.created_at.desc()))
        return list(result.scalars().all())

    async def list_for_customer(
        self, db: AsyncSession, customer_id: uuid.UUID
    ) -> list[DepositSettlement]:
        result = await db.execute(
            select(DepositSettlement)
            .where(DepositSettlement.customer_id == customer_id)
            .order_by(DepositSettlement.created_at.desc())
        )
        return list(result.scalars().all())

    async def pending_count(self, db: AsyncSession) -> int:
        result = await db.execute(
            select(func.count(DepositSettlement.id)).where(
                DepositSettlement.status == SettlementStatus.INITIATED.value
            )
        )
        return result.scalar_one()
