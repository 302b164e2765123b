"""Rental violation workflow: report, respond, revise, escalate."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shareit.common.enums import (
    EvidenceUploadedBy,
    NotificationCategory,
    OrderStatus,
    UserRole,
    ViolationStatus,
    ViolationType,
)
from shareit.common.exceptions import (
    BadRequestError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from shareit.common.logging import get_logger
from shareit.core.notifications.service import notify, notify_many
from shareit.core.violations import store
from shareit.core.violations.evidence import (
    EvidenceFile,
    classify_evidence,
    validate_evidence_batch,
)
from shareit.core.violations.schemas import (
    ViolationDetail,
    ViolationPatch,
    ViolationReportItem,
)
from shareit.core.violations.workflow import (
    CLOSED_STATUSES,
    REPORTABLE_ORDER_STATUSES,
    assert_violation_transition,
)
from shareit.db.models.order import Order
from shareit.db.models.user import User
from shareit.db.models.violation import RentalViolation, ViolationEvidence
from shareit.integrations.storage import EvidenceStorageClient, StoredFile

logger = get_logger("violations.service")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ViolationService:
    def __init__(self, storage: EvidenceStorageClient | None = None) -> None:
        self.storage = storage or EvidenceStorageClient()

    # ---------- Reporting ----------

    async def report_violations(
        self,
        db: AsyncSession,
        order_id: uuid.UUID,
        provider: User,
        items: list[ViolationReportItem],
    ) -> list[RentalViolation]:
        """Open one case per listed order item, all or nothing."""
        order = await store.get_order_with_items(db, order_id)
        if not order:
            raise NotFoundError("Order", str(order_id))
        if order.provider_id != provider.id:
            raise PermissionDeniedError("You do not have permission to access this order")
        if OrderStatus(order.status) not in REPORTABLE_ORDER_STATUSES:
            raise BadRequestError(
                f"Violations cannot be reported while the order is '{order.status}'"
            )
        if not items:
            raise BadRequestError("At least one violation is required")

        order_item_ids = {item.id for item in order.items}
        seen: set[uuid.UUID] = set()
        for item in items:
            if item.order_item_id not in order_item_ids:
                raise BadRequestError(f"Item {item.order_item_id} does not belong to this order")
            if item.order_item_id in seen:
                raise BadRequestError(f"Item {item.order_item_id} is listed more than once")
            seen.add(item.order_item_id)
            validate_evidence_batch(item.evidence_files, require_at_least_one=True)

        already_open = await store.find_open_violations(db, list(seen))
        if already_open:
            ids = ", ".join(str(v.order_item_id) for v in already_open)
            raise ConflictError(f"Items already have an open violation: {ids}")

        uploaded_keys: list[str] = []
        created: list[RentalViolation] = []
        try:
            async with db.begin_nested():
                for item in items:
                    violation = RentalViolation(
                        order_item_id=item.order_item_id,
                        violation_type=item.violation_type.value,
                        description=item.description,
                        damage_percentage=item.damage_percentage,
                        penalty_percentage=item.penalty_percentage,
                        penalty_amount=item.penalty_amount,
                        status=ViolationStatus.PENDING.value,
                    )
                    db.add(violation)
                    await db.flush()
                    created.append(violation)

                    stored = await self._upload_evidence(
                        item.evidence_files, provider.id, uploaded_keys
                    )
                    self._attach_evidence(db, violation.id, stored, EvidenceUploadedBy.PROVIDER)

                if order.status == OrderStatus.RETURNING.value:
                    order.status = OrderStatus.RETURNED_WITH_ISSUE.value
                await db.flush()
        except IntegrityError as e:
            await self._discard_uploads(uploaded_keys)
            raise ConflictError("An item in this report already has an open violation") from e
        except BaseException:
            await self._discard_uploads(uploaded_keys)
            raise

        count = len(created)
        noun = "items" if count > 1 else "item"
        await notify(
            db,
            order.customer_id,
            f"Violation report: {count} {noun} from order #{order.code} have been reported "
            "with issues. Please review and respond.",
            NotificationCategory.VIOLATION,
            order.id,
        )
        logger.info(
            "Provider %s reported %d violation(s) on order %s", provider.id, count, order.id
        )
        return [await self._reload(db, v.id) for v in created]

    # ---------- Customer response ----------

    async def customer_respond(
        self,
        db: AsyncSession,
        violation_id: uuid.UUID,
        customer: User,
        accepted: bool,
        notes: str | None = None,
        evidence_files: list[EvidenceFile] | None = None,
    ) -> RentalViolation:
        violation = await self._get(db, violation_id)
        order = violation.order
        if order.customer_id != customer.id:
            raise PermissionDeniedError("You do not have permission to respond to this violation")
        if violation.status != ViolationStatus.PENDING.value:
            raise InvalidTransitionError(
                violation.status, detail="This violation has already been responded to"
            )

        if accepted:
            if evidence_files:
                raise BadRequestError("Evidence can only be attached when rejecting a violation")
            await self._transition(
                db, violation, ViolationStatus.CUSTOMER_ACCEPTED,
                customer_response_at=_now(),
            )
            await notify(
                db,
                order.provider_id,
                f"The customer accepted the violation claim on order #{order.code}.",
                NotificationCategory.VIOLATION,
                order.id,
            )
            await self.sync_order_after_violations(db, order.id)
            logger.info("Violation %s accepted by customer %s", violation_id, customer.id)
            return await self._reload(db, violation_id)

        files = evidence_files or []
        validate_evidence_batch(files)

        uploaded_keys: list[str] = []
        try:
            async with db.begin_nested():
                await self._transition(
                    db, violation, ViolationStatus.CUSTOMER_REJECTED,
                    customer_notes=notes,
                    customer_response_at=_now(),
                )
                stored = await self._upload_evidence(files, customer.id, uploaded_keys)
                self._attach_evidence(db, violation.id, stored, EvidenceUploadedBy.CUSTOMER)
                await db.flush()
        except BaseException:
            await self._discard_uploads(uploaded_keys)
            raise

        await notify(
            db,
            order.provider_id,
            f"The customer rejected the violation claim on order #{order.code}. "
            "You can adjust the claim or escalate to an admin for review.",
            NotificationCategory.VIOLATION,
            order.id,
        )
        logger.info("Violation %s rejected by customer %s", violation_id, customer.id)
        return await self._reload(db, violation_id)

    # ---------- Provider side ----------

    async def provider_respond_to_customer(
        self,
        db: AsyncSession,
        violation_id: uuid.UUID,
        provider: User,
        response: str,
    ) -> RentalViolation:
        violation = await self._get(db, violation_id)
        order = violation.order
        if order.provider_id != provider.id:
            raise PermissionDeniedError("You do not have permission to respond to this violation")
        if violation.status != ViolationStatus.CUSTOMER_REJECTED.value:
            raise InvalidTransitionError(
                violation.status, detail="You can only reply after the customer rejects the claim"
            )

        ok = await store.compare_and_set(
            db, violation.id, (ViolationStatus.CUSTOMER_REJECTED.value,),
            {"provider_response_to_customer": response, "provider_response_at": _now()},
        )
        if not ok:
            raise InvalidTransitionError(
                ViolationStatus.CUSTOMER_REJECTED.value,
                detail="The violation changed while your reply was being saved",
            )

        await notify(
            db,
            order.customer_id,
            f"The provider replied to your rejection on order #{order.code}.",
            NotificationCategory.VIOLATION,
            order.id,
        )
        return await self._reload(db, violation_id)

    async def provider_revise(
        self,
        db: AsyncSession,
        violation_id: uuid.UUID,
        provider: User,
        patch: ViolationPatch,
    ) -> RentalViolation:
        """Amend a rejected claim and hand it back to the customer."""
        violation = await self._get(db, violation_id)
        order = violation.order
        if order.provider_id != provider.id:
            raise PermissionDeniedError("You do not have permission to edit this violation")
        if violation.status != ViolationStatus.CUSTOMER_REJECTED.value:
            raise InvalidTransitionError(
                violation.status,
                detail="A violation can only be revised after the customer rejects it",
            )

        changes = patch.changes()
        if changes.get("violation_type", ViolationType.DAMAGED.value) != ViolationType.DAMAGED.value:
            changes["damage_percentage"] = None
        await self._transition(
            db, violation, ViolationStatus.PENDING,
            customer_notes=None,
            customer_response_at=None,
            **changes,
        )

        await notify(
            db,
            order.customer_id,
            f"The provider revised the violation claim on order #{order.code}. "
            "Please review and respond again.",
            NotificationCategory.VIOLATION,
            order.id,
        )
        logger.info(
            "Violation %s revised by provider %s (fields=%s)",
            violation_id, provider.id, sorted(changes) or "none",
        )
        return await self._reload(db, violation_id)

    # ---------- Escalation ----------

    async def escalate(
        self,
        db: AsyncSession,
        violation_id: uuid.UUID,
        user: User,
        reason: str | None = None,
    ) -> RentalViolation:
        violation = await self._get(db, violation_id)
        order = violation.order

        if user.id == order.provider_id:
            party, other_party_id = "provider", order.customer_id
            values = {"provider_escalation_reason": reason}
        elif user.id == order.customer_id:
            party, other_party_id = "customer", order.provider_id
            values = {"customer_escalation_reason": reason}
        else:
            raise PermissionDeniedError("You do not have permission to escalate this violation")

        if violation.status not in (
            ViolationStatus.PENDING.value, ViolationStatus.CUSTOMER_REJECTED.value
        ):
            raise InvalidTransitionError(
                violation.status, detail="This violation cannot be escalated at this time"
            )

        await self._transition(
            db, violation, ViolationStatus.PENDING_ADMIN_REVIEW,
            escalated_by_id=user.id,
            escalated_at=_now(),
            **values,
        )

        admin_ids = await self._admin_ids(db)
        await notify_many(
            db,
            admin_ids,
            f"New dispute case requires review: a violation on order #{order.code} "
            f"was escalated by the {party}.",
            NotificationCategory.DISPUTE,
            order.id,
        )
        await notify(
            db,
            other_party_id,
            f"The {party} escalated the violation dispute on order #{order.code} to an admin.",
            NotificationCategory.DISPUTE,
            order.id,
        )
        logger.info("Violation %s escalated by %s %s", violation_id, party, user.id)
        return await self._reload(db, violation_id)

    # ---------- Access & reads ----------

    async def can_access(self, db: AsyncSession, violation_id: uuid.UUID, user: User) -> bool:
        violation = await store.get_violation(db, violation_id)
        if not violation:
            return False
        return self._has_access(violation.order, user)

    async def get_for_user(
        self, db: AsyncSession, violation_id: uuid.UUID, user: User
    ) -> RentalViolation:
        violation = await self._get(db, violation_id)
        if not self._has_access(violation.order, user):
            raise PermissionDeniedError("You do not have access to this violation")
        return violation

    async def list_for_order(
        self, db: AsyncSession, order_id: uuid.UUID, user: User
    ) -> list[RentalViolation]:
        order = await store.get_order_with_items(db, order_id)
        if not order:
            raise NotFoundError("Order", str(order_id))
        if not self._has_access(order, user):
            raise PermissionDeniedError("You do not have access to this order")
        return await store.list_by_order(db, order_id)

    async def get_violation_detail(
        self, db: AsyncSession, violation_id: uuid.UUID, user: User
    ) -> ViolationDetail:
        violation = await self.get_for_user(db, violation_id, user)
        return ViolationDetail.from_violation(violation)

    async def list_for_customer(
        self, db: AsyncSession, customer_id: uuid.UUID
    ) -> list[RentalViolation]:
        return await store.list_by_party(db, customer_id=customer_id)

    async def list_for_provider(
        self, db: AsyncSession, provider_id: uuid.UUID
    ) -> list[RentalViolation]:
        return await store.list_by_party(db, provider_id=provider_id)

    # ---------- Order follow-up ----------

    async def sync_order_after_violations(self, db: AsyncSession, order_id: uuid.UUID) -> bool:
        """Mark a returned-with-issue order as returned once every case is closed."""
        order = await store.get_order_with_items(db, order_id)
        if not order or order.status != OrderStatus.RETURNED_WITH_ISSUE.value:
            return False

        violations = await store.list_by_order(db, order_id)
        if not violations:
            return False
        if any(ViolationStatus(v.status) not in CLOSED_STATUSES for v in violations):
            return False

        order.status = OrderStatus.RETURNED.value
        await db.flush()

        await notify(
            db,
            order.customer_id,
            f"All violation issues on order #{order.code} are resolved. "
            "The order has been marked as returned.",
            NotificationCategory.ORDER,
            order.id,
        )
        await notify(
            db,
            order.provider_id,
            f"All violation issues on order #{order.code} are resolved. "
            "Order status updated to returned.",
            NotificationCategory.ORDER,
            order.id,
        )
        logger.info("Order %s returned after all violations closed", order_id)
        return True

    # ---------- Internals ----------

    @staticmethod
    def _has_access(order: Order, user: User) -> bool:
        if user.is_staff:
            return True
        if user.role == UserRole.PROVIDER.value and order.provider_id == user.id:
            return True
        if user.role == UserRole.CUSTOMER.value and order.customer_id == user.id:
            return True
        return False

    async def _get(self, db: AsyncSession, violation_id: uuid.UUID) -> RentalViolation:
        violation = await store.get_violation(db, violation_id)
        if not violation:
            raise NotFoundError("Violation", str(violation_id))
        return violation

    async def _reload(self, db: AsyncSession, violation_id: uuid.UUID) -> RentalViolation:
        return await self._get(db, violation_id)

    async def _transition(
        self,
        db: AsyncSession,
        violation: RentalViolation,
        target: ViolationStatus,
        **values,
    ) -> None:
        assert_violation_transition(violation.status, target.value)
        ok = await store.compare_and_set(
            db, violation.id, (violation.status,), {"status": target.value, **values}
        )
        if not ok:
            # Someone else moved the case between our read and write
            raise InvalidTransitionError(
                violation.status, target.value,
                detail="The violation was updated by another request; reload and try again",
            )

    async def _upload_evidence(
        self,
        files: list[EvidenceFile],
        owner_id: uuid.UUID,
        uploaded_keys: list[str],
    ) -> list[tuple[EvidenceFile, StoredFile]]:
        if not files:
            return []
        results = await asyncio.gather(
            *(
                self.storage.upload(f.content, f.filename, f.content_type, owner_id)
                for f in files
            ),
            return_exceptions=True,
        )

        stored: list[tuple[EvidenceFile, StoredFile]] = []
        failure: BaseException | None = None
        for file, result in zip(files, results):
            if isinstance(result, BaseException):
                failure = failure or result
                continue
            uploaded_keys.append(result.file_key)
            stored.append((file, result))

        if failure is not None:
            if not isinstance(failure, Exception):
                raise failure
            raise ExternalServiceError("evidence storage", str(failure)) from failure
        return stored

    @staticmethod
    def _attach_evidence(
        db: AsyncSession,
        violation_id: uuid.UUID,
        stored: list[tuple[EvidenceFile, StoredFile]],
        uploaded_by: EvidenceUploadedBy,
    ) -> None:
        for file, result in stored:
            db.add(ViolationEvidence(
                violation_id=violation_id,
                uploaded_by=uploaded_by.value,
                file_url=result.url,
                file_key=result.file_key,
                file_type=classify_evidence(file).value,
            ))

    async def _discard_uploads(self, file_keys: list[str]) -> None:
        for key in file_keys:
            try:
                await self.storage.delete(key)
            except Exception as e:
                logger.warning("Evidence cleanup failed for %s: %s", key, e)
        if file_keys:
            logger.info("Rolled back %d uploaded evidence file(s)", len(file_keys))

    @staticmethod
    async def _admin_ids(db: AsyncSession) -> list[uuid.UUID]:
        result = await db.execute(
            select(User.id).where(
                User.role == UserRole.ADMIN.value,
                User.is_active.is_(True),
                User.is_deleted.is_(False),
            )
        )
        return list(result.scalars().all())
