import uuid
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from shareit.common.enums import (
    NotificationCategory,
    OrderStatus,
    TransactionType,
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
from shareit.core.violations import store
from shareit.core.violations.evidence import EvidenceFile
from shareit.core.violations.schemas import ViolationPatch, ViolationReportItem
from shareit.core.violations.service import ViolationService
from shareit.db.models.notification import Notification
from shareit.db.models.order import Order
from shareit.db.models.violation import RentalViolation, ViolationEvidence


def _photo(name: str = "damage.jpg") -> EvidenceFile:
    return EvidenceFile(filename=name, content_type="image/jpeg", content=b"\xff" * 2048)


def _report(item_id: uuid.UUID, **overrides) -> ViolationReportItem:
    data = {
        "order_item_id": item_id,
        "violation_type": ViolationType.DAMAGED,
        "description": "Large wine stain on the front panel",
        "damage_percentage": Decimal("30"),
        "penalty_percentage": Decimal("20"),
        "penalty_amount": Decimal("40"),
        "evidence_files": [_photo()],
    }
    data.update(overrides)
    return ViolationReportItem(**data)


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


@pytest.fixture
def service(storage):
    return ViolationService(storage)


# ---------- Reporting ----------


@pytest.mark.asyncio
async def test_report_creates_pending_case_with_evidence(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()

    violations = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    assert len(violations) == 1
    v = violations[0]
    assert v.status == ViolationStatus.PENDING.value
    assert v.penalty_amount == Decimal("40")
    assert len(v.evidence) == 1
    assert v.evidence[0].uploaded_by == "provider"
    assert v.evidence[0].file_type == "image"

    order = await store.get_order_with_items(db_session, order_id)
    assert order.status == OrderStatus.RETURNED_WITH_ISSUE.value


@pytest.mark.asyncio
async def test_report_sends_single_aggregated_notification(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, item_ids = await make_order(lines=[
        (TransactionType.RENTAL, 1, "200"),
        (TransactionType.RENTAL, 2, "150"),
    ])

    await service.report_violations(
        db_session, order_id, provider_user, [_report(i) for i in item_ids]
    )

    result = await db_session.execute(
        select(Notification).where(Notification.user_id == customer_user.id)
    )
    notifications = result.scalars().all()
    assert len(notifications) == 1
    assert notifications[0].category == NotificationCategory.VIOLATION.value
    assert "2 items" in notifications[0].body


@pytest.mark.asyncio
async def test_report_rejects_non_provider(db_session, service, make_order, customer_user):
    order_id, (item_id,) = await make_order()

    with pytest.raises(PermissionDeniedError):
        await service.report_violations(db_session, order_id, customer_user, [_report(item_id)])


@pytest.mark.asyncio
async def test_report_unknown_order(db_session, service, provider_user):
    with pytest.raises(NotFoundError):
        await service.report_violations(
            db_session, uuid.uuid4(), provider_user, [_report(uuid.uuid4())]
        )


@pytest.mark.asyncio
async def test_report_requires_goods_with_customer(db_session, service, make_order, provider_user):
    order_id, (item_id,) = await make_order(status=OrderStatus.IN_TRANSIT)

    with pytest.raises(BadRequestError):
        await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])


@pytest.mark.asyncio
async def test_report_rejects_item_from_other_order(db_session, service, make_order, provider_user):
    order_id, _ = await make_order()
    _, (foreign_item,) = await make_order()

    with pytest.raises(BadRequestError):
        await service.report_violations(db_session, order_id, provider_user, [_report(foreign_item)])


@pytest.mark.asyncio
async def test_report_rejects_duplicate_item_in_batch(db_session, service, make_order, provider_user):
    order_id, (item_id,) = await make_order()

    with pytest.raises(BadRequestError):
        await service.report_violations(
            db_session, order_id, provider_user, [_report(item_id), _report(item_id)]
        )
    assert await _count(db_session, RentalViolation) == 0


@pytest.mark.asyncio
async def test_report_requires_evidence(db_session, service, make_order, provider_user):
    order_id, (item_id,) = await make_order()

    with pytest.raises(BadRequestError):
        await service.report_violations(
            db_session, order_id, provider_user, [_report(item_id, evidence_files=[])]
        )


@pytest.mark.asyncio
async def test_batch_with_one_bad_file_creates_nothing(
    db_session, service, make_order, provider_user, storage
):
    order_id, item_ids = await make_order(lines=[
        (TransactionType.RENTAL, 1, "200"),
        (TransactionType.RENTAL, 1, "200"),
        (TransactionType.RENTAL, 1, "200"),
    ])
    bad = EvidenceFile(filename="notes.pdf", content_type="application/pdf", content=b"%PDF")
    items = [
        _report(item_ids[0]),
        _report(item_ids[1], evidence_files=[_photo(), bad]),
        _report(item_ids[2]),
    ]
    storage.upload = AsyncMock(wraps=storage.upload)

    with pytest.raises(BadRequestError):
        await service.report_violations(db_session, order_id, provider_user, items)

    assert await _count(db_session, RentalViolation) == 0
    assert await _count(db_session, ViolationEvidence) == 0
    storage.upload.assert_not_called()


@pytest.mark.asyncio
async def test_upload_failure_rolls_back_cases_and_uploaded_files(
    db_session, service, make_order, provider_user, storage
):
    order_id, item_ids = await make_order(lines=[
        (TransactionType.RENTAL, 1, "200"),
        (TransactionType.RENTAL, 1, "200"),
    ])
    real_upload = storage.upload
    calls = {"n": 0}

    async def flaky_upload(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OSError("disk full")
        return await real_upload(*args, **kwargs)

    storage.upload = flaky_upload
    storage.delete = AsyncMock(return_value=True)

    with pytest.raises(ExternalServiceError):
        await service.report_violations(
            db_session, order_id, provider_user, [_report(i) for i in item_ids]
        )

    assert await _count(db_session, RentalViolation) == 0
    assert storage.delete.await_count == 1
    order = await store.get_order_with_items(db_session, order_id)
    assert order.status == OrderStatus.RETURNING.value


@pytest.mark.asyncio
async def test_cleanup_failure_does_not_mask_original_error(
    db_session, service, make_order, provider_user, storage
):
    order_id, item_ids = await make_order(lines=[
        (TransactionType.RENTAL, 1, "200"),
        (TransactionType.RENTAL, 1, "200"),
    ])
    real_upload = storage.upload
    calls = {"n": 0}

    async def flaky_upload(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise OSError("bucket unavailable")
        return await real_upload(*args, **kwargs)

    storage.upload = flaky_upload
    storage.delete = AsyncMock(side_effect=RuntimeError("delete failed"))

    with pytest.raises(ExternalServiceError) as exc_info:
        await service.report_violations(
            db_session, order_id, provider_user, [_report(i) for i in item_ids]
        )
    assert "bucket unavailable" in exc_info.value.detail


@pytest.mark.asyncio
async def test_open_case_uniqueness(db_session, service, make_order, provider_user):
    order_id, (item_id,) = await make_order()
    await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    with pytest.raises(ConflictError):
        await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    assert await _count(db_session, RentalViolation) == 1


@pytest.mark.asyncio
async def test_open_case_index_rejects_concurrent_report(
    db_session, service, make_order, provider_user, monkeypatch
):
    order_id, (item_id,) = await make_order()
    await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    # Simulate a racing request that passed the pre-check before the first insert landed
    monkeypatch.setattr(store, "find_open_violations", AsyncMock(return_value=[]))

    with pytest.raises(ConflictError):
        await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    assert await _count(db_session, RentalViolation) == 1
    assert await _count(db_session, ViolationEvidence) == 1

@pytest.mark.asyncio
async def test_new_case_allowed_after_previous_closed(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (first,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    await service.customer_respond(db_session, first.id, customer_user, accepted=True)

    (second,) = await service.report_violations(
        db_session, order_id, provider_user,
        [_report(item_id, violation_type=ViolationType.LATE_RETURN, damage_percentage=None)],
    )
    assert second.status == ViolationStatus.PENDING.value
    assert second.id != first.id


# ---------- Customer response ----------


@pytest.mark.asyncio
async def test_accept_is_single_transition(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    accepted = await service.customer_respond(db_session, v.id, customer_user, accepted=True)
    assert accepted.status == ViolationStatus.CUSTOMER_ACCEPTED.value
    assert accepted.customer_response_at is not None

    with pytest.raises(InvalidTransitionError):
        await service.customer_respond(db_session, v.id, customer_user, accepted=True)

    reloaded = await store.get_violation(db_session, v.id)
    assert reloaded.status == ViolationStatus.CUSTOMER_ACCEPTED.value


@pytest.mark.asyncio
async def test_accept_with_evidence_rejected(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    with pytest.raises(BadRequestError):
        await service.customer_respond(
            db_session, v.id, customer_user, accepted=True, evidence_files=[_photo("receipt.jpg")]
        )
    case = await store.get_violation(db_session, v.id)
    assert case.status == ViolationStatus.PENDING.value
    assert await _count(db_session, ViolationEvidence) == 1

@pytest.mark.asyncio
async def test_accepting_last_case_returns_order(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    await service.customer_respond(db_session, v.id, customer_user, accepted=True)

    order = await store.get_order_with_items(db_session, order_id)
    assert order.status == OrderStatus.RETURNED.value


@pytest.mark.asyncio
async def test_order_stays_with_issue_while_a_case_is_open(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, item_ids = await make_order(lines=[
        (TransactionType.RENTAL, 1, "200"),
        (TransactionType.RENTAL, 1, "200"),
    ])
    v1, _ = await service.report_violations(
        db_session, order_id, provider_user, [_report(i) for i in item_ids]
    )

    await service.customer_respond(db_session, v1.id, customer_user, accepted=True)

    order = await store.get_order_with_items(db_session, order_id)
    assert order.status == OrderStatus.RETURNED_WITH_ISSUE.value


@pytest.mark.asyncio
async def test_reject_stores_notes_and_customer_evidence(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    rejected = await service.customer_respond(
        db_session, v.id, customer_user, accepted=False,
        notes="not my fault", evidence_files=[_photo("before.png")],
    )

    assert rejected.status == ViolationStatus.CUSTOMER_REJECTED.value
    assert rejected.customer_notes == "not my fault"
    uploaders = sorted(e.uploaded_by for e in rejected.evidence)
    assert uploaders == ["customer", "provider"]


@pytest.mark.asyncio
async def test_only_order_customer_may_respond(
    db_session, service, make_order, provider_user, other_customer
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    with pytest.raises(PermissionDeniedError):
        await service.customer_respond(db_session, v.id, other_customer, accepted=True)


@pytest.mark.asyncio
async def test_lost_race_leaves_case_untouched(
    db_session, service, make_order, provider_user, customer_user, monkeypatch
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    async def lose(*args, **kwargs):
        return False

    monkeypatch.setattr(store, "compare_and_set", lose)

    with pytest.raises(InvalidTransitionError):
        await service.customer_respond(db_session, v.id, customer_user, accepted=True)

    monkeypatch.undo()
    reloaded = await store.get_violation(db_session, v.id)
    assert reloaded.status == ViolationStatus.PENDING.value
    assert reloaded.customer_response_at is None


# ---------- Provider side ----------


@pytest.mark.asyncio
async def test_revise_resets_response_fields(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    await service.customer_respond(db_session, v.id, customer_user, accepted=False, notes="too high")

    revised = await service.provider_revise(
        db_session, v.id, provider_user, ViolationPatch(penalty_amount=Decimal("20"))
    )

    assert revised.status == ViolationStatus.PENDING.value
    assert revised.customer_notes is None
    assert revised.customer_response_at is None
    assert revised.penalty_amount == Decimal("20")
    assert revised.description == "Large wine stain on the front panel"
    assert revised.damage_percentage == Decimal("30")


@pytest.mark.asyncio
async def test_revise_with_empty_patch_still_resets(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    await service.customer_respond(db_session, v.id, customer_user, accepted=False, notes="no")

    revised = await service.provider_revise(db_session, v.id, provider_user, ViolationPatch())

    assert revised.status == ViolationStatus.PENDING.value
    assert revised.customer_notes is None
    assert revised.penalty_amount == Decimal("40")


@pytest.mark.asyncio
async def test_revise_can_clear_damage_percentage(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    await service.customer_respond(db_session, v.id, customer_user, accepted=False, notes="no")

    patch = ViolationPatch.model_validate({
        "violation_type": "late_return",
        "damage_percentage": None,
    })
    revised = await service.provider_revise(db_session, v.id, provider_user, patch)

    assert revised.violation_type == ViolationType.LATE_RETURN.value
    assert revised.damage_percentage is None


@pytest.mark.asyncio
async def test_revise_to_non_damage_type_clears_damage_percentage(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    await service.customer_respond(db_session, v.id, customer_user, accepted=False, notes="no")

    revised = await service.provider_revise(
        db_session, v.id, provider_user, ViolationPatch(violation_type=ViolationType.NOT_RETURNED)
    )

    assert revised.violation_type == ViolationType.NOT_RETURNED.value
    assert revised.damage_percentage is None

@pytest.mark.asyncio
async def test_revise_requires_rejected_case(db_session, service, make_order, provider_user):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    with pytest.raises(InvalidTransitionError):
        await service.provider_revise(
            db_session, v.id, provider_user, ViolationPatch(penalty_amount=Decimal("10"))
        )


@pytest.mark.asyncio
async def test_provider_reply_keeps_status(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    await service.customer_respond(db_session, v.id, customer_user, accepted=False, notes="no")

    replied = await service.provider_respond_to_customer(
        db_session, v.id, provider_user, "The stain was not there at pickup."
    )

    assert replied.status == ViolationStatus.CUSTOMER_REJECTED.value
    assert replied.provider_response_to_customer == "The stain was not there at pickup."
    assert replied.provider_response_at is not None


# ---------- Escalation ----------


@pytest.mark.asyncio
async def test_escalation_keeps_party_reasons_apart(
    db_session, service, make_order, provider_user, customer_user, admin_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    await service.customer_respond(db_session, v.id, customer_user, accepted=False, notes="no")

    escalated = await service.escalate(db_session, v.id, provider_user, "Customer refuses to pay")

    assert escalated.status == ViolationStatus.PENDING_ADMIN_REVIEW.value
    assert escalated.provider_escalation_reason == "Customer refuses to pay"
    assert escalated.customer_escalation_reason is None
    assert escalated.escalated_by_id == provider_user.id

    result = await db_session.execute(
        select(Notification).where(
            Notification.user_id == admin_user.id,
            Notification.category == NotificationCategory.DISPUTE.value,
        )
    )
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_customer_can_escalate_pending_case(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    escalated = await service.escalate(db_session, v.id, customer_user, "Penalty is unfair")

    assert escalated.customer_escalation_reason == "Penalty is unfair"
    assert escalated.provider_escalation_reason is None


@pytest.mark.asyncio
async def test_escalation_by_stranger_denied(
    db_session, service, make_order, provider_user, other_customer
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    with pytest.raises(PermissionDeniedError):
        await service.escalate(db_session, v.id, other_customer, "I want in")


@pytest.mark.asyncio
async def test_accepted_case_cannot_escalate(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])
    await service.customer_respond(db_session, v.id, customer_user, accepted=True)

    with pytest.raises(InvalidTransitionError):
        await service.escalate(db_session, v.id, provider_user)


# ---------- Access ----------


@pytest.mark.asyncio
async def test_can_access(
    db_session, service, make_order, provider_user, customer_user, other_customer, admin_user
):
    order_id, (item_id,) = await make_order()
    (v,) = await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    assert await service.can_access(db_session, v.id, admin_user)
    assert await service.can_access(db_session, v.id, provider_user)
    assert await service.can_access(db_session, v.id, customer_user)
    assert not await service.can_access(db_session, v.id, other_customer)
    assert not await service.can_access(db_session, uuid.uuid4(), admin_user)


@pytest.mark.asyncio
async def test_detail_shows_prospective_refund(
    db_session, service, make_order, provider_user, customer_user
):
    order_id, (item_id,) = await make_order(lines=[(TransactionType.RENTAL, 2, "100")])
    (v,) = await service.report_violations(
        db_session, order_id, provider_user, [_report(item_id, penalty_amount=Decimal("50"))]
    )

    detail = await service.get_violation_detail(db_session, v.id, customer_user)

    assert detail.deposit_amount == Decimal("200.00")
    assert detail.refund_amount == Decimal("150.00")
    assert detail.status_label == "Awaiting customer response"
    assert detail.violation_type_label == "Item damaged"
    assert len(detail.provider_evidence) == 1
    assert detail.customer_evidence == []


@pytest.mark.asyncio
async def test_party_listings(db_session, service, make_order, provider_user, customer_user, other_customer):
    order_id, (item_id,) = await make_order()
    await service.report_violations(db_session, order_id, provider_user, [_report(item_id)])

    assert len(await service.list_for_provider(db_session, provider_user.id)) == 1
    assert len(await service.list_for_customer(db_session, customer_user.id)) == 1
    assert await service.list_for_customer(db_session, other_customer.id) == []
    assert len(await service.list_for_order(db_session, order_id, customer_user)) == 1
    with pytest.raises(PermissionDeniedError):
        await service.list_for_order(db_session, order_id, other_customer)


@pytest.mark.asyncio
async def test_sync_ignores_orders_not_waiting_on_cases(db_session, service, make_order):
    order_id, _ = await make_order(status=OrderStatus.IN_USE)

    assert await service.sync_order_after_violations(db_session, order_id) is False
    order = (await db_session.execute(select(Order).where(Order.id == order_id))).scalar_one()
    assert order.status == OrderStatus.IN_USE.value
