"""Violation state machine rules.

pending -> customer_accepted | customer_rejected | pending_admin_review
customer_rejected -> pending (provider revises) | pending_admin_review
pending_admin_review -> resolved (admin decision)
customer_accepted -> resolved (settlement recorded)
"""

from shareit.common.enums import (
    EvidenceUploadedBy,
    OrderStatus,
    ResolutionType,
    ViolationStatus,
    ViolationType,
)
from shareit.common.exceptions import InvalidTransitionError

VIOLATION_TRANSITIONS: dict[ViolationStatus, frozenset[ViolationStatus]] = {
    ViolationStatus.PENDING: frozenset({
        ViolationStatus.CUSTOMER_ACCEPTED,
        ViolationStatus.CUSTOMER_REJECTED,
        ViolationStatus.PENDING_ADMIN_REVIEW,
    }),
    ViolationStatus.CUSTOMER_REJECTED: frozenset({
        ViolationStatus.PENDING,
        ViolationStatus.PENDING_ADMIN_REVIEW,
    }),
    ViolationStatus.PENDING_ADMIN_REVIEW: frozenset({ViolationStatus.RESOLVED}),
    ViolationStatus.CUSTOMER_ACCEPTED: frozenset({ViolationStatus.RESOLVED}),
    ViolationStatus.RESOLVED: frozenset(),
}

CLOSED_STATUSES = frozenset({ViolationStatus.CUSTOMER_ACCEPTED, ViolationStatus.RESOLVED})

# Reporting only makes sense once the customer has the goods
REPORTABLE_ORDER_STATUSES = frozenset({
    OrderStatus.IN_USE,
    OrderStatus.RETURNING,
    OrderStatus.RETURNED,
    OrderStatus.RETURNED_WITH_ISSUE,
})

_STATUS_LABELS = {
    ViolationStatus.PENDING: "Awaiting customer response",
    ViolationStatus.CUSTOMER_ACCEPTED: "Accepted by customer",
    ViolationStatus.CUSTOMER_REJECTED: "Rejected by customer",
    ViolationStatus.PENDING_ADMIN_REVIEW: "Awaiting admin review",
    ViolationStatus.RESOLVED: "Resolved",
}

_TYPE_LABELS = {
    ViolationType.DAMAGED: "Item damaged",
    ViolationType.LATE_RETURN: "Returned late",
    ViolationType.NOT_RETURNED: "Not returned",
}

_RESOLUTION_LABELS = {
    ResolutionType.UPHOLD_CLAIM: "Claim upheld",
    ResolutionType.REJECT_CLAIM: "Claim rejected",
    ResolutionType.COMPROMISE: "Compromise",
}


def can_transition(current: str, target: str) -> bool:
    try:
        return ViolationStatus(target) in VIOLATION_TRANSITIONS[ViolationStatus(current)]
    except ValueError:
        return False


def assert_violation_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(str(current), str(target))


def sources_for(target: ViolationStatus) -> tuple[str, ...]:
    """Statuses a case may be in for ``target`` to be a legal next step."""
    return tuple(
        src.value for src, targets in VIOLATION_TRANSITIONS.items() if target in targets
    )


def status_label(status: str) -> str:
    try:
        return _STATUS_LABELS[ViolationStatus(status)]
    except ValueError:
        return str(status)


def violation_type_label(violation_type: str) -> str:
    try:
        return _TYPE_LABELS[ViolationType(violation_type)]
    except ValueError:
        return str(violation_type)


def resolution_label(resolution_type: str | None) -> str | None:
    if resolution_type is None:
        return None
    try:
        return _RESOLUTION_LABELS[ResolutionType(resolution_type)]
    except ValueError:
        return str(resolution_type)


def uploader_label(uploaded_by: str) -> str:
    return "Provider" if uploaded_by == EvidenceUploadedBy.PROVIDER.value else "Customer"
