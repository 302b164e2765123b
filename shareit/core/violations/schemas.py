import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shareit.common.enums import EvidenceUploadedBy, ViolationType
from shareit.core.settlement.calculator import compute_settlement
from shareit.core.violations.evidence import EvidenceFile
from shareit.core.violations.workflow import (
    resolution_label,
    status_label,
    uploader_label,
    violation_type_label,
)

NULLABLE_PATCH_FIELDS = frozenset({"damage_percentage"})


class ViolationReportItem(BaseModel):
    order_item_id: uuid.UUID
    violation_type: ViolationType
    description: str = Field(min_length=10, max_length=2000)
    damage_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    penalty_percentage: Decimal = Field(ge=0, le=100)
    penalty_amount: Decimal = Field(ge=0)
    evidence_files: list[EvidenceFile] = []


class ViolationPatch(BaseModel):
    """Partial revision of a rejected claim.

    Only fields the caller actually sent are applied; an omitted field keeps
    its stored value. ``damage_percentage`` is the one field that may be sent
    as null to clear it.
    """

    violation_type: ViolationType | None = None
    description: str | None = Field(default=None, min_length=10, max_length=2000)
    damage_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    penalty_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    penalty_amount: Decimal | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _no_explicit_nulls(self) -> "ViolationPatch":
        for name in self.model_fields_set:
            if name not in NULLABLE_PATCH_FIELDS and getattr(self, name) is None:
                raise ValueError(f"'{name}' cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            values[name] = value.value if isinstance(value, ViolationType) else value
        return values


class CustomerResponse(BaseModel):
    accepted: bool
    notes: str | None = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _notes_required_on_reject(self) -> "CustomerResponse":
        if not self.accepted and not (self.notes and self.notes.strip()):
            raise ValueError("Notes are required when rejecting a violation")
        return self


class ProviderReply(BaseModel):
    response: str = Field(min_length=1, max_length=2000)


class EscalationRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


# ---------- Read models ----------


class EvidenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    uploaded_by: str
    uploaded_by_label: str
    file_url: str
    file_type: str
    created_at: datetime


class ViolationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    order_item_id: uuid.UUID
    violation_type: str
    violation_type_label: str
    description: str
    damage_percentage: Decimal | None = None
    penalty_percentage: Decimal
    penalty_amount: Decimal
    status: str
    status_label: str
    customer_notes: str | None = None
    customer_response_at: datetime | None = None
    provider_response_to_customer: str | None = None
    provider_response_at: datetime | None = None
    provider_escalation_reason: str | None = None
    customer_escalation_reason: str | None = None
    escalated_at: datetime | None = None
    resolution_type: str | None = None
    resolution_label: str | None = None
    admin_resolution_note: str | None = None
    settled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_violation(cls, violation) -> "ViolationOut":
        return cls(**_violation_fields(violation))


class ViolationDetail(ViolationOut):
    product_name: str | None = None
    product_image_url: str | None = None
    quantity: int
    deposit_amount: Decimal
    refund_amount: Decimal
    uncovered_penalty_amount: Decimal
    provider_evidence: list[EvidenceOut] = []
    customer_evidence: list[EvidenceOut] = []

    @classmethod
    def from_violation(cls, violation) -> "ViolationDetail":
        item = violation.order_item
        product = item.product
        quote = compute_settlement(item.deposit_per_unit, item.quantity, violation.penalty_amount)
        evidence = [_evidence_out(e) for e in violation.evidence]
        return cls(
            **_violation_fields(violation),
            product_name=product.name if product else None,
            product_image_url=product.image_url if product else None,
            quantity=item.quantity,
            deposit_amount=quote.deposit_amount,
            refund_amount=quote.refund_amount,
            uncovered_penalty_amount=quote.uncovered_penalty,
            provider_evidence=[e for e in evidence if e.uploaded_by == EvidenceUploadedBy.PROVIDER.value],
            customer_evidence=[e for e in evidence if e.uploaded_by == EvidenceUploadedBy.CUSTOMER.value],
        )


def _evidence_out(evidence) -> EvidenceOut:
    return EvidenceOut(
        id=evidence.id,
        uploaded_by=evidence.uploaded_by,
        uploaded_by_label=uploader_label(evidence.uploaded_by),
        file_url=evidence.file_url,
        file_type=evidence.file_type,
        created_at=evidence.created_at,
    )


def _violation_fields(violation) -> dict[str, Any]:
    return {
        "id": violation.id,
        "order_id": violation.order_item.order_id,
        "order_item_id": violation.order_item_id,
        "violation_type": violation.violation_type,
        "violation_type_label": violation_type_label(violation.violation_type),
        "description": violation.description,
        "damage_percentage": violation.damage_percentage,
        "penalty_percentage": violation.penalty_percentage,
        "penalty_amount": violation.penalty_amount,
        "status": violation.status,
        "status_label": status_label(violation.status),
        "customer_notes": violation.customer_notes,
        "customer_response_at": violation.customer_response_at,
        "provider_response_to_customer": violation.provider_response_to_customer,
        "provider_response_at": violation.provider_response_at,
        "provider_escalation_reason": violation.provider_escalation_reason,
        "customer_escalation_reason": violation.customer_escalation_reason,
        "escalated_at": violation.escalated_at,
        "resolution_type": violation.resolution_type,
        "resolution_label": resolution_label(violation.resolution_type),
        "admin_resolution_note": violation.admin_resolution_note,
        "settled_at": violation.settled_at,
        "created_at": violation.created_at,
        "updated_at": violation.updated_at,
    }
