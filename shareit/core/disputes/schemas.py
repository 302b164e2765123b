import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from shareit.common.enums import ResolutionType
from shareit.core.violations.schemas import EvidenceOut, ViolationOut


class PendingCase(BaseModel):
    violation_id: uuid.UUID
    order_id: uuid.UUID
    violation_type: str
    violation_type_label: str
    description: str
    requested_compensation: Decimal
    product_name: str | None = None
    product_image_url: str | None = None
    provider_id: uuid.UUID
    provider_name: str
    customer_id: uuid.UUID
    customer_name: str
    escalated_at: datetime | None = None
    created_at: datetime


class ChatLine(BaseModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    receiver_id: uuid.UUID
    sender_name: str | None = None
    content: str
    attachment_url: str | None = None
    attachment_type: str | None = None
    attachment_name: str | None = None
    sent_at: datetime


class ProductInfo(BaseModel):
    id: uuid.UUID
    name: str
    image_url: str | None = None
    value: Decimal
    compensation_policy: str | None = None


class OrderItemInfo(BaseModel):
    id: uuid.UUID
    quantity: int
    deposit_per_unit: Decimal
    total_deposit: Decimal
    rental_start: datetime | None = None
    rental_end: datetime | None = None


class PartyInfo(BaseModel):
    id: uuid.UUID
    full_name: str
    email: str
    avatar_url: str | None = None


class CaseDossier(BaseModel):
    violation: ViolationOut
    provider_escalation_reason: str | None = None
    customer_escalation_reason: str | None = None
    provider_evidence: list[EvidenceOut] = []
    customer_evidence: list[EvidenceOut] = []
    chat: list[ChatLine] = []
    product: ProductInfo | None = None
    order_item: OrderItemInfo
    provider: PartyInfo
    customer: PartyInfo


class ResolutionRequest(BaseModel):
    resolution_type: ResolutionType
    reason: str = Field(min_length=10, max_length=3000)
    customer_fine_amount: Decimal | None = Field(default=None, ge=0)
    provider_compensation_amount: Decimal | None = Field(default=None, ge=0)


class ResolutionOut(BaseModel):
    model_config = {"from_attributes": True}

    id: uuid.UUID
    violation_id: uuid.UUID
    resolution_type: str
    reason: str
    customer_fine_amount: Decimal
    provider_compensation_amount: Decimal
    processed_by_admin_id: uuid.UUID
    processed_at: datetime
