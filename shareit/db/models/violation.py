import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shareit.common.enums import (
    EvidenceFileType,
    EvidenceUploadedBy,
    ResolutionType,
    ViolationStatus,
    ViolationType,
)
from shareit.db.base import AuditedModel

OPEN_VIOLATION_STATUSES = (
    ViolationStatus.PENDING.value,
    ViolationStatus.CUSTOMER_REJECTED.value,
    ViolationStatus.PENDING_ADMIN_REVIEW.value,
)

_OPEN_STATUS_CLAUSE = text(
    "status IN (" + ", ".join(f"'{s}'" for s in OPEN_VIOLATION_STATUSES) + ")"
)


class RentalViolation(AuditedModel):
    __tablename__ = "rental_violations"
    __table_args__ = (
        # One open case per rented unit; closed cases stay for audit
        Index(
            "uq_rental_violations_open_item",
            "order_item_id",
            unique=True,
            postgresql_where=_OPEN_STATUS_CLAUSE,
            sqlite_where=_OPEN_STATUS_CLAUSE,
        ),
    )

    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("order_items.id"), nullable=False, index=True
    )
    violation_type: Mapped[ViolationType] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    damage_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    penalty_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    penalty_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[ViolationStatus] = mapped_column(
        String(30), nullable=False, default=ViolationStatus.PENDING, index=True
    )

    customer_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_response_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    provider_response_to_customer: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_response_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    provider_escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    customer_escalation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    escalated_by_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    escalated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    resolution_type: Mapped[ResolutionType | None] = mapped_column(String(30), nullable=True)
    admin_resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    order_item = relationship("OrderItem", lazy="selectin")
    evidence = relationship(
        "ViolationEvidence",
        back_populates="violation",
        lazy="selectin",
        order_by="ViolationEvidence.created_at",
    )
    resolution = relationship(
        "IssueResolution", back_populates="violation", uselist=False, lazy="selectin"
    )

    @property
    def order(self):
        return self.order_item.order

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_VIOLATION_STATUSES


class ViolationEvidence(AuditedModel):
    __tablename__ = "rental_violation_evidence"

    violation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("rental_violations.id"), nullable=False, index=True
    )
    uploaded_by: Mapped[EvidenceUploadedBy] = mapped_column(String(20), nullable=False)
    file_url: Mapped[str] = mapped_column(String(1000), nullable=False)
    file_key: Mapped[str] = mapped_column(String(500), nullable=False)
    file_type: Mapped[EvidenceFileType] = mapped_column(String(20), nullable=False)

    violation = relationship("RentalViolation", back_populates="evidence")
