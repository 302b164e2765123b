import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shareit.common.enums import SettlementStatus
from shareit.db.base import AuditedModel


class DepositSettlement(AuditedModel):
    """Ledger row for one violation's deposit outcome.

    The unique ``violation_id`` is what makes settlement idempotent: a second
    settlement attempt for the same case finds (or collides with) this row.
    """

    __tablename__ = "deposit_settlements"

    violation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("rental_violations.id"), nullable=False, unique=True
    )
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    original_deposit_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    penalty_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    uncovered_penalty_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0.00")
    )
    status: Mapped[SettlementStatus] = mapped_column(
        String(20), nullable=False, default=SettlementStatus.INITIATED, index=True
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by_admin_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    external_transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    violation = relationship("RentalViolation", lazy="selectin")
    customer = relationship("User", foreign_keys=[customer_id], lazy="selectin")
