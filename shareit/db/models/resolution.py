import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shareit.common.enums import ResolutionType
from shareit.db.base import AuditedModel


class IssueResolution(AuditedModel):
    """Binding admin decision on an escalated violation. Written once."""

    __tablename__ = "issue_resolutions"

    violation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("rental_violations.id"), nullable=False, unique=True
    )
    resolution_type: Mapped[ResolutionType] = mapped_column(String(30), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    customer_fine_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    provider_compensation_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    processed_by_admin_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    violation = relationship("RentalViolation", back_populates="resolution")
    processed_by_admin = relationship("User", lazy="selectin")
