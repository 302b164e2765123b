import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shareit.common.enums import OrderStatus, TransactionType
from shareit.db.base import BaseModel


class Order(BaseModel):
    __tablename__ = "orders"

    customer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    status: Mapped[OrderStatus] = mapped_column(
        String(30), nullable=False, default=OrderStatus.PENDING, index=True
    )
    rental_start: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rental_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    customer = relationship("User", foreign_keys=[customer_id], lazy="selectin")
    provider = relationship("User", foreign_keys=[provider_id], lazy="selectin")
    items = relationship("OrderItem", back_populates="order", lazy="selectin")

    @property
    def code(self) -> str:
        return f"ORD-{str(self.id)[:8].upper()}"

    @property
    def has_rental_items(self) -> bool:
        return any(i.transaction_type == TransactionType.RENTAL.value for i in self.items)

    @property
    def is_purchase_only(self) -> bool:
        return bool(self.items) and all(
            i.transaction_type == TransactionType.PURCHASE.value for i in self.items
        )


class OrderItem(BaseModel):
    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("products.id"), nullable=False
    )
    transaction_type: Mapped[TransactionType] = mapped_column(
        String(20), nullable=False, default=TransactionType.RENTAL
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    daily_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    deposit_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    order = relationship("Order", back_populates="items", lazy="selectin")
    product = relationship("Product", lazy="selectin")

    @property
    def total_deposit(self) -> Decimal:
        return Decimal(self.deposit_per_unit) * self.quantity
