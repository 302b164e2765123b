"""Initial schema - orders, violation cases, resolutions, deposit settlements

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

OPEN_STATUS_CLAUSE = sa.text("status IN ('pending', 'customer_rejected', 'pending_admin_review')")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _soft_delete() -> list[sa.Column]:
    return [
        sa.Column("is_deleted", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _fk(column: str, target: str, nullable: bool = False, index: bool = True) -> sa.Column:
    return sa.Column(
        column, postgresql.UUID(as_uuid=True), sa.ForeignKey(target), nullable=nullable, index=index
    )


def upgrade() -> None:
    # Users
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("avatar_url", sa.String(1000), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="customer"),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.text("true")),
        *_soft_delete(),
        *_timestamps(),
    )

    # Catalog
    op.create_table(
        "products",
        _uuid_pk(),
        _fk("provider_id", "users.id"),
        sa.Column("name", sa.String(500), nullable=False),
        sa.Column("image_url", sa.String(1000), nullable=True),
        sa.Column("value", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("compensation_policy", sa.Text, nullable=True),
        *_soft_delete(),
        *_timestamps(),
    )

    # Orders
    op.create_table(
        "orders",
        _uuid_pk(),
        _fk("customer_id", "users.id"),
        _fk("provider_id", "users.id"),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending", index=True),
        sa.Column("rental_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rental_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        *_soft_delete(),
        *_timestamps(),
    )

    op.create_table(
        "order_items",
        _uuid_pk(),
        _fk("order_id", "orders.id"),
        _fk("product_id", "products.id", index=False),
        sa.Column("transaction_type", sa.String(20), nullable=False, server_default="rental"),
        sa.Column("quantity", sa.Integer, nullable=False, server_default=sa.text("1")),
        sa.Column("daily_rate", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("deposit_per_unit", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        *_soft_delete(),
        *_timestamps(),
    )

    # Chat
    op.create_table(
        "messages",
        _uuid_pk(),
        _fk("sender_id", "users.id"),
        _fk("receiver_id", "users.id"),
        sa.Column("content", sa.Text, nullable=False, server_default=""),
        sa.Column("attachment_url", sa.String(1000), nullable=True),
        sa.Column("attachment_type", sa.String(20), nullable=True),
        sa.Column("attachment_name", sa.String(255), nullable=True),
        *_soft_delete(),
        *_timestamps(),
    )

    # Violation cases
    op.create_table(
        "rental_violations",
        _uuid_pk(),
        _fk("order_item_id", "order_items.id"),
        sa.Column("violation_type", sa.String(30), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("damage_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("penalty_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("penalty_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending", index=True),
        sa.Column("customer_notes", sa.Text, nullable=True),
        sa.Column("customer_response_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_response_to_customer", sa.Text, nullable=True),
        sa.Column("provider_response_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_escalation_reason", sa.Text, nullable=True),
        sa.Column("customer_escalation_reason", sa.Text, nullable=True),
        _fk("escalated_by_id", "users.id", nullable=True, index=False),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_type", sa.String(30), nullable=True),
        sa.Column("admin_resolution_note", sa.Text, nullable=True),
        sa.Column("settled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index(
        "uq_rental_violations_open_item",
        "rental_violations",
        ["order_item_id"],
        unique=True,
        postgresql_where=OPEN_STATUS_CLAUSE,
    )

    op.create_table(
        "rental_violation_evidence",
        _uuid_pk(),
        _fk("violation_id", "rental_violations.id"),
        sa.Column("uploaded_by", sa.String(20), nullable=False),
        sa.Column("file_url", sa.String(1000), nullable=False),
        sa.Column("file_key", sa.String(500), nullable=False),
        sa.Column("file_type", sa.String(20), nullable=False),
        *_timestamps(),
    )

    # Admin decisions
    op.create_table(
        "issue_resolutions",
        _uuid_pk(),
        sa.Column(
            "violation_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("rental_violations.id"), nullable=False, unique=True,
        ),
        sa.Column("resolution_type", sa.String(30), nullable=False),
        sa.Column("reason", sa.Text, nullable=False),
        sa.Column("customer_fine_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("provider_compensation_amount", sa.Numeric(12, 2), nullable=False),
        _fk("processed_by_admin_id", "users.id", index=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *_timestamps(),
    )

    # Deposit ledger
    op.create_table(
        "deposit_settlements",
        _uuid_pk(),
        sa.Column(
            "violation_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("rental_violations.id"), nullable=False, unique=True,
        ),
        _fk("order_id", "orders.id"),
        _fk("customer_id", "users.id"),
        sa.Column("original_deposit_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("penalty_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("refund_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("uncovered_penalty_amount", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default="initiated", index=True),
        sa.Column("notes", sa.Text, nullable=True),
        _fk("processed_by_admin_id", "users.id", nullable=True, index=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_transaction_id", sa.String(255), nullable=True),
        *_timestamps(),
    )

    # Notifications
    op.create_table(
        "notifications",
        _uuid_pk(),
        _fk("user_id", "users.id"),
        _fk("order_id", "orders.id", nullable=True),
        sa.Column("channel", sa.String(20), nullable=False, server_default="in_app"),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("is_read", sa.Boolean, server_default=sa.text("false")),
        sa.Column("metadata", postgresql.JSONB, nullable=True),
        *_soft_delete(),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("deposit_settlements")
    op.drop_table("issue_resolutions")
    op.drop_table("rental_violation_evidence")
    op.drop_index("uq_rental_violations_open_item", table_name="rental_violations")
    op.drop_table("rental_violations")
    op.drop_table("messages")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("products")
    op.drop_table("users")
