"""Persistence queries for violation cases and the orders they hang off."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shareit.common.enums import ViolationStatus
from shareit.db.models.order import Order, OrderItem
from shareit.db.models.violation import OPEN_VIOLATION_STATUSES, RentalViolation


async def get_order_with_items(db: AsyncSession, order_id: uuid.UUID) -> Order | None:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id, Order.is_deleted.is_(False))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_violation(db: AsyncSession, violation_id: uuid.UUID) -> RentalViolation | None:
    # populate_existing so callers see the row as it is after a compare-and-set
    result = await db.execute(
        select(RentalViolation)
        .where(RentalViolation.id == violation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def find_open_violations(
    db: AsyncSession, order_item_ids: list[uuid.UUID]
) -> list[RentalViolation]:
    if not order_item_ids:
        return []
    result = await db.execute(
        select(RentalViolation).where(
            RentalViolation.order_item_id.in_(order_item_ids),
            RentalViolation.status.in_(OPEN_VIOLATION_STATUSES),
        )
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_by_order(db: AsyncSession, order_id: uuid.UUID) -> list[RentalViolation]:
    result = await db.execute(
        select(RentalViolation)
        .join(OrderItem, RentalViolation.order_item_id == OrderItem.id)
        .where(OrderItem.order_id == order_id)
        .order_by(RentalViolation.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_by_party(
    db: AsyncSession,
    customer_id: uuid.UUID | None = None,
    provider_id: uuid.UUID | None = None,
) -> list[RentalViolation]:
    query = (
        select(RentalViolation)
        .join(OrderItem, RentalViolation.order_item_id == OrderItem.id)
        .join(Order, OrderItem.order_id == Order.id)
    )
    filters = []
    if customer_id is not None:
        filters.append(Order.customer_id == customer_id)
    if provider_id is not None:
        filters.append(Order.provider_id == provider_id)
    if filters:
        query = query.where(or_(*filters))
    result = await db.execute(
        query.order_by(RentalViolation.created_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_by_status(db: AsyncSession, status: ViolationStatus) -> list[RentalViolation]:
    result = await db.execute(
        select(RentalViolation)
        .where(RentalViolation.status == status.value)
        .order_by(RentalViolation.created_at.asc(), RentalViolation.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def compare_and_set(
    db: AsyncSession,
    violation_id: uuid.UUID,
    expected: tuple[str, ...],
    values: dict[str, Any],
) -> bool:
    """Apply ``values`` only if the case is still in one of ``expected``.

    The status guard lives in the UPDATE itself, so two requests racing on the
    same case cannot both succeed against the same prior state.
    """
    result = await db.execute(
        update(RentalViolation)
        .where(RentalViolation.id == violation_id, RentalViolation.status.in_(expected))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1
