"""Time-driven order transitions.

Orders that sit in transit are moved to in-use once the customer can be
assumed to have them: a rental once its rental period starts or a grace
period after delivery, a purchase-only order a longer grace period after
delivery.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shareit.common.enums import NotificationCategory, OrderStatus
from shareit.common.logging import get_logger
from shareit.config import settings
from shareit.core.notifications.service import notify
from shareit.core.violations.store import get_order_with_items
from shareit.db.models.order import Order

logger = get_logger("orders.lifecycle")

RULE_RENTAL_STARTED = "rental_started"
RULE_RENTAL_DELIVERED = "rental_delivered"
RULE_PURCHASE_DELIVERED = "purchase_delivered"

_CUSTOMER_MESSAGES = {
    RULE_RENTAL_STARTED: "Your rental period for order #{code} has started. Enjoy your outfit!",
    RULE_RENTAL_DELIVERED: (
        "Order #{code} was delivered {hours} hours ago and is now marked as in use."
    ),
    RULE_PURCHASE_DELIVERED: (
        "Order #{code} was delivered {days} days ago and has been confirmed automatically."
    ),
}

_PROVIDER_MESSAGES = {
    RULE_RENTAL_STARTED: "The rental period for order #{code} has started; the order is now in use.",
    RULE_RENTAL_DELIVERED: (
        "Order #{code} was automatically marked as in use {hours} hours after delivery."
    ),
    RULE_PURCHASE_DELIVERED: (
        "Order #{code} was automatically confirmed {days} days after delivery."
    ),
}


@dataclass
class AdvanceResult:
    advanced: list[uuid.UUID] = field(default_factory=list)
    failed: list[uuid.UUID] = field(default_factory=list)
    checked: int = 0


def _as_utc(value: datetime | None) -> datetime | None:
    # Some drivers hand back naive timestamps; stored values are always UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def advance_rule(order: Order, now: datetime) -> str | None:
    """Name of the rule that moves ``order`` to in-use at ``now``, if any."""
    now = _as_utc(now)
    delivered_at = _as_utc(order.delivered_at)

    if order.is_purchase_only:
        window = timedelta(days=settings.PURCHASE_AUTO_CONFIRM_DAYS)
        if delivered_at is not None and delivered_at + window <= now:
            return RULE_PURCHASE_DELIVERED
        return None

    rental_start = _as_utc(order.rental_start)
    if rental_start is not None and rental_start <= now:
        return RULE_RENTAL_STARTED
    window = timedelta(hours=settings.RENTAL_AUTO_CONFIRM_HOURS)
    if delivered_at is not None and delivered_at + window <= now:
        return RULE_RENTAL_DELIVERED
    return None


async def advance_in_transit_orders(db: AsyncSession, now: datetime | None = None) -> AdvanceResult:
    """Move every due in-transit order to in-use, committing each one separately."""
    now = _as_utc(now) or datetime.now(timezone.utc)
    result = await db.execute(
        select(Order.id)
        .where(Order.status == OrderStatus.IN_TRANSIT.value, Order.is_deleted.is_(False))
        .order_by(Order.created_at.asc())
    )
    order_ids = list(result.scalars().all())
    outcome = AdvanceResult(checked=len(order_ids))

    for order_id in order_ids:
        try:
            order = await get_order_with_items(db, order_id)
            rule = advance_rule(order, now) if order else None
            if rule is None:
                continue

            updated = await db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.IN_TRANSIT.value)
                .values(status=OrderStatus.IN_USE.value)
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                await db.rollback()
                continue
            await db.commit()
        except asyncio.CancelledError:
            await db.rollback()
            raise
        except Exception as e:
            await db.rollback()
            outcome.failed.append(order_id)
            logger.error("Failed to advance order %s: %s", order_id, e)
            continue

        outcome.advanced.append(order_id)
        logger.info("Order %s advanced to in_use (rule=%s)", order_id, rule)
        await _notify_parties(db, order, rule)

    logger.info(
        "In-transit sweep done: checked=%d advanced=%d failed=%d",
        outcome.checked, len(outcome.advanced), len(outcome.failed),
    )
    return outcome


async def _notify_parties(db: AsyncSession, order: Order, rule: str) -> None:
    params = {
        "code": order.code,
        "hours": settings.RENTAL_AUTO_CONFIRM_HOURS,
        "days": settings.PURCHASE_AUTO_CONFIRM_DAYS,
    }
    try:
        await notify(
            db, order.customer_id, _CUSTOMER_MESSAGES[rule].format(**params),
            NotificationCategory.ORDER, order.id, {"rule": rule},
        )
        await notify(
            db, order.provider_id, _PROVIDER_MESSAGES[rule].format(**params),
            NotificationCategory.ORDER, order.id, {"rule": rule},
        )
        await db.commit()
    except asyncio.CancelledError:
        await db.rollback()
        raise
    except Exception as e:
        await db.rollback()
        logger.warning("Notifications for order %s not delivered: %s", order.id, e)
