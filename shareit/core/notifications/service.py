"""Notification gateway: in-app inbox rows plus realtime push.

Delivery is fire-and-forget from the caller's point of view. Nothing in this
module raises; a failed delivery is logged and the triggering state change
stands.
"""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from shareit.common.enums import NotificationCategory
from shareit.common.logging import get_logger
from shareit.db.models.notification import Notification

logger = get_logger("notifications.service")


async def notify(
    db: AsyncSession,
    user_id: uuid.UUID,
    message: str,
    category: NotificationCategory | str = NotificationCategory.ORDER,
    order_id: uuid.UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> Notification | None:
    """Store an in-app notification and push it to the user's open sockets."""
    category_value = category.value if isinstance(category, NotificationCategory) else category

    notification = Notification(
        user_id=user_id,
        order_id=order_id,
        category=category_value,
        body=message,
        channel="in_app",
        metadata_=metadata or {},
    )
    try:
        # SAVEPOINT so a failed insert cannot poison the caller's transaction
        async with db.begin_nested():
            db.add(notification)
    except Exception as e:
        logger.error("Failed to store notification for user=%s: %s", user_id, e)
        return None

    logger.info("Created notification: category=%s user=%s order=%s", category_value, user_id, order_id)

    try:
        from shareit.api.v1.ws import notify_user

        await notify_user(str(user_id), category_value, {
            "id": str(notification.id),
            "message": message,
            "order_id": str(order_id) if order_id else None,
        })
    except Exception as e:
        logger.debug("Realtime push skipped: %s", e)

    return notification


async def notify_many(
    db: AsyncSession,
    user_ids: list[uuid.UUID],
    message: str,
    category: NotificationCategory | str = NotificationCategory.ORDER,
    order_id: uuid.UUID | None = None,
) -> int:
    delivered = 0
    for user_id in user_ids:
        if await notify(db, user_id, message, category, order_id) is not None:
            delivered += 1
    return delivered
