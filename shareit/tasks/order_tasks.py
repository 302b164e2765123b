import asyncio

from shareit.common.logging import get_logger
from shareit.tasks.celery_app import app

logger = get_logger("tasks.order")


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@app.task(name="shareit.tasks.order_tasks.advance_in_transit_orders")
def advance_in_transit_orders():
    """Celery Beat task: move due in-transit orders to in-use.

    Failures are logged and not retried; the next daily run picks up
    whatever is still due.
    """
    logger.info("Sweeping in-transit orders")

    async def _sweep():
        from shareit.core.orders.lifecycle import advance_in_transit_orders as sweep
        from shareit.db.session import async_session_factory

        async with async_session_factory() as db:
            outcome = await sweep(db)
            return {
                "checked": outcome.checked,
                "advanced": [str(i) for i in outcome.advanced],
                "failed": [str(i) for i in outcome.failed],
            }

    try:
        return _run_async(_sweep())
    except Exception as e:
        logger.error("In-transit sweep failed: %s", e)
        return None
