import asyncio
import uuid

from shareit.common.logging import get_logger
from shareit.tasks.celery_app import app

logger = get_logger("tasks.settlement")


def _run_async(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


@app.task(
    bind=True,
    name="shareit.tasks.settlement_tasks.settle_violation",
    max_retries=5,
    default_retry_delay=60,
)
def settle_violation(self, violation_id: str):
    """Write the deposit settlement for one closed case. Safe to run twice."""
    logger.info("Settling violation %s", violation_id)

    async def _settle():
        from shareit.common.enums import ViolationStatus
        from shareit.common.exceptions import BadRequestError
        from shareit.core.settlement.service import SettlementService
        from shareit.core.violations import store
        from shareit.db.session import async_session_factory

        async with async_session_factory() as db:
            try:
                settlement = await SettlementService().settle(db, uuid.UUID(violation_id))
                await db.commit()
                return "settled", str(settlement.id)
            except BadRequestError:
                await db.rollback()
                violation = await store.get_violation(db, uuid.UUID(violation_id))
                if violation is not None and violation.status == ViolationStatus.RESOLVED.value:
                    # Closed with no penalty to collect, e.g. a rejected claim
                    return "skipped", None
                # Enqueued before the deciding transaction committed
                return "pending", None
            except Exception as e:
                await db.rollback()
                logger.error("Settlement failed for violation %s: %s", violation_id, e)
                raise

    outcome, settlement_id = _run_async(_settle())
    if outcome == "skipped":
        logger.info("Violation %s resolved without a settleable outcome, nothing to settle", violation_id)
        return None
    if outcome == "pending":
        logger.info("Violation %s not ready for settlement, retrying", violation_id)
        raise self.retry()
    logger.info("Violation %s settled (settlement=%s)", violation_id, settlement_id)
    return settlement_id


@app.task(name="shareit.tasks.settlement_tasks.settle_pending_violations")
def settle_pending_violations():
    """Celery Beat task: settle closed cases that never got a ledger row."""
    logger.info("Checking for unsettled violations")

    async def _sweep():
        from shareit.core.settlement.service import SettlementService
        from shareit.db.session import async_session_factory

        settled = []
        async with async_session_factory() as db:
            service = SettlementService()
            for violation_id in await service.find_unsettled(db):
                try:
                    settlement = await service.settle(db, violation_id)
                    await db.commit()
                    settled.append(str(settlement.id))
                except Exception as e:
                    await db.rollback()
                    logger.error("Settlement sweep failed for violation %s: %s", violation_id, e)
        if settled:
            logger.info("Settled %d pending violations", len(settled))
        return settled

    return _run_async(_sweep())
