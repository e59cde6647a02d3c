import asyncio

from economy_engine.core.celery import celery_app
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)


async def _run(coro):
    from economy_engine.core.database import engine

    try:
        return await coro
    finally:
        # Pooled connections are bound to this task's event loop
        await engine.dispose()


@celery_app.task(bind=True, max_retries=3)
def dispatch_payout(self, withdrawal_id: str):
    """Pay out an approved withdrawal and settle it"""
    from economy_engine.domains.economy.service import economy_service

    try:
        row = asyncio.run(_run(economy_service.process_payout(withdrawal_id)))
    except Exception as e:
        logger.error(f"Payout for withdrawal {withdrawal_id} failed: {e}")
        # Retry
        raise self.retry(exc=e, countdown=60)
    return row.status if row is not None else None


@celery_app.task
def sweep_processing_withdrawals():
    """Re-dispatch approved withdrawals that never settled"""
    from economy_engine.domains.economy.service import economy_service

    stuck = asyncio.run(_run(economy_service.redispatch_stuck()))
    if stuck:
        logger.info(f"Re-dispatched {len(stuck)} stuck withdrawals")
    return stuck
