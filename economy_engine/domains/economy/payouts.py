"""
Payout hand-off after approval.

Delivering money is outside the engine: a ``PayoutGateway`` turns an
approved request into a payout reference and the ledger settles it. The
only gateway shipped records a manual payout for the finance team.
"""
from typing import Awaitable, Callable, Protocol

from economy_engine.domains.economy.models import WithdrawalRequest
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)


class PayoutGateway(Protocol):
    async def send(self, withdrawal: WithdrawalRequest, idempotency_key: str) -> str:
        """Pay out once per ``idempotency_key``; a repeat must return the same reference."""
        ...


class ManualPayoutGateway:
    async def send(self, withdrawal: WithdrawalRequest, idempotency_key: str) -> str:
        logger.info(
            f"Manual payout queued: withdrawal={withdrawal.id} key={idempotency_key} "
            f"user={withdrawal.user_id} method={withdrawal.method} "
            f"amount_usd={withdrawal.amount_usd}"
        )
        return f"manual-{withdrawal.id}"


class PayoutDispatcher(Protocol):
    async def dispatch(self, withdrawal_id: str) -> None:
        ...


class CeleryPayoutDispatcher:
    async def dispatch(self, withdrawal_id: str) -> None:
        from economy_engine.tasks.withdrawal_processor import dispatch_payout

        dispatch_payout.delay(withdrawal_id)
        logger.info(f"Payout for withdrawal {withdrawal_id} enqueued")


class InlinePayoutDispatcher:
    """Runs the payout in-process; local/dev and tests."""

    def __init__(self, process: Callable[[str], Awaitable[object]]):
        self.process = process

    async def dispatch(self, withdrawal_id: str) -> None:
        await self.process(withdrawal_id)
