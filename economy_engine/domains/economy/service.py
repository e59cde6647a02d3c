# economy_engine/domains/economy/service.py
"""
Economy service: the facade the API, event handlers and tasks call.

Each public operation fetches one config snapshot, runs its read-then-write
work through the optimistic-concurrency runner and publishes a domain event
once the transaction has committed.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from economy_engine.core.config import PayoutDispatch, Settings, settings
from economy_engine.core.event_bus import event_bus
from economy_engine.core.transactions import TransactionRunner
from economy_engine.domains.economy import ledger, repository, rewards
from economy_engine.domains.economy.config_store import EconomyConfigStore
from economy_engine.domains.economy.currency import CurrencyConverter, Quote
from economy_engine.domains.economy.entities import (EarningSource,
                                                     EconomyConfig,
                                                     WithdrawalStatus)
from economy_engine.domains.economy.errors import WithdrawalNotFound
from economy_engine.domains.economy.models import (EarningEvent,
                                                   EconomyConfigVersion,
                                                   UserEconomyState,
                                                   WithdrawalRequest)
from economy_engine.domains.economy.payouts import (CeleryPayoutDispatcher,
                                                    InlinePayoutDispatcher,
                                                    ManualPayoutGateway,
                                                    PayoutDispatcher,
                                                    PayoutGateway)
from economy_engine.shared.schemas.events import (PointsGranted,
                                                  WithdrawalCreated,
                                                  WithdrawalProcessed)
from economy_engine.shared.utils.clock import utcnow
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)


class EconomyService:
    """Points economy and withdrawal ledger operations"""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        config_store: Optional[EconomyConfigStore] = None,
        dispatcher: Optional[PayoutDispatcher] = None,
        gateway: Optional[PayoutGateway] = None,
        clock: Callable[[], datetime] = utcnow,
        app_settings: Optional[Settings] = None,
    ):
        self.settings = app_settings or settings
        if session_factory is None:
            from economy_engine.core.database import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory

        if config_store is None:
            from economy_engine.core.redis import RedisManager

            config_store = EconomyConfigStore(
                session_factory,
                ttl_seconds=self.settings.CONFIG_CACHE_TTL_SECONDS,
                redis_factory=RedisManager.get_client,
                channel=self.settings.CONFIG_INVALIDATION_CHANNEL,
            )
        self.config_store = config_store

        if dispatcher is None:
            if self.settings.PAYOUT_DISPATCH == PayoutDispatch.INLINE:
                dispatcher = InlinePayoutDispatcher(self.process_payout)
            else:
                dispatcher = CeleryPayoutDispatcher()
        self.dispatcher = dispatcher
        self.gateway = gateway or ManualPayoutGateway()
        self.clock = clock

        self.transaction = TransactionRunner(
            session_factory,
            attempts=self.settings.TXN_MAX_ATTEMPTS,
            backoff_seconds=self.settings.TXN_BACKOFF_SECONDS,
            backoff_max_seconds=self.settings.TXN_BACKOFF_MAX_SECONDS,
        )

    # ------------------------------------------------------------------
    # Rewards
    # ------------------------------------------------------------------

    async def grant(self, user_id: str, action_type: str) -> EarningEvent:
        """Award points for a completed action."""
        config = await self.config_store.get()
        calculator = rewards.RewardCalculator(config)
        now = self.clock()

        async def work(session: AsyncSession) -> EarningEvent:
            return await calculator.grant(session, user_id, action_type, now)

        event = await self.transaction("grant", work)
        logger.info(
            f"Granted {event.final_points} points to {user_id} for {action_type} "
            f"(x{event.multiplier}, config v{config.version})"
        )
        await event_bus.publish(
            "economy:points_granted",
            PointsGranted(
                user_id=user_id,
                event_id=event.id,
                action_type=action_type,
                final_points=event.final_points,
                multiplier=event.multiplier,
            ).model_dump(),
        )
        return event

    async def check_in(self, user_id: str) -> Tuple[UserEconomyState, bool]:
        now = self.clock()

        async def work(session: AsyncSession):
            return await rewards.check_in(session, user_id, now)

        state, extended = await self.transaction("check_in", work)
        if extended:
            logger.info(f"User {user_id} checked in, streak {state.daily_streak}")
        return state, extended

    async def grant_boost(
        self, user_id: str, factor: float, expires_at: Optional[datetime] = None
    ) -> UserEconomyState:
        now = self.clock()
        expiry = _naive_utc(expires_at) if expires_at else None

        async def work(session: AsyncSession):
            return await rewards.set_boost(session, user_id, factor, expiry, now)

        state = await self.transaction("grant_boost", work)
        logger.info(f"Boost x{factor} armed for {user_id} until {expires_at or 'used'}")
        return state

    async def sync_profile(self, user_id: str, profile: Mapping[str, Any]) -> UserEconomyState:
        """Copy the identity layer's view of the user onto their economy state."""
        now = self.clock()

        async def work(session: AsyncSession):
            state = await repository.get_or_create_state(session, user_id, now)
            country = profile.get("country")
            state.country = country.upper() if country else None
            state.email_verified = bool(profile.get("email_verified"))
            state.phone_verified = bool(profile.get("phone_verified"))
            state.device_id = profile.get("device_id")
            state.ip_address = profile.get("ip_address")
            if profile.get("account_created_at") is not None:
                state.account_created_at = _naive_utc(profile["account_created_at"])
            return state

        state = await self.transaction("sync_profile", work)
        logger.info(f"Profile synced for {user_id}")
        return state

    async def earning_history(self, user_id: str, limit: int = 50) -> Sequence[EarningEvent]:
        async with self.session_factory() as session:
            return await repository.list_earning_events(session, user_id, limit)

    async def earning_summary(self, user_id: str) -> Dict[str, Any]:
        async with self.session_factory() as session:
            state = await repository.get_state(session, user_id)
            by_source = await repository.earning_totals_by_source(session, user_id)
            reserved = await repository.reserved_points(session, user_id)

        totals = {source.value: by_source.get(source.value, 0) for source in EarningSource}
        return {
            "user_id": user_id,
            "balance": state.total_points if state else 0,
            "reserved": reserved,
            "total_earned": sum(totals.values()),
            "by_source": totals,
            "daily_streak": state.daily_streak if state else 0,
        }

    # ------------------------------------------------------------------
    # Withdrawals
    # ------------------------------------------------------------------

    async def quote(self, user_id: str, points: int) -> Quote:
        config = await self.config_store.get()
        async with self.session_factory() as session:
            state = await repository.get_state(session, user_id)
        country = state.country if state else None
        return CurrencyConverter(config).quote(points, country)

    async def create_withdrawal(
        self, user_id: str, amount: int, method: str, fields: Mapping[str, Any]
    ) -> WithdrawalRequest:
        config = await self.config_store.get()
        withdrawals = ledger.WithdrawalLedger(config)
        now = self.clock()

        async def work(session: AsyncSession):
            return await withdrawals.create(session, user_id, amount, method, fields, now)

        row, assessment = await self.transaction("create_withdrawal", work)
        logger.info(
            f"Withdrawal {row.id} created for {user_id}: {amount} points = "
            f"${row.amount_usd}, risk {assessment.score} {list(assessment.signals)}"
        )
        await event_bus.publish(
            "economy:withdrawal_created",
            WithdrawalCreated(
                user_id=user_id,
                withdrawal_id=row.id,
                amount_points=row.amount_points,
                amount_usd=str(row.amount_usd),
                risk_score=row.risk_score,
                fraud_signals=list(row.fraud_signals),
            ).model_dump(),
        )
        return row

    async def get_withdrawal(self, withdrawal_id: str) -> WithdrawalRequest:
        async with self.session_factory() as session:
            row = await repository.get_withdrawal(session, withdrawal_id)
        if row is None:
            raise WithdrawalNotFound(withdrawal_id)
        return row

    async def list_user_withdrawals(
        self, user_id: str, limit: int = 50
    ) -> Sequence[WithdrawalRequest]:
        async with self.session_factory() as session:
            return await repository.list_user_withdrawals(session, user_id, limit)

    async def list_withdrawals(
        self, status: Optional[str] = None, limit: int = 100
    ) -> Sequence[WithdrawalRequest]:
        async with self.session_factory() as session:
            return await repository.list_withdrawals_by_status(session, status, limit)

    async def approve_withdrawal(
        self, withdrawal_id: str, admin_id: str, admin_note: Optional[str] = None
    ) -> WithdrawalRequest:
        now = self.clock()

        async def work(session: AsyncSession):
            return await ledger.approve(session, withdrawal_id, admin_id, now, admin_note)

        row = await self.transaction("approve_withdrawal", work)
        logger.info(f"Withdrawal {withdrawal_id} approved by {admin_id}")
        await self._publish_processed(row)

        try:
            await self.dispatcher.dispatch(row.id)
        except Exception as e:
            # Stays in processing; the sweep re-dispatches it
            logger.error(f"Payout dispatch for {row.id} failed: {e}")
        return await self.get_withdrawal(row.id)

    async def reject_withdrawal(
        self,
        withdrawal_id: str,
        admin_id: str,
        reason: Optional[str],
        admin_note: Optional[str] = None,
    ) -> WithdrawalRequest:
        now = self.clock()

        async def work(session: AsyncSession):
            return await ledger.reject(session, withdrawal_id, admin_id, reason, now, admin_note)

        row = await self.transaction("reject_withdrawal", work)
        logger.info(
            f"Withdrawal {withdrawal_id} rejected by {admin_id}, "
            f"{row.amount_points} points refunded to {row.user_id}"
        )
        await self._publish_processed(row)
        return row

    async def process_withdrawal_action(
        self,
        withdrawal_id: str,
        action: str,
        admin_id: str,
        rejection_reason: Optional[str] = None,
        admin_note: Optional[str] = None,
    ) -> WithdrawalRequest:
        if action == "approve":
            return await self.approve_withdrawal(withdrawal_id, admin_id, admin_note)
        return await self.reject_withdrawal(withdrawal_id, admin_id, rejection_reason, admin_note)

    async def settle_withdrawal(
        self, withdrawal_id: str, reference: Optional[str] = None
    ) -> WithdrawalRequest:
        now = self.clock()

        async def work(session: AsyncSession):
            return await ledger.settle(session, withdrawal_id, reference, now)

        row, changed = await self.transaction("settle_withdrawal", work)
        if changed:
            logger.info(f"Withdrawal {withdrawal_id} settled ({reference})")
            await self._publish_processed(row)
        else:
            logger.info(f"Withdrawal {withdrawal_id} already settled, nothing to do")
        return row

    async def process_payout(self, withdrawal_id: str) -> Optional[WithdrawalRequest]:
        """Send an approved request through the gateway and settle it."""
        now = self.clock()
        lease = timedelta(minutes=self.settings.PAYOUT_SWEEP_AFTER_MINUTES)

        async def claim(session: AsyncSession):
            return await ledger.claim_payout(session, withdrawal_id, now, lease)

        row, claimed = await self.transaction("claim_payout", claim)
        if row.status == WithdrawalStatus.COMPLETED.value:
            return row
        if row.status != WithdrawalStatus.PROCESSING.value:
            logger.warning(f"Payout skipped for {withdrawal_id} in status {row.status}")
            return None
        if not claimed:
            logger.info(f"Payout for {withdrawal_id} already in flight, skipping")
            return None

        try:
            reference = await self.gateway.send(row, idempotency_key=row.id)
        except Exception:
            async def release(session: AsyncSession):
                return await ledger.release_payout(session, withdrawal_id)

            await self.transaction("release_payout", release)
            raise
        return await self.settle_withdrawal(withdrawal_id, reference)

    async def redispatch_stuck(self) -> List[str]:
        """Hand stuck payouts to the dispatcher again, at most PAYOUT_MAX_DISPATCHES times."""
        now = self.clock()
        cutoff = now - timedelta(minutes=self.settings.PAYOUT_SWEEP_AFTER_MINUTES)
        max_dispatches = self.settings.PAYOUT_MAX_DISPATCHES
        async with self.session_factory() as session:
            candidates = await repository.list_stuck_processing(session, cutoff, max_dispatches)

        redispatched = []
        for withdrawal_id in candidates:
            async def record(session: AsyncSession, withdrawal_id=withdrawal_id):
                return await ledger.record_redispatch(
                    session, withdrawal_id, now, cutoff, max_dispatches
                )

            row = await self.transaction("redispatch_payout", record)
            if row is None:
                continue
            if row.dispatch_attempts >= max_dispatches:
                logger.error(
                    f"Withdrawal {withdrawal_id} re-dispatched for the last time "
                    f"({row.dispatch_attempts}/{max_dispatches}); settle it manually "
                    f"if it stays stuck"
                )
            else:
                logger.warning(f"Withdrawal {withdrawal_id} stuck in processing, re-dispatching")
            await self.dispatcher.dispatch(withdrawal_id)
            redispatched.append(withdrawal_id)
        return redispatched

    async def _publish_processed(self, row: WithdrawalRequest) -> None:
        await event_bus.publish(
            "economy:withdrawal_processed",
            WithdrawalProcessed(
                user_id=row.user_id,
                withdrawal_id=row.id,
                status=row.status,
                processed_by=row.processed_by,
                rejection_reason=row.rejection_reason,
            ).model_dump(),
        )

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    async def get_config(self) -> Tuple[EconomyConfigVersion, EconomyConfig]:
        return await self.config_store.read()

    async def update_config(
        self, document: Dict[str, Any], admin_id: Optional[str]
    ) -> Tuple[EconomyConfigVersion, EconomyConfig]:
        return await self.config_store.write(document, admin_id)


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


economy_service = EconomyService()
