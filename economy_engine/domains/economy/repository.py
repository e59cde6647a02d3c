# economy_engine/domains/economy/repository.py
"""
Query helpers for the economy tables.

Every function takes the caller's session so it can run inside the same
transaction as the mutation it feeds (the fraud snapshot in particular must
be read alongside the reservation it scores).
"""
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy import and_, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from economy_engine.domains.economy.entities import (EconomyConfig, UserHistory,
                                                     UserTier, WithdrawalStatus)
from economy_engine.domains.economy.models import (EarningEvent,
                                                   UserEconomyState,
                                                   WithdrawalRequest)
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)

VIP_POINTS = 1_000_000
ESTABLISHED_ACCOUNT_DAYS = 14
BASELINE_WINDOW_DAYS = 30
RECENT_WINDOW_DAYS = 7

# Withdrawals that still hold (or have paid out) their reserved points
_LIVE_STATUSES = (
    WithdrawalStatus.PENDING.value,
    WithdrawalStatus.PROCESSING.value,
    WithdrawalStatus.COMPLETED.value,
)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# User state
# ---------------------------------------------------------------------------


async def get_state(session: AsyncSession, user_id: str) -> Optional[UserEconomyState]:
    result = await session.execute(
        select(UserEconomyState).where(UserEconomyState.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_or_create_state(
    session: AsyncSession, user_id: str, now: datetime
) -> UserEconomyState:
    """Load the user's state, creating an empty one on first contact.

    Two first-contact requests racing here both insert; the loser fails the
    primary key and its transaction is retried against the winner's row.
    """
    state = await get_state(session, user_id)
    if state is not None:
        return state

    state = UserEconomyState(
        user_id=user_id,
        total_points=0,
        points_ads=0,
        points_news=0,
        points_trivia=0,
        points_games=0,
        points_offers=0,
        points_surveys=0,
        points_referrals=0,
        daily_streak=0,
        daily_counters={},
        email_verified=False,
        phone_verified=False,
        account_created_at=now,
    )
    session.add(state)
    await session.flush()
    logger.info(f"Created economy state for user {user_id}")
    return state


# ---------------------------------------------------------------------------
# Earning events
# ---------------------------------------------------------------------------


async def list_earning_events(
    session: AsyncSession, user_id: str, limit: int = 50
) -> Sequence[EarningEvent]:
    result = await session.execute(
        select(EarningEvent)
        .where(EarningEvent.user_id == user_id)
        .order_by(desc(EarningEvent.created_at), desc(EarningEvent.id))
        .limit(limit)
    )
    return result.scalars().all()


async def earning_totals_by_source(session: AsyncSession, user_id: str) -> Dict[str, int]:
    result = await session.execute(
        select(EarningEvent.source, func.sum(EarningEvent.final_points))
        .where(EarningEvent.user_id == user_id)
        .group_by(EarningEvent.source)
    )
    return {source: int(total or 0) for source, total in result.all()}


async def earned_between(
    session: AsyncSession, user_id: str, start: datetime, end: datetime
) -> int:
    result = await session.execute(
        select(func.coalesce(func.sum(EarningEvent.final_points), 0)).where(
            and_(
                EarningEvent.user_id == user_id,
                EarningEvent.created_at >= start,
                EarningEvent.created_at < end,
            )
        )
    )
    return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Withdrawals
# ---------------------------------------------------------------------------


async def get_withdrawal(
    session: AsyncSession, withdrawal_id: str
) -> Optional[WithdrawalRequest]:
    result = await session.execute(
        select(WithdrawalRequest).where(WithdrawalRequest.id == withdrawal_id)
    )
    return result.scalar_one_or_none()


async def list_user_withdrawals(
    session: AsyncSession, user_id: str, limit: int = 50
) -> Sequence[WithdrawalRequest]:
    result = await session.execute(
        select(WithdrawalRequest)
        .where(WithdrawalRequest.user_id == user_id)
        .order_by(desc(WithdrawalRequest.created_at))
        .limit(limit)
    )
    return result.scalars().all()


async def list_withdrawals_by_status(
    session: AsyncSession, status: Optional[str] = None, limit: int = 100
) -> Sequence[WithdrawalRequest]:
    """Review queue: oldest first."""
    query = select(WithdrawalRequest)
    if status:
        query = query.where(WithdrawalRequest.status == status)
    result = await session.execute(
        query.order_by(WithdrawalRequest.created_at, WithdrawalRequest.id).limit(limit)
    )
    return result.scalars().all()


async def list_stuck_processing(
    session: AsyncSession, older_than: datetime, max_dispatches: int, limit: int = 100
) -> List[str]:
    """Approved requests not handed off since ``older_than`` with dispatches left."""
    last_dispatch = func.coalesce(
        WithdrawalRequest.last_dispatched_at, WithdrawalRequest.processed_at
    )
    result = await session.execute(
        select(WithdrawalRequest.id)
        .where(
            and_(
                WithdrawalRequest.status == WithdrawalStatus.PROCESSING.value,
                last_dispatch < older_than,
                func.coalesce(WithdrawalRequest.dispatch_attempts, 0) < max_dispatches,
            )
        )
        .order_by(last_dispatch)
        .limit(limit)
    )
    return list(result.scalars().all())


async def reserved_points(session: AsyncSession, user_id: str) -> int:
    result = await session.execute(
        select(func.coalesce(func.sum(WithdrawalRequest.amount_points), 0)).where(
            and_(
                WithdrawalRequest.user_id == user_id,
                WithdrawalRequest.status.in_(
                    (WithdrawalStatus.PENDING.value, WithdrawalStatus.PROCESSING.value)
                ),
            )
        )
    )
    return int(result.scalar_one())


async def _count_withdrawals(session: AsyncSession, *conditions) -> int:
    result = await session.execute(
        select(func.count(WithdrawalRequest.id)).where(and_(*conditions))
    )
    return int(result.scalar_one())


async def _count_other_accounts(session: AsyncSession, user_id: str, column, value) -> int:
    if not value:
        return 0
    result = await session.execute(
        select(func.count(UserEconomyState.user_id)).where(
            and_(column == value, UserEconomyState.user_id != user_id)
        )
    )
    return int(result.scalar_one())


# ---------------------------------------------------------------------------
# Fraud snapshot
# ---------------------------------------------------------------------------


def classify_tier(state: UserEconomyState, now: datetime) -> UserTier:
    if state.total_points >= VIP_POINTS:
        return UserTier.VIP
    age_days = None
    if state.account_created_at is not None:
        age_days = (now - state.account_created_at).days
    established = age_days is not None and age_days >= ESTABLISHED_ACCOUNT_DAYS
    if established and state.email_verified and state.phone_verified:
        return UserTier.VERIFIED
    if established:
        return UserTier.REGULAR
    return UserTier.NEW


async def load_user_history(
    session: AsyncSession,
    state: UserEconomyState,
    config: EconomyConfig,
    payout_fingerprint: str,
    now: datetime,
) -> UserHistory:
    user_id = state.user_id
    day_ago = now - timedelta(days=1)
    week_ago = now - timedelta(days=RECENT_WINDOW_DAYS)
    baseline_start = week_ago - timedelta(days=BASELINE_WINDOW_DAYS)

    tier = classify_tier(state, now)

    prior = await _count_withdrawals(
        session,
        WithdrawalRequest.user_id == user_id,
        WithdrawalRequest.status.in_(_LIVE_STATUSES),
    )
    pending = await _count_withdrawals(
        session,
        WithdrawalRequest.user_id == user_id,
        WithdrawalRequest.status == WithdrawalStatus.PENDING.value,
    )
    recent = await _count_withdrawals(
        session,
        WithdrawalRequest.user_id == user_id,
        WithdrawalRequest.status.in_(_LIVE_STATUSES),
        WithdrawalRequest.created_at >= week_ago,
    )

    cents_24h = await session.execute(
        select(func.coalesce(func.sum(WithdrawalRequest.amount_usd_cents), 0)).where(
            and_(
                WithdrawalRequest.user_id == user_id,
                WithdrawalRequest.status.in_(_LIVE_STATUSES),
                WithdrawalRequest.created_at >= day_ago,
            )
        )
    )

    earned_24h = await earned_between(session, user_id, day_ago, now + timedelta(seconds=1))
    earned_7d = await earned_between(session, user_id, week_ago, now + timedelta(seconds=1))
    baseline_total = await earned_between(session, user_id, baseline_start, week_ago)

    shared_payout = await session.execute(
        select(func.count(func.distinct(WithdrawalRequest.user_id))).where(
            and_(
                WithdrawalRequest.payout_fingerprint == payout_fingerprint,
                WithdrawalRequest.user_id != user_id,
            )
        )
    )

    return UserHistory(
        as_of=now,
        account_created_at=state.account_created_at,
        email_verified=bool(state.email_verified),
        phone_verified=bool(state.phone_verified),
        balance=state.total_points,
        tier=tier,
        tier_limits=config.withdrawal_tiers.get(tier),
        prior_withdrawals=prior,
        pending_withdrawals=pending,
        withdrawn_usd_24h=Decimal(int(cents_24h.scalar_one())) / 100,
        withdrawals_7d=recent,
        earned_24h=earned_24h,
        earned_7d=earned_7d,
        trailing_daily_average=baseline_total / BASELINE_WINDOW_DAYS,
        shared_device_accounts=await _count_other_accounts(
            session, user_id, UserEconomyState.device_id, state.device_id
        ),
        shared_ip_accounts=await _count_other_accounts(
            session, user_id, UserEconomyState.ip_address, state.ip_address
        ),
        shared_payout_accounts=int(shared_payout.scalar_one()),
    )
