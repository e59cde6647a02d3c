"""
RewardCalculator and DailyLimitGuard.

Both work on a ``UserEconomyState`` loaded in the caller's transaction, so
the counter bump, the multiplier resolution, the balance credit, the
earning event and the boost clear commit or roll back together.
"""
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from economy_engine.domains.economy import repository
from economy_engine.domains.economy.entities import (ACTION_SOURCES,
                                                     EconomyConfig)
from economy_engine.domains.economy.errors import (DailyLimitExceeded,
                                                   UnknownActionType)
from economy_engine.domains.economy.models import EarningEvent, UserEconomyState
from economy_engine.domains.economy.multipliers import MultiplierResolver
from economy_engine.shared.utils.logger import get_logger

logger = get_logger(__name__)


class DailyLimitGuard:
    def __init__(self, config: EconomyConfig):
        self.config = config

    @staticmethod
    def counter_key(action_type: str, day: date) -> str:
        return f"{day.isoformat()}:{action_type}"

    def count(self, state: UserEconomyState, action_type: str, day: date) -> int:
        return int((state.daily_counters or {}).get(self.counter_key(action_type, day), 0))

    def consume(self, state: UserEconomyState, action_type: str, day: date) -> int:
        """Count one more ``action_type`` for ``day`` or raise if the cap is reached."""
        limit = self.config.daily_limits.get(action_type)
        used = self.count(state, action_type, day)
        if limit is not None and used >= limit:
            raise DailyLimitExceeded(action_type, limit)

        # Earlier days' keys are dead weight once the date moves on
        prefix = f"{day.isoformat()}:"
        counters = {
            key: value
            for key, value in (state.daily_counters or {}).items()
            if key.startswith(prefix)
        }
        counters[self.counter_key(action_type, day)] = used + 1
        # Reassign so the JSON column is flagged dirty
        state.daily_counters = counters
        return used + 1


class RewardCalculator:
    def __init__(self, config: EconomyConfig):
        self.config = config
        self.limits = DailyLimitGuard(config)
        self.multipliers = MultiplierResolver(config)

    async def grant(
        self, session: AsyncSession, user_id: str, action_type: str, now: datetime
    ) -> EarningEvent:
        base = self.config.earning_rates.get(action_type)
        source = ACTION_SOURCES.get(action_type)
        if base is None or source is None:
            raise UnknownActionType(action_type)

        state = await repository.get_or_create_state(session, user_id, now)
        self.limits.consume(state, action_type, now.date())

        boost = state.active_boost
        if boost is not None and not boost.is_live(now):
            state.clear_boost()
            boost = None

        resolution = self.multipliers.resolve(now, source, state.daily_streak, boost)
        final_points = int(
            (Decimal(str(base)) * resolution.composite).quantize(
                Decimal(1), rounding=ROUND_HALF_EVEN
            )
        )

        state.credit(source, final_points)
        if resolution.boost_consumed:
            state.clear_boost()

        event = EarningEvent(
            id=repository.new_id(),
            user_id=user_id,
            action_type=action_type,
            source=source.value,
            base_points=float(base),
            multipliers=[factor.to_dict() for factor in resolution.factors],
            multiplier=float(resolution.composite),
            capped=resolution.capped,
            final_points=final_points,
            created_at=now,
        )
        session.add(event)
        return event


def advance_streak(state: UserEconomyState, today: date) -> bool:
    """Once per UTC day: consecutive day extends, a gap restarts at 1."""
    last = state.last_check_in
    if last == today:
        return False
    if last is not None and last == today - timedelta(days=1):
        state.daily_streak = (state.daily_streak or 0) + 1
    else:
        state.daily_streak = 1
    state.last_check_in = today
    return True


async def check_in(
    session: AsyncSession, user_id: str, now: datetime
) -> Tuple[UserEconomyState, bool]:
    state = await repository.get_or_create_state(session, user_id, now)
    extended = advance_streak(state, now.date())
    return state, extended


async def set_boost(
    session: AsyncSession,
    user_id: str,
    factor: float,
    expires_at: Optional[datetime],
    now: datetime,
) -> UserEconomyState:
    """Arm the user's single one-shot boost, replacing any previous one."""
    state = await repository.get_or_create_state(session, user_id, now)
    state.boost_factor = factor
    state.boost_expires_at = expires_at
    return state
