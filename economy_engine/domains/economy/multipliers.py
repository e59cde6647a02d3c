"""
MultiplierResolver: folds the independently sourced reward levers into one
composite factor.

Each lever contributes a named ``AppliedMultiplier``; the composite is their
product, clamped to ``EconomyConfig.max_multiplier``. The ordered list is
stored on the EarningEvent so every award can be audited factor by factor.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from economy_engine.domains.economy.entities import (ActiveBoost,
                                                     AppliedMultiplier,
                                                     EarningSource,
                                                     EconomyConfig,
                                                     HappyHourWindow,
                                                     MultiplierResolution,
                                                     StreakTier)

SATURDAY = 5


class MultiplierResolver:
    def __init__(self, config: EconomyConfig):
        self.config = config

    def streak_tier(self, daily_streak: int) -> Optional[StreakTier]:
        # streak_tiers is sorted ascending by min_days
        current = None
        for tier in self.config.streak_tiers:
            if daily_streak >= tier.min_days:
                current = tier
        return current

    def happy_hour(self, now: datetime) -> Optional[HappyHourWindow]:
        """Highest-paying window covering ``now`` (UTC)."""
        live = [window for window in self.config.happy_hours if window.contains(now)]
        if not live:
            return None
        return max(live, key=lambda window: window.multiplier)

    def resolve(
        self,
        now: datetime,
        source: EarningSource,
        daily_streak: int,
        boost: Optional[ActiveBoost] = None,
    ) -> MultiplierResolution:
        factors: List[AppliedMultiplier] = []

        tier = self.streak_tier(daily_streak)
        if tier is not None:
            factors.append(
                AppliedMultiplier("streak", tier.multiplier, tier.label or f"{tier.min_days}d")
            )

        window = self.happy_hour(now)
        if window is not None:
            factors.append(AppliedMultiplier("happy_hour", window.multiplier, window.name))

        if now.weekday() >= SATURDAY and self.config.weekend_multiplier != 1.0:
            factors.append(
                AppliedMultiplier("weekend", self.config.weekend_multiplier, now.strftime("%A"))
            )

        boost_consumed = False
        if boost is not None and boost.is_live(now):
            factors.append(AppliedMultiplier("boost", boost.factor, "one_shot"))
            boost_consumed = True

        if source == EarningSource.REFERRALS and self.config.referral_multiplier != 1.0:
            factors.append(
                AppliedMultiplier("referral", self.config.referral_multiplier, "referral")
            )

        composite = Decimal(1)
        for factor in factors:
            composite *= Decimal(str(factor.factor))

        ceiling = Decimal(str(self.config.max_multiplier))
        capped = composite > ceiling
        if capped:
            composite = ceiling

        return MultiplierResolution(
            factors=tuple(factors),
            composite=composite,
            capped=capped,
            boost_consumed=boost_consumed,
        )
