"""
FraudRiskScorer: advisory 0-100 risk score for a withdrawal request.

Pure function of a ``WithdrawalDraft`` and a ``UserHistory`` snapshot read in
the same transaction as the request. Every signal adds an independent,
named weight; the total is clamped to [0, 100]. Signals come out in a fixed
order so identical inputs give identical ``(score, signals)`` pairs.

The score only orders the reviewer queue. Approving or rejecting always
takes an explicit admin action.
"""
from decimal import Decimal
from typing import Dict, List, Tuple

from economy_engine.domains.economy.entities import (RiskAssessment,
                                                     UserHistory,
                                                     WithdrawalDraft)

# Account age
ACCOUNT_UNDER_24H = 40
ACCOUNT_UNDER_3D = 25
ACCOUNT_UNDER_7D = 10

# Withdrawal history
FIRST_WITHDRAWAL = 10
FIRST_WITHDRAWAL_LARGE = 15
FIRST_WITHDRAWAL_LARGE_USD = Decimal("5.00")
PENDING_WITHDRAWAL_EXISTS = 10

# Earning velocity against the user's own trailing daily average
VELOCITY_24H_SPIKE = 20
VELOCITY_24H_FACTOR = 3.0
VELOCITY_7D_SPIKE = 15
VELOCITY_7D_FACTOR = 2.5
VELOCITY_NO_BASELINE = 15
VELOCITY_NO_BASELINE_POINTS = 5000

# Fingerprint reuse across other accounts
SHARED_DEVICE = 25
SHARED_IP = 15
SHARED_PAYOUT_ACCOUNT = 30

# Withdrawal ceilings for the user's tier
DAILY_CEILING_EXCEEDED = 20
DAILY_CEILING_NEAR = 10
DAILY_CEILING_NEAR_RATIO = Decimal("0.8")
WEEKLY_COUNT_EXCEEDED = 15
FULL_BALANCE = 10

# Contact verification
EMAIL_UNVERIFIED = 10
PHONE_UNVERIFIED = 10

MAX_SCORE = 100


class FraudRiskScorer:
    def score(self, draft: WithdrawalDraft, history: UserHistory) -> RiskAssessment:
        contributions: List[Tuple[str, int]] = []

        def add(name: str, weight: int) -> None:
            contributions.append((name, weight))

        age = history.account_age_days
        if age is None or age < 1:
            add("account_age_under_24h", ACCOUNT_UNDER_24H)
        elif age < 3:
            add("account_age_under_3d", ACCOUNT_UNDER_3D)
        elif age < 7:
            add("account_age_under_7d", ACCOUNT_UNDER_7D)

        if history.prior_withdrawals == 0:
            add("first_withdrawal", FIRST_WITHDRAWAL)
            if draft.amount_usd > FIRST_WITHDRAWAL_LARGE_USD:
                add("first_withdrawal_large", FIRST_WITHDRAWAL_LARGE)

        baseline = history.trailing_daily_average
        if baseline > 0:
            if history.earned_24h > baseline * VELOCITY_24H_FACTOR:
                add("earning_velocity_24h", VELOCITY_24H_SPIKE)
            if history.earned_7d / 7 > baseline * VELOCITY_7D_FACTOR:
                add("earning_velocity_7d", VELOCITY_7D_SPIKE)
        elif history.earned_24h > VELOCITY_NO_BASELINE_POINTS:
            add("earning_velocity_no_baseline", VELOCITY_NO_BASELINE)

        if history.shared_device_accounts > 0:
            add("shared_device", SHARED_DEVICE)
        if history.shared_ip_accounts > 0:
            add("shared_ip", SHARED_IP)
        if history.shared_payout_accounts > 0:
            add("shared_payout_account", SHARED_PAYOUT_ACCOUNT)

        limits = history.tier_limits
        if limits is not None:
            projected = history.withdrawn_usd_24h + draft.amount_usd
            if limits.daily_limit_usd > 0 and projected > limits.daily_limit_usd:
                add("daily_ceiling_exceeded", DAILY_CEILING_EXCEEDED)
            elif (
                limits.daily_limit_usd > 0
                and projected >= limits.daily_limit_usd * DAILY_CEILING_NEAR_RATIO
            ):
                add("daily_ceiling_near", DAILY_CEILING_NEAR)
            if history.withdrawals_7d + 1 > limits.weekly_limit:
                add("weekly_count_exceeded", WEEKLY_COUNT_EXCEEDED)

        if draft.amount_points >= history.balance:
            add("full_balance", FULL_BALANCE)

        if not history.email_verified:
            add("email_unverified", EMAIL_UNVERIFIED)
        if not history.phone_verified:
            add("phone_unverified", PHONE_UNVERIFIED)

        if history.pending_withdrawals > 0:
            add("pending_withdrawal_exists", PENDING_WITHDRAWAL_EXISTS)

        weights: Dict[str, int] = dict(contributions)
        total = max(0, min(MAX_SCORE, sum(weights.values())))
        return RiskAssessment(
            score=total,
            signals=tuple(name for name, _ in contributions),
            contributions=weights,
        )
