"""
WithdrawalLedger: lifecycle of a withdrawal request.

    pending ──approve──▶ processing ──settle──▶ completed
       │
       └──reject──▶ rejected

Points are reserved (deducted) when the request is created and refunded
only on rejection. ``completed`` and ``rejected`` are final: acting on them
raises ``AlreadyProcessed``, except settling an already completed request,
which is a no-op so payout callbacks can be replayed safely.
"""
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from economy_engine.domains.economy import repository
from economy_engine.domains.economy.currency import CurrencyConverter
from economy_engine.domains.economy.entities import (EconomyConfig,
                                                     RiskAssessment,
                                                     WithdrawalDraft,
                                                     WithdrawalStatus,
                                                     parse_payout_method)
from economy_engine.domains.economy.errors import (AlreadyProcessed,
                                                   InsufficientBalance,
                                                   InvalidAmount,
                                                   InvalidTransition,
                                                   RejectionReasonRequired,
                                                   WithdrawalNotFound)
from economy_engine.domains.economy.fraud import FraudRiskScorer
from economy_engine.domains.economy.models import WithdrawalRequest

TRANSITIONS = {
    WithdrawalStatus.PENDING: frozenset(
        {WithdrawalStatus.PROCESSING, WithdrawalStatus.REJECTED}
    ),
    WithdrawalStatus.PROCESSING: frozenset({WithdrawalStatus.COMPLETED}),
    WithdrawalStatus.COMPLETED: frozenset(),
    WithdrawalStatus.REJECTED: frozenset(),
}


def check_transition(row: WithdrawalRequest, target: WithdrawalStatus) -> None:
    current = WithdrawalStatus(row.status)
    if current.is_terminal:
        raise AlreadyProcessed(row.id, current.value)
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(current.value, target.value)


class WithdrawalLedger:
    def __init__(self, config: EconomyConfig, scorer: Optional[FraudRiskScorer] = None):
        self.config = config
        self.converter = CurrencyConverter(config)
        self.scorer = scorer or FraudRiskScorer()

    def validate_amount(self, amount: int) -> None:
        if amount is None or amount <= 0:
            raise InvalidAmount("Withdrawal amount must be greater than zero", {"amount": amount})
        minimum = self.config.minimum_withdrawal_points
        if amount < minimum:
            raise InvalidAmount(
                f"Minimum withdrawal is {minimum} points",
                {"amount": amount, "minimum": minimum},
            )

    async def create(
        self,
        session: AsyncSession,
        user_id: str,
        amount: int,
        method: str,
        fields: Mapping[str, Any],
        now: datetime,
    ) -> Tuple[WithdrawalRequest, RiskAssessment]:
        self.validate_amount(amount)
        payout = parse_payout_method(method, fields)

        state = await repository.get_state(session, user_id)
        balance = state.total_points if state is not None else 0
        if state is None or balance < amount:
            raise InsufficientBalance(balance, amount)

        amount_usd = self.converter.to_usd(amount, state.country)
        fingerprint = payout.fingerprint()
        history = await repository.load_user_history(
            session, state, self.config, fingerprint, now
        )
        assessment = self.scorer.score(
            WithdrawalDraft(user_id, amount, amount_usd, payout), history
        )

        state.total_points -= amount

        row = WithdrawalRequest(
            id=repository.new_id(),
            user_id=user_id,
            amount_points=amount,
            amount_usd_cents=int(amount_usd * 100),
            method=payout.kind.value,
            method_details=payout.to_dict(),
            payout_fingerprint=fingerprint,
            status=WithdrawalStatus.PENDING.value,
            risk_score=assessment.score,
            fraud_signals=list(assessment.signals),
            created_at=now,
            updated_at=now,
        )
        session.add(row)
        return row, assessment


async def _load(session: AsyncSession, withdrawal_id: str) -> WithdrawalRequest:
    row = await repository.get_withdrawal(session, withdrawal_id)
    if row is None:
        raise WithdrawalNotFound(withdrawal_id)
    return row


async def approve(
    session: AsyncSession,
    withdrawal_id: str,
    admin_id: str,
    now: datetime,
    admin_note: Optional[str] = None,
) -> WithdrawalRequest:
    row = await _load(session, withdrawal_id)
    if row.status == WithdrawalStatus.PROCESSING.value:
        # Already approved and handed off; a repeat must not dispatch twice
        raise AlreadyProcessed(row.id, row.status)
    check_transition(row, WithdrawalStatus.PROCESSING)

    row.status = WithdrawalStatus.PROCESSING.value
    row.processed_by = admin_id
    row.processed_at = now
    row.dispatch_attempts = 1
    row.last_dispatched_at = now
    if admin_note:
        row.admin_note = admin_note
    return row


async def reject(
    session: AsyncSession,
    withdrawal_id: str,
    admin_id: str,
    reason: Optional[str],
    now: datetime,
    admin_note: Optional[str] = None,
) -> WithdrawalRequest:
    if not reason or not reason.strip():
        raise RejectionReasonRequired()

    row = await _load(session, withdrawal_id)
    check_transition(row, WithdrawalStatus.REJECTED)

    state = await repository.get_state(session, row.user_id)
    state.total_points += row.amount_points

    row.status = WithdrawalStatus.REJECTED.value
    row.rejection_reason = reason.strip()
    row.processed_by = admin_id
    row.processed_at = now
    if admin_note:
        row.admin_note = admin_note
    return row


async def settle(
    session: AsyncSession, withdrawal_id: str, reference: Optional[str], now: datetime
) -> Tuple[WithdrawalRequest, bool]:
    """Mark a processing request paid. Returns (row, changed)."""
    row = await _load(session, withdrawal_id)
    if row.status == WithdrawalStatus.COMPLETED.value:
        return row, False
    check_transition(row, WithdrawalStatus.COMPLETED)

    row.status = WithdrawalStatus.COMPLETED.value
    row.payout_reference = reference
    row.settled_at = now
    return row, True


async def claim_payout(
    session: AsyncSession, withdrawal_id: str, now: datetime, lease: timedelta
) -> Tuple[WithdrawalRequest, bool]:
    """Take the gateway call for a processing request. Returns (row, claimed).

    Only one caller can hold a live claim: two claims racing on the same
    row collide on its version and the loser re-reads the winner's claim.
    A claim older than ``lease`` belongs to a worker that died mid-payout
    and may be taken over.
    """
    row = await _load(session, withdrawal_id)
    if row.status != WithdrawalStatus.PROCESSING.value:
        return row, False
    if row.payout_claimed_at is not None and row.payout_claimed_at > now - lease:
        return row, False
    row.payout_claimed_at = now
    return row, True


async def release_payout(session: AsyncSession, withdrawal_id: str) -> WithdrawalRequest:
    """Drop the claim after a failed gateway call so a retry can take it."""
    row = await _load(session, withdrawal_id)
    if row.status == WithdrawalStatus.PROCESSING.value:
        row.payout_claimed_at = None
    return row


async def record_redispatch(
    session: AsyncSession,
    withdrawal_id: str,
    now: datetime,
    stale_before: datetime,
    max_dispatches: int,
) -> Optional[WithdrawalRequest]:
    """Count one more hand-off of a stuck request, or None if it no longer qualifies."""
    row = await _load(session, withdrawal_id)
    if row.status != WithdrawalStatus.PROCESSING.value:
        return None
    last = row.last_dispatched_at or row.processed_at
    if last is not None and last >= stale_before:
        return None
    if (row.dispatch_attempts or 0) >= max_dispatches:
        return None
    row.dispatch_attempts = (row.dispatch_attempts or 0) + 1
    row.last_dispatched_at = now
    return row
