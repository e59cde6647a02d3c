import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from economy_engine.domains.economy.errors import (AlreadyProcessed,
                                                   InsufficientBalance,
                                                   InvalidAmount,
                                                   InvalidTransition,
                                                   MalformedMethodFields,
                                                   RejectionReasonRequired,
                                                   UnsupportedMethod,
                                                   WithdrawalNotFound)
from economy_engine.domains.economy.models import WithdrawalRequest
from economy_engine.domains.economy.service import EconomyService

PAYPAL = {"paypalEmail": "user@example.com"}


async def withdrawal_count(session_factory):
    async with session_factory() as session:
        result = await session.execute(select(func.count(WithdrawalRequest.id)))
        return result.scalar_one()


async def test_create_reserves_points(service, make_user, load_user):
    await make_user("u1", points=10000)

    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)

    assert row.status == "pending"
    assert row.amount_points == 2500
    assert row.amount_usd == Decimal("0.25")
    assert row.method_details == {"method": "paypal", "paypalEmail": "user@example.com"}
    assert (await load_user("u1")).total_points == 7500


async def test_reject_refunds_exactly(service, make_user, load_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)

    rejected = await service.reject_withdrawal(row.id, "admin", "duplicate account")

    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "duplicate account"
    assert rejected.processed_by == "admin"
    assert (await load_user("u1")).total_points == 10000


async def test_reject_requires_reason(service, make_user, load_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)

    with pytest.raises(RejectionReasonRequired):
        await service.reject_withdrawal(row.id, "admin", "  ")

    assert (await service.get_withdrawal(row.id)).status == "pending"
    assert (await load_user("u1")).total_points == 7500


async def test_approve_hands_off_without_touching_balance(
    service, dispatcher, make_user, load_user
):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)

    approved = await service.approve_withdrawal(row.id, "admin", "looks fine")

    assert approved.status == "processing"
    assert approved.processed_by == "admin"
    assert approved.processed_at is not None
    assert approved.admin_note == "looks fine"
    assert dispatcher.dispatched == [row.id]
    assert (await load_user("u1")).total_points == 7500


async def test_payout_settles_and_replay_is_noop(service, make_user, load_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await service.approve_withdrawal(row.id, "admin")

    settled = await service.process_payout(row.id)
    replay = await service.settle_withdrawal(row.id, "other-ref")

    assert settled.status == "completed"
    assert settled.payout_reference == f"manual-{row.id}"
    assert replay.status == "completed"
    assert replay.payout_reference == f"manual-{row.id}"
    assert (await load_user("u1")).total_points == 7500


async def test_approving_completed_withdrawal_fails(service, dispatcher, make_user, load_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await service.approve_withdrawal(row.id, "admin")
    await service.settle_withdrawal(row.id, "ref-1")

    with pytest.raises(AlreadyProcessed):
        await service.approve_withdrawal(row.id, "admin")

    assert dispatcher.dispatched == [row.id]
    assert (await load_user("u1")).total_points == 7500


async def test_double_approve_dispatches_once(service, dispatcher, make_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await service.approve_withdrawal(row.id, "admin")

    with pytest.raises(AlreadyProcessed):
        await service.approve_withdrawal(row.id, "admin")
    assert dispatcher.dispatched == [row.id]


async def test_rejecting_twice_refunds_once(service, make_user, load_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await service.reject_withdrawal(row.id, "admin", "fraud")

    with pytest.raises(AlreadyProcessed):
        await service.reject_withdrawal(row.id, "admin", "fraud")
    assert (await load_user("u1")).total_points == 10000


async def test_illegal_transitions(service, make_user):
    await make_user("u1", points=10000)
    pending = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    processing = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await service.approve_withdrawal(processing.id, "admin")

    with pytest.raises(InvalidTransition):
        await service.settle_withdrawal(pending.id, "ref")
    with pytest.raises(InvalidTransition):
        await service.reject_withdrawal(processing.id, "admin", "changed my mind")


async def test_insufficient_balance(service, make_user, load_user, session_factory):
    await make_user("u1", points=2000)

    with pytest.raises(InsufficientBalance):
        await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)

    assert (await load_user("u1")).total_points == 2000
    assert await withdrawal_count(session_factory) == 0


async def test_unknown_user_has_no_balance(service):
    with pytest.raises(InsufficientBalance):
        await service.create_withdrawal("ghost", 2500, "paypal", PAYPAL)


@pytest.mark.parametrize("amount", [0, -10, 999])
async def test_amount_below_minimum(service, make_user, amount):
    await make_user("u1", points=10000)
    with pytest.raises(InvalidAmount):
        await service.create_withdrawal("u1", amount, "paypal", PAYPAL)


async def test_unsupported_method(service, make_user):
    await make_user("u1", points=10000)
    with pytest.raises(UnsupportedMethod):
        await service.create_withdrawal("u1", 2500, "cheque", {})


async def test_method_fields_validated(service, make_user):
    await make_user("u1", points=10000)

    with pytest.raises(MalformedMethodFields) as exc:
        await service.create_withdrawal("u1", 2500, "bank_transfer", {"bankCode": "058"})
    assert "accountNumber" in exc.value.details["fields"]

    with pytest.raises(MalformedMethodFields):
        await service.create_withdrawal(
            "u1", 2500, "crypto", {"network": "TRC20", "walletAddress": "nope"}
        )


async def test_method_aliases_accepted(service, make_user):
    await make_user("u1", points=10000)

    row = await service.create_withdrawal(
        "u1",
        2500,
        "crypto",
        {"cryptoNetwork": "TRC20", "walletAddress": "TQn9Y2khEsLJW1ChVWFMSMeRDow5KcbLSE"},
    )

    assert row.method == "crypto"
    assert row.method_details["network"] == "TRC20"


async def test_frozen_quote_survives_margin_change(service, document, make_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)

    document["globalMargin"] = 0.5
    await service.update_config(document, "admin")

    assert (await service.get_withdrawal(row.id)).amount_usd == Decimal("0.25")
    assert (await service.quote("u1", 2500)).amount_usd == Decimal("0.12")


async def test_country_drives_frozen_amount(service, make_user):
    await make_user("u1", points=10000, country="NG")
    row = await service.create_withdrawal("u1", 5000, "airtime", {"phoneNumber": "+2348012345678"})
    assert row.amount_usd == Decimal("0.10")


async def test_concurrent_requests_cannot_double_spend(service, make_user, load_user):
    await make_user("u1", points=3000)

    results = await asyncio.gather(
        service.create_withdrawal("u1", 2000, "paypal", PAYPAL),
        service.create_withdrawal("u1", 2000, "paypal", PAYPAL),
        return_exceptions=True,
    )

    created = [r for r in results if isinstance(r, WithdrawalRequest)]
    refused = [r for r in results if isinstance(r, InsufficientBalance)]
    assert len(created) == 1
    assert len(refused) == 1
    assert (await load_user("u1")).total_points == 1000


async def test_risk_snapshot_is_frozen_on_request(service, make_user):
    await make_user("fresh", points=10000, account_age_days=0.1, email_verified=False)

    row = await service.create_withdrawal("fresh", 2500, "paypal", PAYPAL)

    assert "account_age_under_24h" in row.fraud_signals
    assert "email_unverified" in row.fraud_signals
    assert row.risk_score >= 50
    assert row.review_priority in ("elevated", "high")


async def test_shared_payout_account_flagged(service, make_user):
    await make_user("a", points=10000)
    await make_user("b", points=10000)

    await service.create_withdrawal("a", 2500, "paypal", {"paypalEmail": "Shared@Example.com"})
    second = await service.create_withdrawal("b", 2500, "paypal", {"paypalEmail": "shared@example.com"})

    assert "shared_payout_account" in second.fraud_signals


async def test_missing_withdrawal(service):
    with pytest.raises(WithdrawalNotFound):
        await service.approve_withdrawal("nope", "admin")


async def test_sweep_redispatches_stuck_payouts(service, dispatcher, clock, make_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await service.approve_withdrawal(row.id, "admin")

    assert await service.redispatch_stuck() == []
    clock.advance(minutes=20)
    assert await service.redispatch_stuck() == [row.id]
    assert dispatcher.dispatched == [row.id, row.id]

    # Next beat inside the window leaves it alone
    clock.advance(minutes=5)
    assert await service.redispatch_stuck() == []

    clock.advance(minutes=15)
    assert await service.redispatch_stuck() == [row.id]

    # Dispatch budget (3) spent: later sweeps give up on it
    clock.advance(minutes=60)
    assert await service.redispatch_stuck() == []
    assert dispatcher.dispatched == [row.id, row.id, row.id]
    assert (await service.get_withdrawal(row.id)).dispatch_attempts == 3


async def test_sweep_skips_settled_payouts(service, dispatcher, clock, make_user):
    await make_user("u1", points=10000)
    row = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await service.approve_withdrawal(row.id, "admin")
    await service.process_payout(row.id)

    clock.advance(minutes=20)
    assert await service.redispatch_stuck() == []
    assert dispatcher.dispatched == [row.id]


async def test_review_queue_filters_by_status(service, make_user):
    await make_user("u1", points=10000)
    first = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    second = await service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await service.reject_withdrawal(first.id, "admin", "test")

    pending = await service.list_withdrawals("pending")
    everything = await service.list_withdrawals()

    assert [w.id for w in pending] == [second.id]
    assert {w.id for w in everything} == {first.id, second.id}


class SlowGateway:
    def __init__(self, failures: int = 0):
        self.sent = []
        self.failures = failures

    async def send(self, withdrawal, idempotency_key):
        self.sent.append(idempotency_key)
        await asyncio.sleep(0.05)
        if self.failures:
            self.failures -= 1
            raise ConnectionError("provider timeout")
        return f"ref-{idempotency_key}"


@pytest.fixture
def gateway():
    return SlowGateway()


@pytest.fixture
def paying_service(session_factory, config_store, dispatcher, gateway, clock, test_settings):
    return EconomyService(
        session_factory=session_factory,
        config_store=config_store,
        dispatcher=dispatcher,
        gateway=gateway,
        clock=clock,
        app_settings=test_settings,
    )


async def test_concurrent_payouts_send_once(paying_service, gateway, make_user):
    await make_user("u1", points=10000)
    row = await paying_service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await paying_service.approve_withdrawal(row.id, "admin")

    results = await asyncio.gather(
        paying_service.process_payout(row.id),
        paying_service.process_payout(row.id),
    )

    assert gateway.sent == [row.id]
    assert [r for r in results if r is not None][0].status == "completed"
    settled = await paying_service.get_withdrawal(row.id)
    assert settled.status == "completed"
    assert settled.payout_reference == f"ref-{row.id}"


async def test_failed_payout_releases_claim(paying_service, gateway, make_user):
    gateway.failures = 1
    await make_user("u1", points=10000)
    row = await paying_service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await paying_service.approve_withdrawal(row.id, "admin")

    with pytest.raises(ConnectionError):
        await paying_service.process_payout(row.id)
    assert (await paying_service.get_withdrawal(row.id)).status == "processing"

    settled = await paying_service.process_payout(row.id)

    assert settled.status == "completed"
    assert gateway.sent == [row.id, row.id]


async def test_payout_after_settlement_does_not_resend(paying_service, gateway, make_user):
    await make_user("u1", points=10000)
    row = await paying_service.create_withdrawal("u1", 2500, "paypal", PAYPAL)
    await paying_service.approve_withdrawal(row.id, "admin")
    await paying_service.process_payout(row.id)

    replay = await paying_service.process_payout(row.id)

    assert replay.status == "completed"
    assert gateway.sent == [row.id]


async def test_balance_never_negative_across_mixed_operations(service, make_user, load_user):
    await make_user("u1", points=5000)
    balances = []

    async def check(expected):
        state = await load_user("u1")
        assert state.total_points >= 0
        assert state.total_points == expected
        balances.append(state.total_points)

    await service.grant("u1", "offerComplete")
    await check(6000)
    first = await service.create_withdrawal("u1", 4000, "paypal", PAYPAL)
    await check(2000)
    second = await service.create_withdrawal("u1", 2000, "paypal", PAYPAL)
    await check(0)
    with pytest.raises(InsufficientBalance):
        await service.create_withdrawal("u1", 1000, "paypal", PAYPAL)
    await check(0)
    await service.approve_withdrawal(second.id, "admin")
    await check(0)
    await service.reject_withdrawal(first.id, "admin", "velocity")
    await check(4000)
    with pytest.raises(AlreadyProcessed):
        await service.reject_withdrawal(first.id, "admin", "velocity")
    await check(4000)
    await service.grant("u1", "watchAd")
    await check(4020)
    await service.create_withdrawal("u1", 4020, "paypal", PAYPAL)
    await check(0)

    assert min(balances) == 0
