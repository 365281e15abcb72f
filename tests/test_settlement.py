import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from bodacover.cover.session import RiderSession
from bodacover.cover.settlement import DECLINED_REASON, IntentState
from bodacover.errors import (
    ConfirmationTimeoutError,
    GatewayError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    NotFoundError,
    SettlementFailedError,
    ValidationError,
)
from bodacover.integrations.clients.mocks.ledger import InMemoryWalletLedger
from bodacover.integrations.clients.mocks.mpesa import MpesaMockClient
from bodacover.integrations.contracts.interfaces import GatewayStatus, SettlementRail
from bodacover.integrations.contracts.payments import PollOutcome

from conftest import OTHER_PHONE, RIDER_PHONE

WEEKLY_RIDER_MONTHLY_BIKE = [("rider", "Weekly"), ("bike", "Monthly")]


# ---------------------------------------------------------------------------
# Wallet-token rail
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_wallet_settles_and_activates_one_policy_per_selection(make_services, session, clock):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("20")})
    services = make_services(ledger=ledger)

    handle = await services.settlement.initiate(session, WEEKLY_RIDER_MONTHLY_BIKE, "hbar", "key-1")

    assert handle.state == IntentState.SETTLED
    assert handle.rail == SettlementRail.WALLET_TOKEN
    assert handle.charge_amount == Decimal("15.50")
    assert await ledger.get_balance(RIDER_PHONE) == Decimal("4.50")

    result = await services.settlement.poll(handle)
    assert result.outcome == PollOutcome.SETTLED
    assert result.external_ref
    assert len(result.policies) == 2
    by_type = {p.protection_type.value: p for p in result.policies}
    assert by_type["rider"].expiry_at == clock.now() + timedelta(days=7)
    assert by_type["bike"].expiry_at == clock.now() + timedelta(days=30)
    assert all(p.transaction_ref == result.external_ref for p in result.policies)
    assert services.riders.get_rider(RIDER_PHONE).cached_balance == Decimal("4.50")


@pytest.mark.asyncio
async def test_wallet_insufficient_balance_leaves_everything_untouched(make_services, session, policy_store):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("10")})
    services = make_services(ledger=ledger)

    with pytest.raises(InsufficientBalanceError):
        await services.settlement.initiate(session, WEEKLY_RIDER_MONTHLY_BIKE, "wallet_token", "key-1")

    assert await ledger.get_balance(RIDER_PHONE) == Decimal("10")
    assert ledger.debit_count == 0
    assert policy_store.list_by_rider(RIDER_PHONE) == []
    intent = services.settlement.get_intent(RIDER_PHONE, "key-1")
    assert intent.state == IntentState.PAY
    assert intent.error_kind == "insufficient_balance"


@pytest.mark.asyncio
async def test_stale_low_cache_is_refreshed_from_ledger(make_services, session, riders):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("50")})
    riders.update_cached_balance(RIDER_PHONE, Decimal("0"))
    services = make_services(ledger=ledger)

    handle = await services.settlement.initiate(session, [("rider", "Monthly")], "wallet", "key-1")

    assert handle.state == IntentState.SETTLED
    assert riders.get_rider(RIDER_PHONE).cached_balance == Decimal("33.72")


@pytest.mark.asyncio
async def test_low_cache_confirmed_by_ledger_fails_without_debit(make_services, session, riders):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("1")})
    riders.update_cached_balance(RIDER_PHONE, Decimal("0.5"))
    services = make_services(ledger=ledger)

    with pytest.raises(InsufficientBalanceError):
        await services.settlement.initiate(session, [("rider", "Weekly")], "wallet", "key-1")

    assert ledger.debit_count == 0
    assert riders.get_rider(RIDER_PHONE).cached_balance == Decimal("1")


@pytest.mark.asyncio
async def test_wallet_replay_with_same_key_debits_once(make_services, session, policy_store):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("50")})
    services = make_services(ledger=ledger)

    first = await services.settlement.initiate(session, [("bike", "Weekly")], "wallet", "key-1")
    second = await services.settlement.initiate(session, [("bike", "Weekly")], "wallet", "key-1")

    assert first == second
    assert ledger.debit_count == 1
    assert len(policy_store.list_by_rider(RIDER_PHONE)) == 1


@pytest.mark.asyncio
async def test_concurrent_same_key_calls_debit_once(make_services, session, policy_store):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("50")}, latency=0.01)
    services = make_services(ledger=ledger)

    handles = await asyncio.gather(*[
        services.settlement.initiate(session, [("rider", "Daily")], "wallet", "same-key") for _ in range(5)
    ])

    assert {h.state for h in handles} == {IntentState.SETTLED}
    assert ledger.debit_count == 1
    assert len(policy_store.list_by_rider(RIDER_PHONE)) == 1


@pytest.mark.asyncio
async def test_concurrent_different_keys_never_overspend(make_services, session):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("20")}, latency=0.01)
    services = make_services(ledger=ledger)

    outcomes = await asyncio.gather(
        services.settlement.initiate(session, [("rider", "Monthly")], "wallet", "key-a"),
        services.settlement.initiate(session, [("rider", "Monthly")], "wallet", "key-b"),
        return_exceptions=True,
    )

    settled = [o for o in outcomes if not isinstance(o, Exception)]
    refused = [o for o in outcomes if isinstance(o, InsufficientBalanceError)]
    assert len(settled) == 1
    assert len(refused) == 1
    assert await ledger.get_balance(RIDER_PHONE) == Decimal("3.72")


@pytest.mark.asyncio
async def test_reusing_key_for_different_content_is_a_conflict(services, session):
    await services.settlement.initiate(session, [("bike", "Daily")], "wallet", "key-1")

    with pytest.raises(IdempotencyConflictError):
        await services.settlement.initiate(session, [("bike", "Monthly")], "wallet", "key-1")
    with pytest.raises(IdempotencyConflictError):
        await services.settlement.initiate(session, [("bike", "Daily")], "mpesa", "key-1")


@pytest.mark.asyncio
async def test_missing_key_or_unknown_rail_is_validation_error(services, session):
    with pytest.raises(ValidationError):
        await services.settlement.initiate(session, [("bike", "Daily")], "wallet", "  ")
    with pytest.raises(ValidationError):
        await services.settlement.initiate(session, [("bike", "Daily")], "cheque", "key-1")


@pytest.mark.asyncio
async def test_activation_failure_after_debit_refunds_the_wallet(make_services, session, policy_store):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("50")})
    services = make_services(ledger=ledger)

    def broken_create_many(policies):
        raise RuntimeError("disk full")

    policy_store.create_many = broken_create_many

    with pytest.raises(SettlementFailedError):
        await services.settlement.initiate(session, [("rider", "Daily")], "wallet", "key-1")

    intent = services.settlement.get_intent(RIDER_PHONE, "key-1")
    assert intent.state == IntentState.FAILED
    assert intent.refund_ref
    assert ledger.debit_count == 1
    assert await ledger.get_balance(RIDER_PHONE) == Decimal("50")
    assert services.riders.get_rider(RIDER_PHONE).cached_balance == Decimal("50")
    # A FAILED intent is never retried under the same key.
    with pytest.raises(SettlementFailedError):
        await services.settlement.initiate(session, [("rider", "Daily")], "wallet", "key-1")


# ---------------------------------------------------------------------------
# Mobile-money rail
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_mobile_money_confirmed_on_last_poll_settles(make_services, session, clock):
    gateway = MpesaMockClient(pending_polls=11)
    services = make_services(gateway=gateway)

    handle = await services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")
    assert handle.state == IntentState.AWAITING_CONFIRMATION
    assert handle.charge_amount == Decimal("12")

    result = await services.settlement.wait(handle)

    assert result.outcome == PollOutcome.SETTLED
    assert len(result.policies) == 1
    assert result.policies[0].expiry_at == clock.now() + timedelta(days=1)
    assert result.policies[0].settlement_rail == SettlementRail.MOBILE_MONEY
    ref = result.external_ref
    assert gateway.check_calls[ref] == 12
    assert gateway.pushes[ref].phone_number == "254712345678"
    assert gateway.pushes[ref].amount == Decimal("12")


@pytest.mark.asyncio
async def test_mobile_money_window_closes_as_pending_then_recheck_settles(make_services, session, policy_store):
    gateway = MpesaMockClient(pending_polls=12)
    services = make_services(gateway=gateway)

    handle = await services.settlement.initiate(session, [("bike", "Weekly")], "mpesa", "key-1")
    with pytest.raises(ConfirmationTimeoutError):
        await services.settlement.wait(handle)

    intent = services.settlement.get_intent(RIDER_PHONE, "key-1")
    assert intent.state == IntentState.PENDING
    assert intent.attempts == 12
    assert policy_store.list_by_rider(RIDER_PHONE) == []

    # The 13th check reports the payment; the rider is not charged twice.
    result = await services.settlement.poll(handle)
    assert result.outcome == PollOutcome.SETTLED
    assert gateway.push_count == 1
    assert len(policy_store.list_by_rider(RIDER_PHONE)) == 1


@pytest.mark.asyncio
async def test_mobile_money_decline_returns_to_pay_and_retry_pushes_again(make_services, session):
    gateway = MpesaMockClient(outcome=GatewayStatus.FAILED)
    services = make_services(gateway=gateway)

    handle = await services.settlement.initiate(session, [("rider", "Weekly")], "mpesa", "key-1")
    result = await services.settlement.wait(handle)

    assert result.outcome == PollOutcome.FAILED
    assert result.state == IntentState.PAY.value
    assert result.reason == DECLINED_REASON

    retried = await services.settlement.initiate(session, [("rider", "Weekly")], "mpesa", "key-1")
    assert retried.state == IntentState.AWAITING_CONFIRMATION
    assert gateway.push_count == 2
    await services.settlement.shutdown()


@pytest.mark.asyncio
async def test_replay_while_awaiting_does_not_push_again(make_services, session):
    gateway = MpesaMockClient()
    services = make_services(gateway=gateway, poll_interval_seconds=10)

    first = await services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")
    second = await services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")

    assert first.state == second.state == IntentState.AWAITING_CONFIRMATION
    assert gateway.push_count == 1
    await services.settlement.shutdown()


@pytest.mark.asyncio
async def test_push_failure_keeps_intent_in_pay(make_services, session):
    gateway = MpesaMockClient(fail_push=True)
    services = make_services(gateway=gateway)

    with pytest.raises(GatewayError):
        await services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")

    intent = services.settlement.get_intent(RIDER_PHONE, "key-1")
    assert intent.state == IntentState.PAY
    assert intent.error_kind == "gateway_error"
    assert gateway.push_count == 0


@pytest.mark.asyncio
async def test_transient_status_errors_are_tolerated(make_services, session):
    gateway = MpesaMockClient(check_errors=2)
    services = make_services(gateway=gateway)

    handle = await services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")
    result = await services.settlement.wait(handle)

    assert result.outcome == PollOutcome.SETTLED
    assert services.settlement.get_intent(RIDER_PHONE, "key-1").attempts == 3


@pytest.mark.asyncio
async def test_amount_below_mobile_money_minimum_is_rejected(make_services, session):
    gateway = MpesaMockClient()
    services = make_services(gateway=gateway, min_amount="100")

    with pytest.raises(ValidationError):
        await services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")
    assert gateway.push_count == 0


@pytest.mark.asyncio
async def test_cancel_stops_polling_and_parks_intent_as_pending(make_services, session):
    gateway = MpesaMockClient()
    services = make_services(gateway=gateway, poll_interval_seconds=10)

    handle = await services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")
    result = await services.settlement.cancel(handle)

    assert result.outcome == PollOutcome.PENDING
    assert services.settlement.get_intent(RIDER_PHONE, "key-1").state == IntentState.PENDING

    # A later status check still picks up a payment that landed.
    result = await services.settlement.poll(handle)
    assert result.outcome == PollOutcome.SETTLED


@pytest.mark.asyncio
async def test_shutdown_parks_awaiting_intents(make_services, session):
    services = make_services(poll_interval_seconds=10)

    await services.settlement.initiate(session, [("bike", "Daily")], "mpesa", "key-1")
    await services.settlement.shutdown()

    assert services.settlement.get_intent(RIDER_PHONE, "key-1").state == IntentState.PENDING


# ---------------------------------------------------------------------------
# Abandon / lookup / purge
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_abandon_from_pay_forgets_intent(make_services, session):
    services = make_services(ledger=InMemoryWalletLedger({RIDER_PHONE: Decimal("0")}))

    with pytest.raises(InsufficientBalanceError):
        await services.settlement.initiate(session, [("rider", "Daily")], "wallet", "key-1")

    await services.settlement.abandon("key-1", RIDER_PHONE)
    assert services.settlement.get_intent(RIDER_PHONE, "key-1") is None
    with pytest.raises(NotFoundError):
        await services.settlement.poll("key-1", RIDER_PHONE)


@pytest.mark.asyncio
async def test_abandon_after_settlement_is_refused(services, session):
    await services.settlement.initiate(session, [("rider", "Daily")], "wallet", "key-1")

    with pytest.raises(ValidationError):
        await services.settlement.abandon("key-1", RIDER_PHONE)


@pytest.mark.asyncio
async def test_purge_drops_old_terminal_intents(services, session, clock):
    await services.settlement.initiate(session, [("rider", "Daily")], "wallet", "key-1")
    clock.advance(hours=2)

    assert services.settlement.purge(timedelta(hours=1)) == 1
    assert services.settlement.get_intent(RIDER_PHONE, "key-1") is None


@pytest.mark.asyncio
async def test_abandon_is_refused_while_push_is_in_flight(make_services, session):
    gateway = MpesaMockClient(latency=0.05)
    services = make_services(gateway=gateway, poll_interval_seconds=10)

    initiating = asyncio.create_task(
        services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")
    )
    await asyncio.sleep(0.01)
    assert services.settlement.get_intent(RIDER_PHONE, "key-1").in_flight

    with pytest.raises(ValidationError):
        await services.settlement.abandon("key-1", RIDER_PHONE)

    handle = await initiating
    assert handle.state == IntentState.AWAITING_CONFIRMATION

    retried = await services.settlement.initiate(session, [("rider", "Daily")], "mpesa", "key-1")
    assert retried.state == IntentState.AWAITING_CONFIRMATION
    assert gateway.push_count == 1
    await services.settlement.shutdown()


@pytest.mark.asyncio
async def test_abandon_is_refused_while_debit_is_in_flight(make_services, session, policy_store):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("50")}, latency=0.05)
    services = make_services(ledger=ledger)

    initiating = asyncio.create_task(
        services.settlement.initiate(session, [("rider", "Daily")], "wallet", "key-1")
    )
    await asyncio.sleep(0.01)

    with pytest.raises(ValidationError):
        await services.settlement.abandon("key-1", RIDER_PHONE)

    handle = await initiating
    assert handle.state == IntentState.SETTLED
    assert services.settlement.get_intent(RIDER_PHONE, "key-1").state == IntentState.SETTLED
    assert ledger.debit_count == 1
    assert len(policy_store.list_by_rider(RIDER_PHONE)) == 1


@pytest.mark.asyncio
async def test_purge_keeps_pending_and_drops_stale_pay(make_services, session, clock):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("0")})
    services = make_services(ledger=ledger, poll_interval_seconds=10)

    with pytest.raises(InsufficientBalanceError):
        await services.settlement.initiate(session, [("rider", "Daily")], "wallet", "stuck")
    await services.settlement.initiate(session, [("bike", "Daily")], "mpesa", "waiting")
    await services.settlement.cancel("waiting", RIDER_PHONE)
    clock.advance(hours=2)

    assert services.settlement.purge() == 1
    assert services.settlement.get_intent(RIDER_PHONE, "stuck") is None
    assert services.settlement.get_intent(RIDER_PHONE, "waiting").state == IntentState.PENDING


@pytest.mark.asyncio
async def test_housekeeping_purges_until_shutdown(services, session, clock):
    await services.settlement.initiate(session, [("rider", "Daily")], "wallet", "key-1")
    clock.advance(hours=2)

    services.settlement.start_housekeeping(0.01)
    await asyncio.sleep(0.05)
    assert services.settlement.get_intent(RIDER_PHONE, "key-1") is None

    await services.settlement.shutdown()
    await services.settlement.initiate(session, [("bike", "Daily")], "wallet", "key-2")
    clock.advance(hours=2)
    await asyncio.sleep(0.05)
    assert services.settlement.get_intent(RIDER_PHONE, "key-2") is not None


@pytest.mark.asyncio
async def test_idempotency_keys_are_scoped_per_rider(make_services, session, policy_store):
    ledger = InMemoryWalletLedger({RIDER_PHONE: Decimal("50"), OTHER_PHONE: Decimal("50")})
    services = make_services(ledger=ledger)
    other = RiderSession(rider_id=OTHER_PHONE)

    mine = await services.settlement.initiate(session, [("rider", "Daily")], "wallet", "key-1")
    theirs = await services.settlement.initiate(other, [("bike", "Weekly")], "wallet", "key-1")

    assert mine.state == theirs.state == IntentState.SETTLED
    assert await ledger.get_balance(OTHER_PHONE) == Decimal("46.90")
    assert [p.rider_phone for p in policy_store.list_by_rider(OTHER_PHONE)] == [OTHER_PHONE]
    assert services.settlement.get_intent(OTHER_PHONE, "key-1").rider_id == OTHER_PHONE
    with pytest.raises(NotFoundError):
        await services.settlement.poll("key-1", "0700000000")
