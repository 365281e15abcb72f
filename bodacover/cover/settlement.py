"""
Payment settlement - drives a premium payment across the two rails

Mobile money: push request -> background confirmation polling -> settled /
back to pay / pending (window closed, may still land).
Wallet token: atomic ledger debit -> settled, no confirmation step.

Every initiate() is keyed by a caller-supplied idempotency key; retries with
the same key return the recorded intent instead of pushing or debiting again.
Keys are scoped to the rider that supplied them.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple, Union

from bodacover.errors import (
    ConfirmationTimeoutError,
    CoverError,
    GatewayError,
    IdempotencyConflictError,
    InsufficientBalanceError,
    InvalidTransitionError,
    NotFoundError,
    SettlementFailedError,
    ValidationError,
)
from bodacover.integrations.contracts.interfaces import (
    GatewayStatus,
    PaymentGateway,
    Policy,
    RiderStore,
    Selection,
    SettlementRail,
    WalletLedger,
)
from bodacover.integrations.contracts.payments import PollOutcome, PollResult, is_terminal_status, parse_rail

from .activation import PolicyActivator
from .clock import Clock, SystemClock
from .quotation import Quote, QuoteCalculator
from .session import RiderSession

logger = logging.getLogger(__name__)

DECLINED_REASON = "Payment was declined or cancelled on your phone. Please try again."


class IntentState(str, Enum):
    SELECT = "select"
    PAY = "pay"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"


_TRANSITIONS: Dict[IntentState, FrozenSet[IntentState]] = {
    IntentState.SELECT: frozenset({IntentState.PAY}),
    IntentState.PAY: frozenset({
        IntentState.SELECT,
        IntentState.AWAITING_CONFIRMATION,
        IntentState.SETTLED,
        IntentState.FAILED,
    }),
    IntentState.AWAITING_CONFIRMATION: frozenset({
        IntentState.SETTLED,
        IntentState.FAILED,
        IntentState.PAY,
        IntentState.PENDING,
    }),
    IntentState.PENDING: frozenset({IntentState.SETTLED, IntentState.FAILED, IntentState.PAY}),
    IntentState.SETTLED: frozenset(),
    IntentState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({IntentState.SETTLED, IntentState.FAILED})

# (rider_id, idempotency_key)
IntentKey = Tuple[str, str]


@dataclass(frozen=True)
class PaymentIntentHandle:
    idempotency_key: str
    rider_id: str
    rail: SettlementRail
    state: IntentState
    total_amount: Decimal
    charge_amount: Decimal


@dataclass
class PaymentIntent:
    idempotency_key: str
    rider_id: str
    rail: SettlementRail
    quote: Quote
    charge_amount: Decimal
    fingerprint: str
    created_at: datetime
    state: IntentState = IntentState.SELECT
    external_ref: Optional[str] = None
    attempts: int = 0
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    refund_ref: Optional[str] = None
    in_flight: bool = False
    policies: List[Policy] = field(default_factory=list)
    history: List[IntentState] = field(default_factory=list)

    @property
    def selections(self) -> Tuple[Selection, ...]:
        return self.quote.selections

    @property
    def total_amount(self) -> Decimal:
        return self.quote.total_amount

    def move_to(self, target: IntentState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError("payment intent", self.state.value, target.value)
        self.history.append(self.state)
        self.state = target

    def record_error(self, exc: CoverError) -> None:
        self.reason = exc.reason
        self.error_kind = exc.kind

    def handle(self) -> PaymentIntentHandle:
        return PaymentIntentHandle(
            idempotency_key=self.idempotency_key,
            rider_id=self.rider_id,
            rail=self.rail,
            state=self.state,
            total_amount=self.total_amount,
            charge_amount=self.charge_amount,
        )


def _fingerprint(rider_id: str, selections: Tuple[Selection, ...], rail: SettlementRail) -> str:
    payload = {
        "rider": rider_id,
        "rail": rail.value,
        "selections": [[s.protection_type.value, s.duration.value] for s in selections],
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


def _key_of(intent: PaymentIntent) -> IntentKey:
    return (intent.rider_id, intent.idempotency_key)


class PaymentSettlementEngine:
    def __init__(
        self,
        quotes: QuoteCalculator,
        activator: PolicyActivator,
        gateway: PaymentGateway,
        ledger: WalletLedger,
        riders: RiderStore,
        clock: Optional[Clock] = None,
        poll_interval_seconds: float = 5.0,
        max_poll_attempts: int = 12,
        mobile_money_min_amount: Decimal = Decimal("1"),
        intent_retention: timedelta = timedelta(hours=1),
    ):
        self.quotes = quotes
        self.activator = activator
        self.gateway = gateway
        self.ledger = ledger
        self.riders = riders
        self.clock = clock or SystemClock()
        self.poll_interval_seconds = poll_interval_seconds
        self.max_poll_attempts = max_poll_attempts
        self.mobile_money_min_amount = Decimal(mobile_money_min_amount)
        self.intent_retention = intent_retention

        self._intents: Dict[IntentKey, PaymentIntent] = {}
        self._key_locks: Dict[IntentKey, asyncio.Lock] = {}
        self._pollers: Dict[IntentKey, "asyncio.Task[None]"] = {}
        self._housekeeper: Optional["asyncio.Task[None]"] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def initiate(
        self,
        session: RiderSession,
        selections,
        rail: Union[SettlementRail, str],
        idempotency_key: str,
    ) -> PaymentIntentHandle:
        idempotency_key = (idempotency_key or "").strip()
        if not idempotency_key:
            raise ValidationError("A payment reference (idempotency key) is required.")
        try:
            rail = parse_rail(rail)
        except ValueError as exc:
            raise ValidationError("Choose mobile money or wallet as the payment method.") from exc

        quote = self.quotes.quote(selections)
        fingerprint = _fingerprint(session.rider_id, quote.selections, rail)
        key = (session.rider_id, idempotency_key)

        async with self._lock_for(key):
            intent = self._intents.get(key)
            if intent is not None:
                if intent.fingerprint != fingerprint:
                    raise IdempotencyConflictError()
                if intent.state == IntentState.FAILED:
                    raise SettlementFailedError(intent.reason)
                if intent.state != IntentState.PAY:
                    logger.info("[Settlement] Replay key=%s state=%s", idempotency_key, intent.state.value)
                    return intent.handle()
                # Still in PAY: nothing went out last time, so it is safe to try again.
                logger.info("[Settlement] Retrying key=%s after %s", idempotency_key, intent.error_kind)
            else:
                intent = PaymentIntent(
                    idempotency_key=idempotency_key,
                    rider_id=session.rider_id,
                    rail=rail,
                    quote=quote,
                    charge_amount=self.quotes.charge_amount(quote, rail),
                    fingerprint=fingerprint,
                    created_at=self.clock.now(),
                )
                intent.move_to(IntentState.PAY)
                self._intents[key] = intent
                logger.info("[Settlement] New intent key=%s rider=%s rail=%s total=%s charge=%s",
                            idempotency_key, session.rider_id, rail.value, quote.total_amount, intent.charge_amount)

            # abandon() refuses while this is set.
            intent.in_flight = True
            try:
                if rail == SettlementRail.MOBILE_MONEY:
                    await self._start_mobile_money(intent)
                else:
                    await self._settle_wallet(intent)
            finally:
                intent.in_flight = False
            return intent.handle()

    async def poll(self, handle: Union[PaymentIntentHandle, str], rider_id: Optional[str] = None) -> PollResult:
        """Current outcome; a pending mobile-money intent gets one fresh status check."""
        intent = self._get(handle, rider_id)
        key = _key_of(intent)
        if intent.state == IntentState.PENDING and key not in self._pollers:
            async with self._lock_for(key):
                if intent.state == IntentState.PENDING:
                    await self._recheck(intent)
        return self._result(intent)

    async def wait(self, handle: Union[PaymentIntentHandle, str], rider_id: Optional[str] = None) -> PollResult:
        """Block until the confirmation window resolves."""
        intent = self._get(handle, rider_id)
        task = self._pollers.get(_key_of(intent))
        if task is not None:
            # asyncio.wait never cancels the poller if this waiter is cancelled.
            await asyncio.wait({task})
        if intent.state == IntentState.PENDING:
            raise ConfirmationTimeoutError(detail={"idempotency_key": intent.idempotency_key})
        return self._result(intent)

    async def cancel(self, handle: Union[PaymentIntentHandle, str], rider_id: Optional[str] = None) -> PollResult:
        """Stop local polling. A settlement that already landed is kept."""
        intent = self._get(handle, rider_id)
        task = self._pollers.pop(_key_of(intent), None)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
            self._park_if_awaiting(intent)
            logger.info("[Settlement] Polling cancelled key=%s state=%s", intent.idempotency_key, intent.state.value)
        return self._result(intent)

    async def abandon(self, handle: Union[PaymentIntentHandle, str], rider_id: Optional[str] = None) -> None:
        """Back out of the pay step; only allowed while nothing is in flight."""
        intent = self._get(handle, rider_id)
        key = _key_of(intent)
        if intent.in_flight or intent.state != IntentState.PAY:
            raise ValidationError("This payment is already in progress and can no longer be cancelled.")
        async with self._lock_for(key):
            # An initiate queued on the lock may have pushed or debited meanwhile.
            if intent.in_flight or intent.state != IntentState.PAY or self._intents.get(key) is not intent:
                raise ValidationError("This payment is already in progress and can no longer be cancelled.")
            intent.move_to(IntentState.SELECT)
            del self._intents[key]
        logger.info("[Settlement] Intent abandoned key=%s", intent.idempotency_key)

    def get_intent(self, rider_id: str, idempotency_key: str) -> Optional[PaymentIntent]:
        return self._intents.get((rider_id, idempotency_key))

    def purge(self, max_age: Optional[timedelta] = None) -> int:
        """
        Drop intents older than max_age that can no longer change on their own.

        Settled and failed intents go, and so do intents left in the pay step
        with nothing in flight. Pending intents stay: their payment may still land.
        Returns how many were removed.
        """
        cutoff = self.clock.now() - (max_age if max_age is not None else self.intent_retention)
        stale = [
            key for key, intent in self._intents.items()
            if intent.created_at < cutoff
            and (intent.state in TERMINAL_STATES or (intent.state == IntentState.PAY and not intent.in_flight))
            and not self._is_locked(key)
        ]
        for key in stale:
            del self._intents[key]
        for key in [k for k, lock in self._key_locks.items() if k not in self._intents and not lock.locked()]:
            del self._key_locks[key]
        if stale:
            logger.info("[Settlement] Purged %d stale intents", len(stale))
        return len(stale)

    def start_housekeeping(self, interval_seconds: float) -> None:
        """Purge stale intents every interval_seconds until shutdown()."""
        if self._housekeeper is not None and not self._housekeeper.done():
            return
        self._housekeeper = asyncio.create_task(self._housekeeping_loop(interval_seconds), name="settlement-purge")

    async def _housekeeping_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            self.purge()

    async def shutdown(self) -> None:
        tasks = list(self._pollers.values())
        self._pollers.clear()
        if self._housekeeper is not None:
            tasks.append(self._housekeeper)
            self._housekeeper = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        for intent in self._intents.values():
            self._park_if_awaiting(intent)

    # ------------------------------------------------------------------
    # Mobile-money rail
    # ------------------------------------------------------------------

    async def _start_mobile_money(self, intent: PaymentIntent) -> None:
        if intent.charge_amount < self.mobile_money_min_amount:
            exc = ValidationError("The amount is below the mobile-money minimum.")
            intent.record_error(exc)
            raise exc

        try:
            ref = await self.gateway.start_push(intent.rider_id, intent.charge_amount)
        except (GatewayError, ValidationError) as exc:
            intent.record_error(exc)
            logger.warning("[Settlement] Push failed key=%s: %s", intent.idempotency_key, exc.reason)
            raise

        intent.external_ref = ref
        intent.attempts = 0
        intent.reason = None
        intent.error_kind = None
        intent.move_to(IntentState.AWAITING_CONFIRMATION)
        logger.info("[Settlement] Push sent key=%s checkout=%s", intent.idempotency_key, ref)

        key = _key_of(intent)
        task = asyncio.create_task(self._poll_loop(intent), name=f"settlement-poll-{intent.idempotency_key}")
        self._pollers[key] = task
        task.add_done_callback(lambda t, key=key: self._forget_poller(key, t))

    def _park_if_awaiting(self, intent: PaymentIntent) -> None:
        # A task cancelled before its first tick never reaches its own handler.
        if intent.state == IntentState.AWAITING_CONFIRMATION:
            intent.move_to(IntentState.PENDING)
            intent.record_error(ConfirmationTimeoutError())

    def _forget_poller(self, key: IntentKey, task: "asyncio.Task[None]") -> None:
        if self._pollers.get(key) is task:
            del self._pollers[key]

    async def _poll_loop(self, intent: PaymentIntent) -> None:
        try:
            while intent.state == IntentState.AWAITING_CONFIRMATION and intent.attempts < self.max_poll_attempts:
                await asyncio.sleep(self.poll_interval_seconds)
                intent.attempts += 1
                status = await self._check(intent)
                if status is None or not is_terminal_status(status):
                    continue
                self._apply_status(intent, status)

            if intent.state == IntentState.AWAITING_CONFIRMATION:
                intent.move_to(IntentState.PENDING)
                intent.record_error(ConfirmationTimeoutError())
                logger.info("[Settlement] No confirmation after %d checks key=%s; marked pending",
                            intent.attempts, intent.idempotency_key)
        except asyncio.CancelledError:
            if intent.state == IntentState.AWAITING_CONFIRMATION:
                intent.move_to(IntentState.PENDING)
                intent.record_error(ConfirmationTimeoutError())
            raise

    async def _check(self, intent: PaymentIntent) -> Optional[GatewayStatus]:
        try:
            return await self.gateway.check_status(intent.external_ref)
        except GatewayError as exc:
            logger.warning("[Settlement] Status check %d failed key=%s: %s",
                           intent.attempts, intent.idempotency_key, exc.reason)
            return None

    async def _recheck(self, intent: PaymentIntent) -> None:
        status = await self._check(intent)
        if status is not None and is_terminal_status(status):
            self._apply_status(intent, status)

    def _apply_status(self, intent: PaymentIntent, status: GatewayStatus) -> None:
        if status == GatewayStatus.COMPLETED:
            logger.info("[Settlement] Payment confirmed key=%s", intent.idempotency_key)
            self._complete(intent)
        elif status == GatewayStatus.FAILED:
            intent.move_to(IntentState.PAY)
            intent.reason = DECLINED_REASON
            intent.error_kind = "payment_declined"
            logger.info("[Settlement] Payment declined key=%s; back to pay", intent.idempotency_key)

    # ------------------------------------------------------------------
    # Wallet-token rail
    # ------------------------------------------------------------------

    async def _settle_wallet(self, intent: PaymentIntent) -> None:
        amount = intent.charge_amount
        rider = self.riders.get_rider(intent.rider_id)
        if rider is not None and rider.cached_balance is not None and rider.cached_balance < amount:
            # The cache may be stale (e.g. a deposit landed elsewhere); only the ledger decides.
            try:
                fresh = await self.ledger.get_balance(intent.rider_id)
            except GatewayError as exc:
                intent.record_error(exc)
                raise
            self.riders.update_cached_balance(intent.rider_id, fresh)
            if fresh < amount:
                exc = InsufficientBalanceError()
                intent.record_error(exc)
                logger.info("[Settlement] Insufficient balance key=%s balance=%s amount=%s",
                            intent.idempotency_key, fresh, amount)
                raise exc

        try:
            receipt = await self.ledger.debit(intent.rider_id, amount, intent.idempotency_key)
        except (InsufficientBalanceError, GatewayError) as exc:
            intent.record_error(exc)
            logger.info("[Settlement] Debit refused key=%s: %s", intent.idempotency_key, exc.kind)
            raise

        self.riders.update_cached_balance(intent.rider_id, receipt.balance)
        intent.external_ref = receipt.tx_ref
        logger.info("[Settlement] Wallet debited key=%s amount=%s", intent.idempotency_key, amount)
        self._complete(intent)
        if intent.state == IntentState.FAILED:
            await self._refund_wallet(intent)
            raise SettlementFailedError(intent.reason)

    async def _refund_wallet(self, intent: PaymentIntent) -> None:
        """Credit back a debit whose policies could not be activated."""
        try:
            receipt = await self.ledger.credit(intent.rider_id, intent.charge_amount)
        except CoverError as exc:
            logger.error("[Settlement] Refund failed key=%s amount=%s: %s; needs manual credit",
                         intent.idempotency_key, intent.charge_amount, exc.kind)
            return
        intent.refund_ref = receipt.tx_ref
        intent.reason = "Your payment could not be completed and has been refunded to your wallet."
        self.riders.update_cached_balance(intent.rider_id, receipt.balance)
        logger.warning("[Settlement] Refunded key=%s amount=%s tx=%s",
                       intent.idempotency_key, intent.charge_amount, receipt.tx_ref)

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    def _complete(self, intent: PaymentIntent) -> None:
        try:
            intent.policies = self.activator.activate(
                idempotency_key=intent.idempotency_key,
                rider_phone=intent.rider_id,
                rail=intent.rail,
                external_ref=intent.external_ref,
                selections=intent.selections,
            )
        except CoverError as exc:
            intent.move_to(IntentState.FAILED)
            intent.record_error(SettlementFailedError())
            logger.error("[Settlement] Paid but activation failed key=%s: %s", intent.idempotency_key, exc.kind)
            return

        intent.move_to(IntentState.SETTLED)
        intent.reason = None
        intent.error_kind = None

    def _result(self, intent: PaymentIntent) -> PollResult:
        if intent.state == IntentState.SETTLED:
            return PollResult(
                outcome=PollOutcome.SETTLED,
                state=intent.state.value,
                policies=list(intent.policies),
                external_ref=intent.external_ref,
            )
        if intent.state in (IntentState.AWAITING_CONFIRMATION, IntentState.PENDING):
            return PollResult(
                outcome=PollOutcome.PENDING,
                state=intent.state.value,
                reason=intent.reason,
                retry_after=self.poll_interval_seconds,
            )
        return PollResult(outcome=PollOutcome.FAILED, state=intent.state.value, reason=intent.reason)

    def _get(self, handle: Union[PaymentIntentHandle, str], rider_id: Optional[str] = None) -> PaymentIntent:
        if isinstance(handle, PaymentIntentHandle):
            key = (handle.rider_id, handle.idempotency_key)
        else:
            key = (rider_id or "", str(handle))
        intent = self._intents.get(key)
        if intent is None:
            raise NotFoundError("Payment not found.")
        return intent

    def _lock_for(self, key: IntentKey) -> asyncio.Lock:
        if key not in self._key_locks:
            self._key_locks[key] = asyncio.Lock()
        return self._key_locks[key]

    def _is_locked(self, key: IntentKey) -> bool:
        lock = self._key_locks.get(key)
        return lock is not None and lock.locked()
