"""
M-Pesa STK push - MOCK client.

⚠️  This is a mock implementation for development and testing.
    Replace with the real gateway client (clients/real_http/mpesa.py) once
    credentials are available. Status behaviour is configurable via the
    MpesaMockClient constructor so polling scenarios can be reproduced.
"""

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from bodacover.errors import GatewayError, NotFoundError, ValidationError
from bodacover.integrations.contracts.interfaces import GatewayStatus, PaymentGateway
from bodacover.integrations.contracts.payments import PushRequest, to_msisdn, validate_push_request

logger = logging.getLogger(__name__)


class MpesaMockClient(PaymentGateway):
    """
    Mock M-Pesa push gateway.

    Parameters
    ----------
    outcome : GatewayStatus
        Status reported once the pending polls are used up. Default COMPLETED.
    pending_polls : int
        Number of status checks that report PENDING before ``outcome``.
    status_script : sequence of GatewayStatus, optional
        Explicit per-check statuses; the last entry repeats. Overrides
        ``outcome`` / ``pending_polls``.
    fail_push : bool
        If True, start_push raises GatewayError.
    check_errors : int
        Number of initial status checks that raise GatewayError.
    latency : float
        Seconds start_push waits before answering.
    """

    def __init__(
        self,
        outcome: GatewayStatus = GatewayStatus.COMPLETED,
        pending_polls: int = 0,
        status_script: Optional[Sequence[GatewayStatus]] = None,
        fail_push: bool = False,
        check_errors: int = 0,
        latency: float = 0.0,
    ):
        self._outcome = outcome
        self._pending_polls = pending_polls
        self._script: List[GatewayStatus] = list(status_script or [])
        self._fail_push = fail_push
        self._check_errors = check_errors
        self._latency = latency

        # In-memory stores (reset on restart)
        self.pushes: Dict[str, PushRequest] = {}
        self.check_calls: Dict[str, int] = {}
        self._forced: Dict[str, GatewayStatus] = {}

        logger.info("[MPESA MOCK] Client initialised (outcome=%s pending_polls=%d)", outcome.value, pending_polls)

    def _new_checkout_ref(self) -> str:
        return f"ws_CO_{uuid.uuid4().hex[:16].upper()}"

    @property
    def push_count(self) -> int:
        return len(self.pushes)

    # ------------------------------------------------------------------
    # Gateway
    # ------------------------------------------------------------------

    async def start_push(self, phone_number: str, amount: Decimal) -> str:
        if self._fail_push:
            logger.warning("[MPESA MOCK] Simulated push failure phone=%s", phone_number)
            raise GatewayError()

        if self._latency:
            await asyncio.sleep(self._latency)

        ref = self._new_checkout_ref()
        request = PushRequest(phone_number=phone_number, amount=amount, idempotency_key=ref)
        errors = validate_push_request(request)
        if errors:
            raise ValidationError("; ".join(errors))
        request.phone_number = to_msisdn(phone_number)
        self.pushes[ref] = request
        self.check_calls[ref] = 0
        logger.info("[MPESA MOCK] STK push sent ref=%s amount=%s", ref, amount)
        return ref

    async def check_status(self, external_ref: str) -> GatewayStatus:
        if external_ref not in self.pushes:
            raise NotFoundError("Payment request not found.")

        self.check_calls[external_ref] += 1
        calls = self.check_calls[external_ref]

        if calls <= self._check_errors:
            logger.warning("[MPESA MOCK] Simulated status-check failure ref=%s call=%d", external_ref, calls)
            raise GatewayError()

        if external_ref in self._forced:
            return self._forced[external_ref]

        effective = calls - self._check_errors
        if self._script:
            status = self._script[min(effective, len(self._script)) - 1]
        elif effective <= self._pending_polls:
            status = GatewayStatus.PENDING
        else:
            status = self._outcome

        logger.debug("[MPESA MOCK] Status ref=%s call=%d -> %s", external_ref, calls, status.value)
        return status

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def force_status(self, external_ref: str, status: GatewayStatus) -> None:
        """Simulate a confirmation arriving out-of-band."""
        self._forced[external_ref] = status
