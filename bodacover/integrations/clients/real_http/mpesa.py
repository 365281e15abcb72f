"""
Real M-Pesa gateway HTTP client.

Used when MPESA_API_URL is configured. Talks to the payments backend that
fronts Daraja STK push (`/paypremium`-style initiate and `/payment-status`).
"""

from __future__ import annotations

import logging
import os
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

import httpx

from bodacover.errors import GatewayError, ValidationError
from bodacover.integrations.contracts.interfaces import GatewayStatus, PaymentGateway
from bodacover.integrations.contracts.payments import PushRequest, to_msisdn, validate_push_request
from bodacover.integrations.policy.response_wrappers import (
    IntegrationResponseError,
    normalize_push_response,
    normalize_push_status,
)

logger = logging.getLogger(__name__)


class RealMpesaClient(PaymentGateway):
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        push_path: Optional[str] = None,
        status_path: Optional[str] = None,
        timeout_seconds: float = 20.0,
    ) -> None:
        self.base_url = (base_url or os.getenv("MPESA_API_URL", "")).rstrip("/")
        self.api_key = api_key or os.getenv("MPESA_API_KEY", "")
        self.push_path = push_path or os.getenv("MPESA_PUSH_PATH", "/stkpush")
        self.status_path = status_path or os.getenv("MPESA_STATUS_PATH", "/payment-status")
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.base_url:
            raise ValueError("MPESA_API_URL is not configured.")

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, json=payload, headers=self._headers())
                response.raise_for_status()
                return response.json() if response.content else {}
        except httpx.HTTPError as exc:
            logger.warning("[MPESA] Request to %s failed: %s", path, exc)
            raise GatewayError() from exc

    async def start_push(self, phone_number: str, amount: Decimal) -> str:
        # Daraja only accepts whole shillings.
        whole = int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        errors = validate_push_request(PushRequest(phone_number=phone_number, amount=Decimal(whole), idempotency_key="stk"))
        if errors:
            raise ValidationError("; ".join(errors))
        data = await self._post(self.push_path, {"phone": to_msisdn(phone_number), "amount": whole})
        try:
            normalized = normalize_push_response(data)
        except IntegrationResponseError as exc:
            logger.warning("[MPESA] Push response rejected: %s", exc)
            raise GatewayError() from exc

        logger.info("[MPESA] STK push accepted ref=%s", normalized.checkout_request_id)
        return normalized.checkout_request_id

    async def check_status(self, external_ref: str) -> GatewayStatus:
        data = await self._post(self.status_path, {"checkoutRequestId": external_ref})
        try:
            normalized = normalize_push_status(data, fallback_ref=external_ref)
        except IntegrationResponseError as exc:
            logger.warning("[MPESA] Status response rejected ref=%s: %s", external_ref, exc)
            raise GatewayError() from exc
        return normalized.status
