"""
Real wallet ledger HTTP client.

Used when LEDGER_API_URL is configured. The ledger service performs the
check-and-debit atomically and dedupes on the idempotency key; this client only
translates requests and normalises the amounts it returns.
"""

from __future__ import annotations

import logging
import os
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from bodacover.errors import GatewayError, InsufficientBalanceError
from bodacover.integrations.contracts.interfaces import LedgerReceipt, WalletLedger
from bodacover.integrations.policy.response_wrappers import (
    IntegrationResponseError,
    normalize_ledger_amount,
    normalize_ledger_receipt,
)

logger = logging.getLogger(__name__)


class RealWalletLedgerClient(WalletLedger):
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        amounts_in_tinybars: Optional[bool] = None,
        timeout_seconds: float = 20.0,
    ) -> None:
        self.base_url = (base_url or os.getenv("LEDGER_API_URL", "")).rstrip("/")
        self.api_key = api_key or os.getenv("LEDGER_API_KEY", "")
        if amounts_in_tinybars is None:
            amounts_in_tinybars = os.getenv("LEDGER_AMOUNTS_IN_TINYBARS", "").lower() in ("1", "true", "yes")
        self.amounts_in_tinybars = amounts_in_tinybars
        self.timeout_seconds = timeout_seconds

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.base_url:
            raise ValueError("LEDGER_API_URL is not configured.")

        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("[LEDGER] Request to %s failed: %s", path, exc)
            raise GatewayError("The wallet service is unavailable right now. Please try again.") from exc

        data = response.json() if response.content else {}
        if response.status_code == 402 or data.get("error") == "insufficient_balance":
            raise InsufficientBalanceError()
        if response.is_error:
            logger.warning("[LEDGER] %s returned HTTP %s", path, response.status_code)
            raise GatewayError("The wallet service is unavailable right now. Please try again.")
        return data

    def _receipt(self, data: Dict[str, Any]) -> LedgerReceipt:
        try:
            normalized = normalize_ledger_receipt(data, in_tinybars=self.amounts_in_tinybars)
        except IntegrationResponseError as exc:
            logger.warning("[LEDGER] Receipt rejected: %s", exc)
            raise GatewayError("The wallet service returned an unexpected response.") from exc
        return LedgerReceipt(tx_ref=normalized.tx_ref, balance=normalized.balance, metadata={"ledger_raw": normalized.raw})

    async def get_balance(self, rider_id: str) -> Decimal:
        data = await self._post("/wallet-balance", {"phone": rider_id})
        try:
            return normalize_ledger_amount(data.get("walletBalance", data.get("balance")),
                                           in_tinybars=self.amounts_in_tinybars)
        except IntegrationResponseError as exc:
            raise GatewayError("The wallet service returned an unexpected response.") from exc

    async def debit(self, rider_id: str, amount: Decimal, idempotency_key: str) -> LedgerReceipt:
        data = await self._post(
            "/debit",
            {"phone": rider_id, "amount": str(amount), "idempotencyKey": idempotency_key},
        )
        return self._receipt(data)

    async def credit(self, rider_id: str, amount: Decimal) -> LedgerReceipt:
        data = await self._post("/credit-hbar", {"phone": rider_id, "amount": str(amount)})
        return self._receipt(data)
