"""
Wallet ledger - MOCK client.

In-memory HBAR ledger used in development and tests. Debits are atomic per
rider: the balance check and the write happen under one per-rider lock, and a
repeated idempotency key returns the original receipt instead of debiting again.
"""

import asyncio
import logging
import uuid
from decimal import Decimal
from typing import Dict, Optional, Tuple

from bodacover.errors import InsufficientBalanceError, ValidationError
from bodacover.integrations.contracts.interfaces import LedgerReceipt, WalletLedger

logger = logging.getLogger(__name__)


class InMemoryWalletLedger(WalletLedger):
    def __init__(self, balances: Optional[Dict[str, Decimal]] = None, latency: float = 0.0) -> None:
        self._balances: Dict[str, Decimal] = {k: Decimal(str(v)) for k, v in (balances or {}).items()}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._receipts: Dict[Tuple[str, str], LedgerReceipt] = {}
        self._latency = latency
        self.debit_count = 0

    def _lock_for(self, rider_id: str) -> asyncio.Lock:
        if rider_id not in self._locks:
            self._locks[rider_id] = asyncio.Lock()
        return self._locks[rider_id]

    def _new_tx_ref(self) -> str:
        return f"0.0.{uuid.uuid4().int % 10_000_000}@{uuid.uuid4().hex[:10]}"

    async def get_balance(self, rider_id: str) -> Decimal:
        return self._balances.get(rider_id, Decimal("0"))

    async def debit(self, rider_id: str, amount: Decimal, idempotency_key: str) -> LedgerReceipt:
        if amount <= 0:
            raise ValidationError("Debit amount must be greater than zero.")

        async with self._lock_for(rider_id):
            previous = self._receipts.get((rider_id, idempotency_key))
            if previous is not None:
                logger.info("[LEDGER MOCK] Replayed debit key=%s", idempotency_key)
                return previous

            balance = self._balances.get(rider_id, Decimal("0"))
            if self._latency:
                # Yield inside the critical section so concurrent debits interleave.
                await asyncio.sleep(self._latency)
            if balance < amount:
                logger.info("[LEDGER MOCK] Insufficient balance rider=%s balance=%s amount=%s",
                            rider_id, balance, amount)
                raise InsufficientBalanceError()

            self._balances[rider_id] = balance - amount
            self.debit_count += 1
            receipt = LedgerReceipt(tx_ref=self._new_tx_ref(), balance=self._balances[rider_id])
            self._receipts[(rider_id, idempotency_key)] = receipt
            logger.info("[LEDGER MOCK] Debited rider=%s amount=%s tx=%s", rider_id, amount, receipt.tx_ref)
            return receipt

    async def credit(self, rider_id: str, amount: Decimal) -> LedgerReceipt:
        if amount <= 0:
            raise ValidationError("Deposit amount must be greater than zero.")

        async with self._lock_for(rider_id):
            self._balances[rider_id] = self._balances.get(rider_id, Decimal("0")) + amount
            receipt = LedgerReceipt(tx_ref=self._new_tx_ref(), balance=self._balances[rider_id])
            logger.info("[LEDGER MOCK] Credited rider=%s amount=%s", rider_id, amount)
            return receipt
