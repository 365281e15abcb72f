"""
Mock integration clients.

These clients return fake (but realistic) responses without calling any external API.
They are used when:
- Gateway / ledger endpoints are not configured
- We want to test the settlement engine end-to-end without external dependencies

Important:
- Mock clients must follow the SAME interface as real HTTP clients
  (PaymentGateway / WalletLedger in contracts/interfaces.py).

Switching to real:
When endpoints and credentials are provided, bodacover/api/main.py wires the
clients/real_http/* implementations instead.
"""

from .ledger import InMemoryWalletLedger
from .mpesa import MpesaMockClient

__all__ = ["InMemoryWalletLedger", "MpesaMockClient"]
