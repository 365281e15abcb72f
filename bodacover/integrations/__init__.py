"""
Integrations layer.
This package contains all code used to communicate with external systems such as:
- Mobile-money push payment gateways (M-Pesa STK push)
- The wallet-token ledger (HBAR balances and debits)

Key rule:
- The cover core MUST NOT call external APIs directly.
- It calls integration clients (under bodacover/integrations/clients) through
  the interfaces in contracts/interfaces.py.
- We use MOCK clients during development and swap to REAL_HTTP clients when
  endpoints are configured.

Switching implementations:
- The selection of mock vs real clients happens in ONE place (bodacover/api/main.py).
"""

from .contracts.interfaces import (
    Claim,
    ClaimStatus,
    ClaimStore,
    Duration,
    GatewayStatus,
    LedgerReceipt,
    PaymentGateway,
    PlanTier,
    Policy,
    PolicyStore,
    ProtectionType,
    Rider,
    RiderStore,
    Selection,
    SettlementRail,
    WalletLedger,
)
from .contracts.payments import (
    PollOutcome,
    PollResult,
    PushRequest,
    is_terminal_status,
    parse_rail,
    validate_push_request,
)

__all__ = [
    # interfaces
    "Claim", "ClaimStatus", "ClaimStore", "Duration", "GatewayStatus",
    "LedgerReceipt", "PaymentGateway", "PlanTier", "Policy", "PolicyStore",
    "ProtectionType", "Rider", "RiderStore", "Selection", "SettlementRail",
    "WalletLedger",
    # payments
    "PollOutcome", "PollResult", "PushRequest",
    "is_terminal_status", "parse_rail", "validate_push_request",
]
