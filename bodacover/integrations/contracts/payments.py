"""
Payment contracts.

Defines the request/outcome structures shared by the settlement engine and the
gateway/ledger clients, e.g.:
- a push-payment request for the mobile-money rail
- the poll result handed back to callers

These contracts must be used by both:
- clients/mocks/* (fake responses for development/testing)
- clients/real_http/* (real API calls)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .interfaces import GatewayStatus, Policy, SettlementRail

_RAIL_ALIASES = {
    "mobile_money": SettlementRail.MOBILE_MONEY,
    "mobile-money": SettlementRail.MOBILE_MONEY,
    "mpesa": SettlementRail.MOBILE_MONEY,
    "m-pesa": SettlementRail.MOBILE_MONEY,
    "wallet_token": SettlementRail.WALLET_TOKEN,
    "wallet": SettlementRail.WALLET_TOKEN,
    "hbar": SettlementRail.WALLET_TOKEN,
}


class PollOutcome(str, Enum):
    SETTLED = "settled"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class PushRequest:
    phone_number: str
    amount: Decimal
    idempotency_key: str
    description: str = "Boda cover premium"
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PollResult:
    outcome: PollOutcome
    state: str
    reason: Optional[str] = None
    policies: List[Policy] = field(default_factory=list)
    external_ref: Optional[str] = None
    retry_after: Optional[float] = None


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------

def parse_rail(value: Any) -> SettlementRail:
    if isinstance(value, SettlementRail):
        return value
    key = str(value or "").strip().lower()
    if key not in _RAIL_ALIASES:
        raise ValueError(f"Unknown settlement rail '{value}'")
    return _RAIL_ALIASES[key]


def validate_push_request(request: PushRequest) -> List[str]:
    """
    Return a list of validation errors.
    Empty list means the request is valid.
    """
    errors: List[str] = []

    if not request.idempotency_key:
        errors.append("idempotency_key is required")
    if not request.phone_number:
        errors.append("phone_number is required")
    if request.amount <= 0:
        errors.append("amount must be greater than zero")

    # Kenyan MSISDN: 07XXXXXXXX / 01XXXXXXXX / 2547XXXXXXXX / +2547XXXXXXXX
    digits = re.sub(r"\D", "", request.phone_number or "")
    if digits.startswith("254"):
        digits = digits[3:]
    digits = digits.lstrip("0")
    if len(digits) != 9:
        errors.append(f"phone_number '{request.phone_number}' does not look valid")

    return errors


def to_msisdn(phone_number: str) -> str:
    """Normalise a Kenyan phone number to the 2547XXXXXXXX form gateways expect."""
    digits = re.sub(r"\D", "", phone_number or "")
    if digits.startswith("254"):
        return digits
    return "254" + digits.lstrip("0")


def is_terminal_status(status: GatewayStatus) -> bool:
    """Return True if the gateway will not change this status again."""
    return status in {GatewayStatus.COMPLETED, GatewayStatus.FAILED}
