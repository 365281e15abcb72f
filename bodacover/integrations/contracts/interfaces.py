from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ProtectionType(str, Enum):
    RIDER = "rider"
    BIKE = "bike"


class Duration(str, Enum):
    DAILY = "Daily"
    WEEKLY = "Weekly"
    MONTHLY = "Monthly"

    @property
    def day_count(self) -> int:
        return _DAY_COUNTS[self]

    @property
    def period(self) -> timedelta:
        return timedelta(days=self.day_count)


_DAY_COUNTS = {Duration.DAILY: 1, Duration.WEEKLY: 7, Duration.MONTHLY: 30}


class SettlementRail(str, Enum):
    MOBILE_MONEY = "mobile_money"
    WALLET_TOKEN = "wallet_token"


class GatewayStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ClaimStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    PROCESSED = "Processed"


# ---------------------------------------------------------------------------
# Shared data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PlanTier:
    protection_type: ProtectionType
    duration: Duration
    premium_amount: Decimal              # wallet-token unit (HBAR)
    coverage_schedule: Mapping[str, int]  # benefit -> KSh amount, 0 = not covered


@dataclass(frozen=True)
class Selection:
    protection_type: ProtectionType
    duration: Duration


@dataclass
class Rider:
    rider_id: str                        # phone number doubles as rider id
    phone_number: str
    name: str = ""
    national_id: str = ""
    email: Optional[str] = None
    wallet_address: Optional[str] = None
    cached_balance: Optional[Decimal] = None
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class Policy:
    id: str
    rider_phone: str
    protection_type: ProtectionType
    duration: Duration
    premium_paid: Decimal
    settlement_rail: SettlementRail
    transaction_ref: str
    intent_key: str
    created_at: datetime
    expiry_at: datetime
    active_flag: bool = True

    def is_active(self, now: datetime) -> bool:
        """Stored flag AND time window; an expired policy is never active."""
        return self.active_flag and now < self.expiry_at


@dataclass
class Claim:
    id: str
    claim_id: str
    policy_id: str
    rider_phone: str
    premium_at_claim: Decimal
    details: str
    evidence_ref: str
    status: ClaimStatus = ClaimStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    payout_transaction_ref: Optional[str] = None


@dataclass
class LedgerReceipt:
    tx_ref: str
    balance: Decimal
    metadata: Dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Settlement collaborators
# ---------------------------------------------------------------------------

class PaymentGateway(ABC):
    """Mobile-money push payment gateway (e.g. M-Pesa STK push)."""

    @abstractmethod
    async def start_push(self, phone_number: str, amount: Decimal) -> str:
        """Send a push-payment prompt; return the opaque checkout reference."""

    @abstractmethod
    async def check_status(self, external_ref: str) -> GatewayStatus:
        """Return the current status of a previously started push."""


class WalletLedger(ABC):
    """Token wallet ledger. Amounts are already normalised to Decimal."""

    @abstractmethod
    async def get_balance(self, rider_id: str) -> Decimal:
        """Authoritative balance for a rider."""

    @abstractmethod
    async def debit(self, rider_id: str, amount: Decimal, idempotency_key: str) -> LedgerReceipt:
        """Atomically check-and-debit; raise InsufficientBalanceError when short."""

    @abstractmethod
    async def credit(self, rider_id: str, amount: Decimal) -> LedgerReceipt:
        """Deposit tokens into a rider's wallet."""


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class RiderStore(ABC):
    @abstractmethod
    def get_or_create_rider(self, phone_number: str, **profile: Any) -> Rider:
        """Register a rider, or return the existing one for this phone number."""

    @abstractmethod
    def get_rider(self, rider_id: str) -> Optional[Rider]:
        """Fetch a rider by id."""

    @abstractmethod
    def update_cached_balance(self, rider_id: str, balance: Decimal) -> None:
        """Refresh the rider's balance cache after a ledger operation."""


class PolicyStore(ABC):
    @abstractmethod
    def create_many(self, policies: List[Policy]) -> List[Policy]:
        """Insert all policies or none."""

    @abstractmethod
    def get(self, policy_id: str) -> Optional[Policy]:
        """Fetch a policy by id."""

    @abstractmethod
    def list_by_rider(self, rider_phone: str) -> List[Policy]:
        """All policies for a rider, newest first."""

    @abstractmethod
    def list_by_intent(self, intent_key: str) -> List[Policy]:
        """Policies created for one settled payment intent."""

    @abstractmethod
    def deactivate(self, policy_id: str) -> Policy:
        """Clear the stored active flag."""


class ClaimStore(ABC):
    @abstractmethod
    def create(self, claim: Claim) -> Claim:
        """Insert a claim; raise DuplicateClaimError if the policy already has one."""

    @abstractmethod
    def get(self, claim_id: str) -> Optional[Claim]:
        """Fetch a claim by id or human-readable claim id."""

    @abstractmethod
    def get_by_policy(self, policy_id: str) -> Optional[Claim]:
        """The claim referencing a policy, if any."""

    @abstractmethod
    def list_by_rider(self, rider_phone: str) -> List[Claim]:
        """All claims for a rider, newest first."""

    @abstractmethod
    def update(self, claim: Claim) -> Claim:
        """Persist status / payout changes."""
