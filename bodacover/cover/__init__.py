"""
Cover core: plan catalog, quotes, dual-rail settlement, policy activation and claims.
"""

from .activation import PolicyActivator, PolicyPage
from .catalog import PlanCatalog
from .claims import ClaimAdjudicator
from .clock import FixedClock, SystemClock
from .quotation import Quote, QuoteCalculator
from .services import CoverServices, build_services
from .session import RiderSession
from .settlement import IntentState, PaymentIntentHandle, PaymentSettlementEngine

__all__ = [
    "ClaimAdjudicator", "CoverServices", "FixedClock", "IntentState",
    "PaymentIntentHandle", "PaymentSettlementEngine", "PlanCatalog",
    "PolicyActivator", "PolicyPage", "Quote", "QuoteCalculator",
    "RiderSession", "SystemClock", "build_services",
]
