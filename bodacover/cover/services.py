"""
Wiring for the cover core: catalog -> quotes -> settlement -> activation -> claims.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from bodacover.integrations.contracts.interfaces import (
    ClaimStore,
    PaymentGateway,
    PolicyStore,
    RiderStore,
    WalletLedger,
)
from bodacover.utils.config_loader import CoverConfig

from .activation import PolicyActivator
from .catalog import PlanCatalog
from .claims import ClaimAdjudicator
from .clock import Clock, SystemClock
from .quotation import QuoteCalculator
from .settlement import PaymentSettlementEngine


@dataclass
class CoverServices:
    config: CoverConfig
    catalog: PlanCatalog
    quotes: QuoteCalculator
    activator: PolicyActivator
    settlement: PaymentSettlementEngine
    claims: ClaimAdjudicator
    riders: RiderStore
    ledger: WalletLedger
    clock: Clock


def build_services(
    config: CoverConfig,
    *,
    gateway: PaymentGateway,
    ledger: WalletLedger,
    riders: RiderStore,
    policies: PolicyStore,
    claims: ClaimStore,
    clock: Optional[Clock] = None,
) -> CoverServices:
    clock = clock or SystemClock()
    catalog = PlanCatalog.from_config(config)
    quotes = QuoteCalculator(catalog, reward_units_per_token=config.reward_units_per_token)
    activator = PolicyActivator(catalog, policies, clock=clock)
    settlement = PaymentSettlementEngine(
        quotes,
        activator,
        gateway,
        ledger,
        riders,
        clock=clock,
        poll_interval_seconds=config.settlement.poll_interval_seconds,
        max_poll_attempts=config.settlement.max_poll_attempts,
        mobile_money_min_amount=config.settlement.mobile_money_min_amount,
        intent_retention=timedelta(seconds=config.settlement.intent_retention_seconds),
    )
    return CoverServices(
        config=config,
        catalog=catalog,
        quotes=quotes,
        activator=activator,
        settlement=settlement,
        claims=ClaimAdjudicator(policies, claims, clock=clock),
        riders=riders,
        ledger=ledger,
        clock=clock,
    )
