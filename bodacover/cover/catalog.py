"""
Plan catalog - fixed table of rider/bike tiers with premium and coverage.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bodacover.errors import NotFoundError
from bodacover.integrations.contracts.interfaces import Duration, PlanTier, ProtectionType
from bodacover.utils.config_loader import CoverConfig, load_cover_config

logger = logging.getLogger(__name__)


def parse_protection_type(value: Any) -> ProtectionType:
    if isinstance(value, ProtectionType):
        return value
    try:
        return ProtectionType(str(value or "").strip().lower())
    except ValueError:
        raise NotFoundError(f"Unknown protection type '{value}'.") from None


def parse_duration(value: Any) -> Duration:
    if isinstance(value, Duration):
        return value
    try:
        return Duration(str(value or "").strip().capitalize())
    except ValueError:
        raise NotFoundError(f"Unknown plan duration '{value}'.") from None


class PlanCatalog:
    def __init__(
        self,
        tiers: Iterable[PlanTier],
        conversion_rate: Decimal = Decimal("12.9"),
        fiat_currency: str = "KSh",
        token_symbol: str = "HBAR",
    ):
        self._tiers: Dict[Tuple[ProtectionType, Duration], PlanTier] = {}
        for tier in tiers:
            self._tiers[(tier.protection_type, tier.duration)] = tier

        expected = len(ProtectionType) * len(Duration)
        if len(self._tiers) != expected:
            raise ValueError(f"Plan catalog needs {expected} tiers, got {len(self._tiers)}")

        self.conversion_rate = Decimal(conversion_rate)
        self.fiat_currency = fiat_currency
        self.token_symbol = token_symbol

    @classmethod
    def from_config(cls, config: CoverConfig) -> "PlanCatalog":
        tiers = [
            PlanTier(
                protection_type=ProtectionType(protection_type),
                duration=Duration(duration),
                premium_amount=plan.amount,
                coverage_schedule=MappingProxyType(dict(plan.coverage)),
            )
            for protection_type, plans in config.plans.items()
            for duration, plan in plans.items()
        ]
        logger.info("[Catalog] Loaded %d plan tiers (rate=%s %s/%s)",
                    len(tiers), config.conversion_rate, config.fiat_currency, config.token_symbol)
        return cls(
            tiers,
            conversion_rate=config.conversion_rate,
            fiat_currency=config.fiat_currency,
            token_symbol=config.token_symbol,
        )

    @classmethod
    def default(cls, config: Optional[CoverConfig] = None) -> "PlanCatalog":
        return cls.from_config(config or load_cover_config())

    def get_tier(self, protection_type: Any, duration: Any) -> PlanTier:
        key = (parse_protection_type(protection_type), parse_duration(duration))
        tier = self._tiers.get(key)
        if tier is None:
            raise NotFoundError(f"No plan for {key[0].value}/{key[1].value}.")
        return tier

    def tiers(self) -> List[PlanTier]:
        return [self._tiers[(p, d)] for p in ProtectionType for d in Duration]

    def fiat_value(self, amount: Decimal) -> Decimal:
        """Display conversion: token amount -> whole fiat units."""
        return (Decimal(amount) * self.conversion_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
