"""
Quotation - premium totals and coverage summary for a set of selected tiers
"""

import logging
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Dict, Iterable, Mapping, Tuple

from bodacover.errors import InvalidSelectionError, NotFoundError
from bodacover.integrations.contracts.interfaces import ProtectionType, Selection, SettlementRail

from .catalog import PlanCatalog, parse_duration, parse_protection_type

logger = logging.getLogger(__name__)

_TYPE_ORDER = {ptype: index for index, ptype in enumerate(ProtectionType)}


@dataclass(frozen=True)
class Quote:
    selections: Tuple[Selection, ...]
    total_amount: Decimal
    per_type_amount: Dict[ProtectionType, Decimal] = field(default_factory=dict)
    coverage_summary: Dict[ProtectionType, Mapping[str, int]] = field(default_factory=dict)
    reward_units: int = 0
    fiat_total: Decimal = Decimal("0")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selections": [
                {"protectionType": s.protection_type.value, "plan": s.duration.value} for s in self.selections
            ],
            "totalAmount": str(self.total_amount),
            "perTypeAmount": {ptype.value: str(amount) for ptype, amount in self.per_type_amount.items()},
            "coverageSummary": {ptype.value: dict(cover) for ptype, cover in self.coverage_summary.items()},
            "rewardUnits": self.reward_units,
            "fiatTotal": str(self.fiat_total),
        }


def _coerce_selection(item: Any) -> Selection:
    if isinstance(item, Selection):
        return item
    if isinstance(item, Mapping):
        raw_type = item.get("protectionType", item.get("protection_type"))
        raw_duration = item.get("duration", item.get("plan"))
    elif isinstance(item, (tuple, list)) and len(item) == 2:
        raw_type, raw_duration = item
    else:
        raise InvalidSelectionError(f"Unrecognised plan selection: {item!r}")

    try:
        return Selection(parse_protection_type(raw_type), parse_duration(raw_duration))
    except NotFoundError as exc:
        raise InvalidSelectionError(exc.reason) from exc


class QuoteCalculator:
    def __init__(self, catalog: PlanCatalog, reward_units_per_token: Decimal = Decimal("100")):
        self.catalog = catalog
        self.reward_units_per_token = Decimal(reward_units_per_token)

    def normalize_selections(self, selections: Any) -> Tuple[Selection, ...]:
        """Validate a selection set; at most one duration per protection type."""
        if isinstance(selections, Mapping) and not (
            "protectionType" in selections or "protection_type" in selections
        ):
            items: Iterable[Any] = list(selections.items())
        elif isinstance(selections, (Selection, Mapping)):
            items = [selections]
        else:
            items = list(selections or [])

        chosen: Dict[ProtectionType, Selection] = {}
        for item in items:
            selection = _coerce_selection(item)
            existing = chosen.get(selection.protection_type)
            if existing is not None and existing != selection:
                raise InvalidSelectionError(
                    f"Pick only one {selection.protection_type.value} plan at a time."
                )
            chosen[selection.protection_type] = selection

        if not chosen:
            raise InvalidSelectionError()

        return tuple(sorted(chosen.values(), key=lambda s: _TYPE_ORDER[s.protection_type]))

    def quote(self, selections: Any) -> Quote:
        normalized = self.normalize_selections(selections)

        total = Decimal("0")
        per_type: Dict[ProtectionType, Decimal] = {}
        coverage: Dict[ProtectionType, Mapping[str, int]] = {}
        for selection in normalized:
            tier = self.catalog.get_tier(selection.protection_type, selection.duration)
            total += tier.premium_amount
            per_type[selection.protection_type] = tier.premium_amount
            coverage[selection.protection_type] = tier.coverage_schedule

        reward_units = int((total * self.reward_units_per_token).to_integral_value(rounding=ROUND_FLOOR))
        quote = Quote(
            selections=normalized,
            total_amount=total,
            per_type_amount=per_type,
            coverage_summary=coverage,
            reward_units=reward_units,
            fiat_total=self.catalog.fiat_value(total),
        )
        logger.info("[Quotation] selections=%s total=%s %s fiat=%s %s",
                    [f"{s.protection_type.value}/{s.duration.value}" for s in normalized],
                    total, self.catalog.token_symbol, quote.fiat_total, self.catalog.fiat_currency)
        return quote

    def charge_amount(self, quote: Quote, rail: SettlementRail) -> Decimal:
        """Amount the rail actually charges: tokens for the wallet, whole fiat for mobile money."""
        if rail == SettlementRail.MOBILE_MONEY:
            return quote.fiat_total
        return quote.total_amount
