"""
Policy activation - turns a settled payment intent into policy records
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from bodacover.errors import SettlementFailedError, ValidationError
from bodacover.integrations.contracts.interfaces import Policy, PolicyStore, Selection, SettlementRail

from .catalog import PlanCatalog
from .clock import Clock, SystemClock

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 5


@dataclass
class PolicyPage:
    policies: List[Policy] = field(default_factory=list)
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    total: int = 0

    @property
    def total_pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit)) if self.limit else 1

    def pagination(self) -> Dict[str, Any]:
        return {"page": self.page, "limit": self.limit, "total": self.total, "totalPages": self.total_pages}


class PolicyActivator:
    def __init__(self, catalog: PlanCatalog, policy_store: PolicyStore, clock: Optional[Clock] = None):
        self.catalog = catalog
        self.policies = policy_store
        self.clock = clock or SystemClock()

    def activate(
        self,
        *,
        idempotency_key: str,
        rider_phone: str,
        rail: SettlementRail,
        external_ref: str,
        selections: Sequence[Selection],
    ) -> List[Policy]:
        """
        Create one policy per selection for a settled intent, all or nothing.

        Re-invoking for an intent that was already activated returns the
        existing policies instead of creating duplicates.
        """
        existing = [p for p in self.policies.list_by_intent(idempotency_key) if p.rider_phone == rider_phone]
        if existing:
            logger.info("[Activation] intent=%s already activated (%d policies)", idempotency_key, len(existing))
            return existing

        if not selections:
            raise ValidationError("Nothing to activate.")

        settled_at = self.clock.now()
        batch: List[Policy] = []
        for selection in selections:
            tier = self.catalog.get_tier(selection.protection_type, selection.duration)
            batch.append(
                Policy(
                    id=str(uuid.uuid4()),
                    rider_phone=rider_phone,
                    protection_type=tier.protection_type,
                    duration=tier.duration,
                    premium_paid=tier.premium_amount,
                    settlement_rail=rail,
                    transaction_ref=external_ref,
                    intent_key=idempotency_key,
                    created_at=settled_at,
                    expiry_at=settled_at + tier.duration.period,
                    active_flag=True,
                )
            )

        try:
            created = self.policies.create_many(batch)
        except Exception as exc:
            logger.error("[Activation] intent=%s failed to store %d policies: %s",
                         idempotency_key, len(batch), exc, exc_info=True)
            raise SettlementFailedError() from exc

        logger.info("[Activation] intent=%s rider=%s created policies=%s",
                    idempotency_key, rider_phone, [p.id for p in created])
        return created

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_policies(self, rider_phone: str, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> PolicyPage:
        """Newest-first page of a rider's policies."""
        page = max(1, int(page))
        limit = max(1, int(limit))
        items = self.policies.list_by_rider(rider_phone)
        start = (page - 1) * limit
        return PolicyPage(policies=items[start:start + limit], page=page, limit=limit, total=len(items))

    def active_policies(self, rider_phone: str) -> List[Policy]:
        now = self.clock.now()
        return [p for p in self.policies.list_by_rider(rider_phone) if p.is_active(now)]
