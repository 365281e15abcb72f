"""
Claim adjudication - eligibility checks and claim records (one claim per policy)
"""

import logging
import uuid
from typing import Dict, FrozenSet, List, Optional

from bodacover.errors import (
    DuplicateClaimError,
    InvalidTransitionError,
    NotFoundError,
    PolicyInactiveError,
    ValidationError,
)
from bodacover.integrations.contracts.interfaces import Claim, ClaimStatus, ClaimStore, Policy, PolicyStore

from .clock import Clock, SystemClock
from .session import RiderSession

logger = logging.getLogger(__name__)

# Pending -> Approved | Rejected -> Processed; nothing moves backwards.
_CLAIM_TRANSITIONS: Dict[ClaimStatus, FrozenSet[ClaimStatus]] = {
    ClaimStatus.PENDING: frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED}),
    ClaimStatus.APPROVED: frozenset({ClaimStatus.PROCESSED}),
    ClaimStatus.REJECTED: frozenset({ClaimStatus.PROCESSED}),
    ClaimStatus.PROCESSED: frozenset(),
}


def _new_claim_number() -> str:
    return f"CLM-{uuid.uuid4().hex[:8].upper()}"


class ClaimAdjudicator:
    def __init__(self, policy_store: PolicyStore, claim_store: ClaimStore, clock: Optional[Clock] = None):
        self.policies = policy_store
        self.claims = claim_store
        self.clock = clock or SystemClock()

    def list_eligible_policies(self, session: RiderSession) -> List[Policy]:
        """Active policies minus already-claimed ones, recomputed on every call."""
        now = self.clock.now()
        claimed = {c.policy_id for c in self.claims.list_by_rider(session.rider_id)}
        return [
            p for p in self.policies.list_by_rider(session.rider_id)
            if p.is_active(now) and p.id not in claimed
        ]

    def submit(self, session: RiderSession, policy_id: str, details: str, evidence_ref: Optional[str]) -> Claim:
        policy = self.policies.get(policy_id)
        if policy is None or policy.rider_phone != session.rider_id:
            raise NotFoundError("Policy not found.")

        if not policy.is_active(self.clock.now()):
            raise PolicyInactiveError()

        if self.claims.get_by_policy(policy.id) is not None:
            raise DuplicateClaimError()

        errors = {}
        if not (details or "").strip():
            errors["details"] = "Please provide claim details."
        if not (evidence_ref or "").strip():
            errors["evidence"] = "Please upload an image for the claim."
        if errors:
            raise ValidationError(" ".join(errors.values()), detail={"field_errors": errors})

        claim = Claim(
            id=str(uuid.uuid4()),
            claim_id=_new_claim_number(),
            policy_id=policy.id,
            rider_phone=session.rider_id,
            premium_at_claim=policy.premium_paid,
            details=details.strip(),
            evidence_ref=evidence_ref.strip(),
            status=ClaimStatus.PENDING,
            created_at=self.clock.now(),
        )
        # The store enforces uniqueness per policy, so a concurrent duplicate
        # that slipped past the check above still fails here.
        created = self.claims.create(claim)
        logger.info("[Claims] Claim %s filed rider=%s policy=%s", created.claim_id, session.rider_id, policy.id)
        return created

    def list_claims(self, session: RiderSession) -> List[Claim]:
        return self.claims.list_by_rider(session.rider_id)

    def record_decision(
        self,
        claim_id: str,
        status: ClaimStatus,
        payout_transaction_ref: Optional[str] = None,
    ) -> Claim:
        """Apply an external adjudication decision; statuses only move forward."""
        claim = self.claims.get(claim_id)
        if claim is None:
            raise NotFoundError("Claim not found.")

        status = ClaimStatus(status)
        if status not in _CLAIM_TRANSITIONS[claim.status]:
            raise InvalidTransitionError("claim", claim.status.value, status.value)

        claim.status = status
        if payout_transaction_ref:
            claim.payout_transaction_ref = payout_transaction_ref
        updated = self.claims.update(claim)

        if status == ClaimStatus.PROCESSED and updated.payout_transaction_ref:
            self.policies.deactivate(updated.policy_id)
            logger.info("[Claims] Policy %s deactivated after payout of claim %s", updated.policy_id, updated.claim_id)

        logger.info("[Claims] Claim %s -> %s", updated.claim_id, status.value)
        return updated
