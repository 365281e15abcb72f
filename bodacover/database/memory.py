"""
Lightweight in-memory stores for local development and tests.

These implement the RiderStore / PolicyStore / ClaimStore interfaces so the
engine and API can run without a real database. Not intended for production.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from bodacover.errors import DuplicateClaimError, NotFoundError, ValidationError
from bodacover.integrations.contracts.interfaces import (
    Claim,
    ClaimStore,
    Policy,
    PolicyStore,
    Rider,
    RiderStore,
)


class InMemoryRiderStore(RiderStore):
    def __init__(self) -> None:
        self._riders: Dict[str, Rider] = {}
        self._lock = threading.Lock()

    def get_or_create_rider(self, phone_number: str, **profile: Any) -> Rider:
        with self._lock:
            if phone_number in self._riders:
                return self._riders[phone_number]
            rider = Rider(rider_id=phone_number, phone_number=phone_number, **profile)
            self._riders[phone_number] = rider
            return rider

    def get_rider(self, rider_id: str) -> Optional[Rider]:
        return self._riders.get(rider_id)

    def update_cached_balance(self, rider_id: str, balance: Decimal) -> None:
        with self._lock:
            rider = self._riders.get(rider_id)
            if rider is not None:
                rider.cached_balance = balance


class InMemoryPolicyStore(PolicyStore):
    def __init__(self) -> None:
        self._policies: Dict[str, Policy] = {}
        self._lock = threading.Lock()

    def create_many(self, policies: List[Policy]) -> List[Policy]:
        with self._lock:
            ids = [p.id for p in policies]
            # Validate the whole batch before writing anything.
            if len(set(ids)) != len(ids) or any(pid in self._policies for pid in ids):
                raise ValidationError("Policy ids must be unique.")
            for policy in policies:
                self._policies[policy.id] = policy
            return list(policies)

    def get(self, policy_id: str) -> Optional[Policy]:
        return self._policies.get(str(policy_id))

    def list_by_rider(self, rider_phone: str) -> List[Policy]:
        items = [p for p in self._policies.values() if p.rider_phone == rider_phone]
        items.sort(key=lambda p: p.created_at, reverse=True)
        return items

    def list_by_intent(self, intent_key: str) -> List[Policy]:
        return [p for p in self._policies.values() if p.intent_key == intent_key]

    def deactivate(self, policy_id: str) -> Policy:
        with self._lock:
            policy = self._policies.get(policy_id)
            if policy is None:
                raise NotFoundError("Policy not found.")
            updated = replace(policy, active_flag=False)
            self._policies[policy_id] = updated
            return updated


class InMemoryClaimStore(ClaimStore):
    def __init__(self) -> None:
        self._claims: Dict[str, Claim] = {}
        self._by_policy: Dict[str, str] = {}
        self._lock = threading.Lock()

    def create(self, claim: Claim) -> Claim:
        with self._lock:
            if claim.policy_id in self._by_policy:
                raise DuplicateClaimError()
            self._claims[claim.id] = claim
            self._by_policy[claim.policy_id] = claim.id
            return claim

    def get(self, claim_id: str) -> Optional[Claim]:
        claim = self._claims.get(claim_id)
        if claim is not None:
            return claim
        return next((c for c in self._claims.values() if c.claim_id == claim_id), None)

    def get_by_policy(self, policy_id: str) -> Optional[Claim]:
        claim_id = self._by_policy.get(policy_id)
        return self._claims.get(claim_id) if claim_id else None

    def list_by_rider(self, rider_phone: str) -> List[Claim]:
        items = [c for c in self._claims.values() if c.rider_phone == rider_phone]
        items.sort(key=lambda c: c.created_at, reverse=True)
        return items

    def update(self, claim: Claim) -> Claim:
        with self._lock:
            if claim.id not in self._claims:
                raise NotFoundError("Claim not found.")
            self._claims[claim.id] = claim
            return claim
