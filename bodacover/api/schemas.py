"""Request models and response serialisers shared by the API routers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bodacover.integrations.contracts.interfaces import Claim, PlanTier, Policy
from bodacover.integrations.contracts.payments import PollResult


class RiderRegisterRequest(BaseModel):
    phone_number: str = Field(..., min_length=9, description="Rider phone number, also the rider id")
    name: str = ""
    national_id: str = ""
    email: Optional[str] = None
    wallet_address: Optional[str] = None


class QuoteRequest(BaseModel):
    selections: List[Dict[str, Any]] = Field(..., description="[{protectionType, plan}]")


class PaymentInitiateRequest(BaseModel):
    selections: List[Dict[str, Any]]
    rail: str = Field(..., description="mobile_money (mpesa) or wallet_token (hbar)")
    idempotency_key: Optional[str] = Field(default=None, description="Falls back to the Idempotency-Key header")


class ClaimSubmitRequest(BaseModel):
    policy_id: str
    details: str = ""
    evidence_ref: Optional[str] = None


class ClaimDecisionRequest(BaseModel):
    status: str
    payout_transaction_ref: Optional[str] = None


class WalletCreditRequest(BaseModel):
    amount: Decimal = Field(..., gt=0)


def tier_to_dict(tier: PlanTier, fiat_value: Any) -> Dict[str, Any]:
    return {
        "protectionType": tier.protection_type.value,
        "plan": tier.duration.value,
        "days": tier.duration.day_count,
        "amount": str(tier.premium_amount),
        "fiatAmount": str(fiat_value),
        "coverage": dict(tier.coverage_schedule),
    }


def policy_to_dict(policy: Policy, now) -> Dict[str, Any]:
    return {
        "id": policy.id,
        "riderPhone": policy.rider_phone,
        "protectionType": policy.protection_type.value,
        "plan": policy.duration.value,
        "premiumPaid": str(policy.premium_paid),
        "settlementRail": policy.settlement_rail.value,
        "transactionRef": policy.transaction_ref,
        "createdAt": policy.created_at.isoformat(),
        "expiryDate": policy.expiry_at.isoformat(),
        "active": policy.is_active(now),
    }


def claim_to_dict(claim: Claim) -> Dict[str, Any]:
    return {
        "id": claim.id,
        "claimId": claim.claim_id,
        "policy": claim.policy_id,
        "riderPhone": claim.rider_phone,
        "premium": str(claim.premium_at_claim),
        "details": claim.details,
        "evidenceRef": claim.evidence_ref,
        "status": claim.status.value,
        "createdAt": claim.created_at.isoformat(),
        "payoutTransactionRef": claim.payout_transaction_ref,
    }


def poll_result_to_dict(result: PollResult, now) -> Dict[str, Any]:
    return {
        "outcome": result.outcome.value,
        "state": result.state,
        "message": result.reason,
        "retryAfter": result.retry_after,
        "transactionRef": result.external_ref,
        "policies": [policy_to_dict(p, now) for p in result.policies],
    }
