from typing import Any, Dict

from fastapi import APIRouter, Depends

from bodacover.api.dependencies import get_services, rider_session
from bodacover.api.schemas import ClaimDecisionRequest, ClaimSubmitRequest, claim_to_dict
from bodacover.cover.services import CoverServices
from bodacover.cover.session import RiderSession
from bodacover.errors import ValidationError
from bodacover.integrations.contracts.interfaces import ClaimStatus

api = APIRouter()
claims_api = api


@api.post("", tags=["Claims"])
async def submit_claim(
    request: ClaimSubmitRequest,
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    claim = services.claims.submit(session, request.policy_id, request.details, request.evidence_ref)
    return {"status": "submitted", "claim": claim_to_dict(claim)}


@api.get("", tags=["Claims"])
async def list_claims(
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    return {"claims": [claim_to_dict(c) for c in services.claims.list_claims(session)]}


@api.post("/{claim_id}/decision", tags=["Claims"])
async def record_decision(
    claim_id: str,
    request: ClaimDecisionRequest,
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    """Adjudication callback from the back office; protected by the API key only."""
    try:
        status = ClaimStatus(request.status)
    except ValueError as exc:
        allowed = ", ".join(s.value for s in ClaimStatus)
        raise ValidationError(f"Unknown claim status. Expected one of: {allowed}.") from exc

    claim = services.claims.record_decision(claim_id, status, request.payout_transaction_ref)
    return {"status": "updated", "claim": claim_to_dict(claim)}
