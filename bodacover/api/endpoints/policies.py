from typing import Any, Dict

from fastapi import APIRouter, Depends, Query

from bodacover.api.dependencies import get_services, rider_session
from bodacover.api.schemas import policy_to_dict
from bodacover.cover.activation import DEFAULT_PAGE_SIZE
from bodacover.cover.services import CoverServices
from bodacover.cover.session import RiderSession

api = APIRouter()
policies_api = api


@api.get("", tags=["Policies"])
async def list_policies(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=50),
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    result = services.activator.list_policies(session.rider_id, page=page, limit=limit)
    now = services.clock.now()
    return {
        "policies": [policy_to_dict(p, now) for p in result.policies],
        "pagination": result.pagination(),
    }


@api.get("/eligible", tags=["Policies"])
async def eligible_policies(
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    """Active policies that do not have a claim yet."""
    now = services.clock.now()
    return {"policies": [policy_to_dict(p, now) for p in services.claims.list_eligible_policies(session)]}
