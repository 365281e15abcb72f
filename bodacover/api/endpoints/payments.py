from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header

from bodacover.api.dependencies import get_services, rider_session
from bodacover.api.schemas import PaymentInitiateRequest, poll_result_to_dict
from bodacover.cover.services import CoverServices
from bodacover.cover.session import RiderSession
from bodacover.errors import NotFoundError

api = APIRouter()
payments_api = api


def _owned_intent(services: CoverServices, session: RiderSession, idempotency_key: str):
    intent = services.settlement.get_intent(session.rider_id, idempotency_key)
    if intent is None:
        raise NotFoundError("Payment not found.")
    return intent


@api.post("/initiate", tags=["Payments"])
async def initiate_payment(
    request: PaymentInitiateRequest,
    idempotency_key_header: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    key = request.idempotency_key or idempotency_key_header
    handle = await services.settlement.initiate(session, request.selections, request.rail, key)
    result = await services.settlement.poll(handle)
    return {
        "idempotencyKey": handle.idempotency_key,
        "rail": handle.rail.value,
        "totalAmount": str(handle.total_amount),
        "chargeAmount": str(handle.charge_amount),
        **poll_result_to_dict(result, services.clock.now()),
    }


@api.get("/{idempotency_key}", tags=["Payments"])
async def payment_status(
    idempotency_key: str,
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    _owned_intent(services, session, idempotency_key)
    result = await services.settlement.poll(idempotency_key, session.rider_id)
    return {"idempotencyKey": idempotency_key, **poll_result_to_dict(result, services.clock.now())}


@api.post("/{idempotency_key}/cancel", tags=["Payments"])
async def cancel_polling(
    idempotency_key: str,
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    _owned_intent(services, session, idempotency_key)
    result = await services.settlement.cancel(idempotency_key, session.rider_id)
    return {"idempotencyKey": idempotency_key, **poll_result_to_dict(result, services.clock.now())}


@api.post("/{idempotency_key}/abandon", tags=["Payments"])
async def abandon_payment(
    idempotency_key: str,
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    _owned_intent(services, session, idempotency_key)
    await services.settlement.abandon(idempotency_key, session.rider_id)
    return {"idempotencyKey": idempotency_key, "state": "select"}
