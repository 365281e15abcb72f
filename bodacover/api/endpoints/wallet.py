import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from bodacover.api.dependencies import get_services, rider_session
from bodacover.api.schemas import RiderRegisterRequest, WalletCreditRequest
from bodacover.cover.services import CoverServices
from bodacover.cover.session import RiderSession
from bodacover.integrations.contracts.interfaces import Rider

logger = logging.getLogger(__name__)

api = APIRouter()
wallet_api = api


def _rider_to_dict(rider: Rider) -> Dict[str, Any]:
    return {
        "riderId": rider.rider_id,
        "phoneNumber": rider.phone_number,
        "name": rider.name,
        "nationalId": rider.national_id,
        "email": rider.email,
        "walletAddress": rider.wallet_address,
        "cachedBalance": None if rider.cached_balance is None else str(rider.cached_balance),
    }


@api.post("/riders", tags=["Riders"])
async def register_rider(
    request: RiderRegisterRequest,
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    rider = services.riders.get_or_create_rider(
        request.phone_number.strip(),
        name=request.name,
        national_id=request.national_id,
        email=request.email,
        wallet_address=request.wallet_address,
    )
    return {"rider": _rider_to_dict(rider)}


@api.get("/wallet/overview", tags=["Wallet"])
async def wallet_overview(
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    """Ledger balance (the cache is refreshed on the way), fiat value and cover counts."""
    balance = await services.ledger.get_balance(session.rider_id)
    services.riders.update_cached_balance(session.rider_id, balance)
    return {
        "balance": str(balance),
        "tokenSymbol": services.catalog.token_symbol,
        "fiatValue": str(services.catalog.fiat_value(balance)),
        "fiatCurrency": services.catalog.fiat_currency,
        "activePolicies": len(services.activator.active_policies(session.rider_id)),
        "claims": len(services.claims.list_claims(session)),
    }


@api.post("/wallet/credit", tags=["Wallet"])
async def credit_wallet(
    request: WalletCreditRequest,
    session: RiderSession = Depends(rider_session),
    services: CoverServices = Depends(get_services),
) -> Dict[str, Any]:
    receipt = await services.ledger.credit(session.rider_id, request.amount)
    services.riders.update_cached_balance(session.rider_id, receipt.balance)
    logger.info("Wallet credited rider=%s tx=%s", session.rider_id, receipt.tx_ref)
    return {"transactionRef": receipt.tx_ref, "balance": str(receipt.balance)}
