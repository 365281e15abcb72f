from typing import Any, Dict

from fastapi import APIRouter, Depends

from bodacover.api.dependencies import get_services
from bodacover.api.schemas import QuoteRequest, tier_to_dict
from bodacover.cover.services import CoverServices

api = APIRouter()
plans_api = api


@api.get("/plans", tags=["Plans"])
async def list_plans(services: CoverServices = Depends(get_services)) -> Dict[str, Any]:
    catalog = services.catalog
    return {
        "tokenSymbol": catalog.token_symbol,
        "fiatCurrency": catalog.fiat_currency,
        "conversionRate": str(catalog.conversion_rate),
        "plans": [tier_to_dict(t, catalog.fiat_value(t.premium_amount)) for t in catalog.tiers()],
    }


@api.post("/quote", tags=["Plans"])
async def quote(request: QuoteRequest, services: CoverServices = Depends(get_services)) -> Dict[str, Any]:
    return services.quotes.quote(request.selections).to_dict()
