"""
FastAPI application - Main entry point
"""

from dotenv import load_dotenv

load_dotenv()

import logging
import os
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bodacover.api.dependencies import api_key_protection
from bodacover.api.endpoints.claims import claims_api
from bodacover.api.endpoints.payments import payments_api
from bodacover.api.endpoints.plans import plans_api
from bodacover.api.endpoints.policies import policies_api
from bodacover.api.endpoints.wallet import wallet_api
from bodacover.cover.services import CoverServices, build_services
from bodacover.error_handler import ErrorHandler
from bodacover.errors import CoverError, InvalidTransitionError
from bodacover.utils.config_loader import load_cover_config

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

error_handler = ErrorHandler()


# ============================================================================
# DEPENDENCY INJECTION
# ============================================================================


def _should_use_real_integrations() -> bool:
    mode = os.getenv("INTEGRATIONS_MODE", "").strip().lower()
    if mode in {"real", "live"}:
        return True
    if mode in {"mock", "test"}:
        return False
    return bool(os.getenv("MPESA_API_URL") or os.getenv("LEDGER_API_URL"))


def _use_sql_stores() -> bool:
    return bool(os.getenv("DATABASE_URL")) and os.getenv("USE_POSTGRES_POLICIES", "").lower() in ("1", "true", "yes")


def build_default_services() -> CoverServices:
    """Pick real or mock gateway/ledger and SQL or in-memory stores from the environment."""
    config = load_cover_config()

    if _should_use_real_integrations() and os.getenv("MPESA_API_URL"):
        from bodacover.integrations.clients.real_http.mpesa import RealMpesaClient

        gateway = RealMpesaClient()
    else:
        from bodacover.integrations.clients.mocks.mpesa import MpesaMockClient

        gateway = MpesaMockClient()

    if _should_use_real_integrations() and os.getenv("LEDGER_API_URL"):
        from bodacover.integrations.clients.real_http.ledger import RealWalletLedgerClient

        ledger = RealWalletLedgerClient()
    else:
        from bodacover.integrations.clients.mocks.ledger import InMemoryWalletLedger

        ledger = InMemoryWalletLedger()

    if _use_sql_stores():
        from bodacover.database.postgres_real import PostgresDB, SqlClaimStore, SqlPolicyStore, SqlRiderStore

        db = PostgresDB(connection_string=os.environ["DATABASE_URL"])
        db.create_tables()
        riders, policies, claims = SqlRiderStore(db), SqlPolicyStore(db), SqlClaimStore(db)
    else:
        from bodacover.database.memory import InMemoryClaimStore, InMemoryPolicyStore, InMemoryRiderStore

        logger.info("DATABASE_URL not set (or USE_POSTGRES_POLICIES off); using in-memory stores")
        riders, policies, claims = InMemoryRiderStore(), InMemoryPolicyStore(), InMemoryClaimStore()

    logger.info("Cover services wired: gateway=%s ledger=%s stores=%s",
                type(gateway).__name__, type(ledger).__name__, type(policies).__name__)
    return build_services(config, gateway=gateway, ledger=ledger, riders=riders, policies=policies, claims=claims)


def create_app(services: Optional[CoverServices] = None) -> FastAPI:
    app = FastAPI(
        title="Boda Cover API",
        description="Micro-insurance for boda-boda riders: plans, quotes, dual-rail payments, policies and claims",
        version="1.0.0",
        dependencies=[Depends(api_key_protection)],  # protect everything by default
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.services = services or build_default_services()

    app.include_router(plans_api, prefix="/api/v1")
    app.include_router(wallet_api, prefix="/api/v1")
    app.include_router(payments_api, prefix="/api/v1/payments")
    app.include_router(policies_api, prefix="/api/v1/policies")
    app.include_router(claims_api, prefix="/api/v1/claims")

    @app.exception_handler(CoverError)
    async def cover_error_handler(request: Request, exc: CoverError):
        return JSONResponse(status_code=error_handler.status_code(exc), content=error_handler.to_rejection(exc))

    @app.exception_handler(InvalidTransitionError)
    async def transition_error_handler(request: Request, exc: InvalidTransitionError):
        logger.info("Rejected transition %s: %s -> %s", exc.entity, exc.current, exc.target)
        return JSONResponse(
            status_code=409,
            content={
                "status": "rejected",
                "error": "invalid_transition",
                "message": str(exc),
                "retry": False,
                "action": None,
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=500,
            content=error_handler.handle_exception(exc, context={"path": request.url.path, "method": request.method}),
        )

    @app.get("/", tags=["Health"])
    async def root():
        """Health check endpoint."""
        return {"service": "Boda Cover API", "status": "healthy", "version": "1.0.0"}

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "stores": type(app.state.services.activator.policies).__name__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # ========================================================================
    # STARTUP/SHUTDOWN EVENTS
    # ========================================================================
    @app.on_event("startup")
    async def startup_event():
        logger.info("Starting Boda Cover API...")
        services = app.state.services
        services.settlement.start_housekeeping(services.config.settlement.purge_interval_seconds)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop confirmation pollers and the purge task; intents still awaiting are parked as pending."""
        logger.info("Shutting down Boda Cover API...")
        await app.state.services.settlement.shutdown()

    return app


app = create_app()
