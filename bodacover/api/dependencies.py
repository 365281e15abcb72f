import os
import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status, Request
from dotenv import load_dotenv

from bodacover.cover.services import CoverServices
from bodacover.cover.session import RiderSession

load_dotenv()

logger = logging.getLogger(__name__)

_ALLOWLIST_PATHS = {
    "/",
    "/health",
    "/docs",
    "/docs/oauth2-redirect",
    "/openapi.json",
    "/redoc",
}


def get_api_keys():
    keys = os.getenv("API_KEYS", "")
    return [k.strip() for k in keys.split(",") if k.strip()]


async def api_key_protection(
    request: Request = None,  # None when called directly
    x_api_key: str = Header(default=None, alias="X-API-KEY"),
):
    debug = os.getenv("API_KEY_DEBUG", "").lower() in ("1", "true", "yes")
    path = request.url.path if request is not None else "<no-request>"

    if request is not None and request.url.path in _ALLOWLIST_PATHS:
        if debug:
            logger.info("API key check: allowlisted path=%s", path)
        return

    valid_keys = get_api_keys()
    candidate = (x_api_key or "").strip()

    ok = bool(candidate) and any(hmac.compare_digest(candidate, k) for k in valid_keys)
    if debug:
        logger.info("API key check: path=%s ok=%s configured_keys=%d", path, ok, len(valid_keys))

    if not ok:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API Key",
        )


def get_services(request: Request) -> CoverServices:
    return request.app.state.services


async def rider_session(
    request: Request,
    x_rider_phone: Optional[str] = Header(default=None, alias="X-Rider-Phone"),
    authorization: Optional[str] = Header(default=None),
) -> RiderSession:
    """Explicit rider context for every core call, built from request headers."""
    phone = (x_rider_phone or "").strip()
    if not phone:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing rider phone number")

    services = get_services(request)
    if services.riders.get_rider(phone) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Rider is not registered")

    token = None
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip() or None
    return RiderSession(rider_id=phone, auth_token=token)
