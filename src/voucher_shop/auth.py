"""Admin API key check and rate limiting for the public payment endpoints."""

import os
import secrets
import logging

from fastapi import HTTPException, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

logger = logging.getLogger(__name__)

admin_bearer = HTTPBearer()

# Keyed by client address; /pay is the only limited route
limiter = Limiter(key_func=get_remote_address)


def pay_rate_limit() -> str:
    """Rate limit applied to payment initiation, e.g. ``10/minute``."""
    return get_settings().pay_rate_limit


async def verify_api_key(credentials: HTTPAuthorizationCredentials = Security(admin_bearer)) -> str:
    """Guard for the voucher inventory routes.

    Raises:
        HTTPException: 500 when API_KEY is not configured, 401 on a wrong key.
    """
    expected_key = os.getenv("API_KEY")
    if not expected_key:
        logger.error("API_KEY environment variable is not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    if not secrets.compare_digest(credentials.credentials, expected_key):
        logger.warning("Rejected inventory request with an invalid API key")
        raise HTTPException(status_code=401, detail="Invalid API key")
    return credentials.credentials
