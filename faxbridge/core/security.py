"""
Bearer-key authentication for the admin endpoints.
"""

import secrets

import structlog
from fastapi import HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from faxbridge.config import settings

logger = structlog.get_logger(__name__)

admin_bearer = HTTPBearer()


async def verify_api_key(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Security(admin_bearer)
) -> None:
    """
    Reject admin calls whose bearer token is not INTERNAL_API_KEY.

    Raises:
        HTTPException: 500 if no key is configured, 401 on mismatch
    """
    expected = settings.internal_api_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Admin API key not configured"
        )

    if not secrets.compare_digest(credentials.credentials.encode(), expected.encode()):
        logger.warning("admin_auth_rejected", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "Bearer"}
        )
