"""
Queue API Authentication

Bearer-token guard for the routes that change the queue (create,
update, delete). Reads stay open so a display board can poll the
ordered list without credentials.

Auth is enforced in production, or anywhere QUEUE_API_SECRET is set.
"""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .config import settings


logger = logging.getLogger(__name__)
queue_bearer = HTTPBearer(auto_error=False, description="QUEUE_API_SECRET as a bearer token")


def token_matches(presented: Optional[str], secret: str) -> bool:
    """Constant-time comparison of a presented token with the queue secret."""
    if not presented:
        return False
    return hmac.compare_digest(presented.encode(), secret.encode())


async def require_queue_writer(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(queue_bearer),
) -> Optional[HTTPAuthorizationCredentials]:
    """
    Admit a queue mutation only with the shared secret.

    Raises:
        HTTPException: 500 when auth is enforced but QUEUE_API_SECRET is unset,
            401 when the bearer token is missing or wrong
    """
    if not settings.auth_required:
        return credentials

    if not settings.queue_api_secret:
        logger.error("Queue writes refused: QUEUE_API_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Queue writes are disabled: no API secret configured")

    presented = credentials.credentials if credentials else None
    if not token_matches(presented, settings.queue_api_secret):
        logger.warning(
            f"Rejected {request.method} {request.url.path}: "
            f"{'missing' if presented is None else 'wrong'} queue token"
        )
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid queue API token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials
