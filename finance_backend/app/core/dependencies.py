"""
Request dependencies for FastAPI.

Authentication (JWT validation), and access to the per-application schema
bootstrapper and balance cache held on `app.state`.
"""

import logging
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from finance_backend.app.core.exceptions import SchemaUnavailableError
from finance_backend.app.core.jwt import decode_access_token
from finance_backend.app.services.bootstrap import SchemaBootstrapper
from finance_backend.app.services.cache import BalanceCache

logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    Returns:
        Decoded token payload containing user information

    Raises:
        HTTPException: 401 if the token is invalid or lacks a subject
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not payload.get("user_id") and not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


def get_bootstrapper(request: Request) -> SchemaBootstrapper:
    return request.app.state.bootstrapper


def get_balance_cache(request: Request) -> BalanceCache:
    return request.app.state.balance_cache


async def require_writable_schema(
    bootstrapper: SchemaBootstrapper = Depends(get_bootstrapper),
) -> SchemaBootstrapper:
    """
    Gate for write endpoints.

    Writes need the ledger tables. If startup bootstrap did not complete,
    it is attempted once more before the request is refused.
    """
    if bootstrapper.ready:
        return bootstrapper

    logger.warning("Ledger schema not ready, re-running bootstrap before write")
    report = await bootstrapper.ensure()
    if not report.tables_ready:
        raise SchemaUnavailableError(details={"error": report.error})
    return bootstrapper
