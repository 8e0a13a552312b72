"""Bearer-token authentication for the API routes."""

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
import structlog

from procurement.services.auth_service import verify_access_token

logger = structlog.get_logger()

# Missing credentials are reported with our own error envelope below
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": {"code": code, "message": message}},
        headers={"WWW-Authenticate": "Bearer"},
    )


def claims_to_user(payload: dict) -> dict:
    """Current-user dict the routes work with. Raises KeyError on missing claims."""
    return {
        "user_id": payload["sub"],
        "role": payload["role"],
        "username": payload["username"],
        "store_id": payload.get("store_id"),
    }


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise _unauthorized("AUTH_TOKEN_MISSING", "Authentication required")
    try:
        return claims_to_user(verify_access_token(credentials.credentials))
    except (JWTError, KeyError) as exc:
        logger.warning("auth_token_invalid", error=str(exc))
        raise _unauthorized("AUTH_TOKEN_INVALID", "Invalid or expired token")
