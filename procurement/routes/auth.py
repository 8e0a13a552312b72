from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.config import settings
from procurement.database import get_db
from procurement.ids import parse_uuid
from procurement.middleware.auth import get_current_user
from procurement.models.status import UserStatus
from procurement.models.user import User
from procurement.schemas.auth import (
    LoginRequest,
    RefreshTokenRequest,
    TokenResponse,
    UserResponse,
)
from procurement.services.auth_service import (
    create_access_token,
    create_refresh_token,
    verify_password,
    verify_refresh_token,
)

logger = structlog.get_logger()

router = APIRouter()


def _issue_tokens(user: User) -> TokenResponse:
    access_token = create_access_token(
        user_id=str(user.id),
        role=user.role.value,
        username=user.username,
        store_id=str(user.store_id) if user.store_id else None,
    )
    return TokenResponse(
        access_token=access_token,
        refresh_token=create_refresh_token(user_id=str(user.id)),
        token_type="Bearer",
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
    )


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Authenticate user and return JWT tokens."""
    result = await db.execute(
        select(User).where(User.username == body.username, User.status == UserStatus.ACTIVE)
    )
    user = result.scalar_one_or_none()

    if not user or not verify_password(body.password, user.password_hash):
        logger.warning("login_failed", username=body.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_INVALID_CREDENTIALS",
                    "message": "Invalid username or password",
                }
            },
        )

    # Naive UTC to match TIMESTAMP WITHOUT TIME ZONE columns
    user.last_login_at = datetime.utcnow()
    tokens = _issue_tokens(user)
    await db.commit()

    logger.info("user_logged_in", user_id=str(user.id), role=user.role.value)
    return tokens


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshTokenRequest, db: AsyncSession = Depends(get_db)):
    """Refresh access token using a valid refresh token."""
    try:
        payload = verify_refresh_token(body.refresh_token)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_REFRESH_INVALID",
                    "message": "Invalid or expired refresh token",
                }
            },
        )

    result = await db.execute(
        select(User).where(User.id == parse_uuid(payload["sub"], "user_id"), User.status == UserStatus.ACTIVE)
    )
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": {
                    "code": "AUTH_USER_NOT_FOUND",
                    "message": "User no longer exists or is deactivated",
                }
            },
        )
    return _issue_tokens(user)


@router.get("/me", response_model=UserResponse)
async def me(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(select(User).where(User.id == parse_uuid(current_user["user_id"], "user_id")))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return UserResponse(
        id=str(user.id),
        username=user.username,
        email=user.email,
        role=user.role.value,
        status=user.status.value,
        store_id=str(user.store_id) if user.store_id else None,
    )
