"""Authentication API endpoints."""

from fastapi import APIRouter, Depends
import structlog

from src.api.dependencies import get_current_claims
from src.models.auth import (
    AccessClaims,
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    TokenPair,
)
from src.models.entity import StatusResponse
from src.services.auth_service import AuthService
from src.services.user_service import UserService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post("/login")
async def login(request: LoginRequest) -> LoginResponse:
    """Login with login and password.

    Args:
        request: Login credentials

    Returns:
        LoginResponse with tokens, user details and the default organization

    Raises:
        InvalidCredential (401): Unknown login, wrong password or disabled user
    """
    user_service = UserService()
    return await user_service.authenticate(request.login, request.password)


@router.post("/refresh")
async def refresh(request: RefreshRequest) -> TokenPair:
    """Exchange a refresh token for a new access/refresh pair.

    The presented token is rotated away. Presenting it again later revokes
    the whole session.

    Raises:
        SessionInvalid (401): Revoked, expired or unknown session
        SessionReuseDetected (401): Token was already rotated
    """
    auth_service = AuthService()
    return await auth_service.refresh(request.refresh_token)


@router.post("/logout")
async def logout(claims: AccessClaims = Depends(get_current_claims)) -> StatusResponse:
    """Revoke the session the access token belongs to."""
    auth_service = AuthService()
    await auth_service.logout(claims)
    logger.info("user_logged_out", user_id=str(claims.user_id))
    return StatusResponse(success=True)
