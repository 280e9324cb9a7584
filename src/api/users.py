"""User registration and profile endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from src.api.dependencies import get_current_claims
from src.models.auth import (
    AccessClaims,
    RegisterRequest,
    RegisterResponse,
    UpdateUserRequest,
    UserDataResponse,
)
from src.models.user import User
from src.services.user_service import UserService

router = APIRouter(prefix="/users", tags=["Users"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(request: RegisterRequest) -> RegisterResponse:
    """Create an account and open its first session.

    Raises:
        Conflict (409): Login or email already registered
    """
    user_service = UserService()
    return await user_service.register_user(request)


@router.get("/me")
async def get_me(
    organization_id: Optional[UUID] = Query(default=None),
    claims: AccessClaims = Depends(get_current_claims),
) -> UserDataResponse:
    """Current user with one organization and the projects visible in it."""
    user_service = UserService()
    return await user_service.get_user_data(claims.user_id, organization_id)


@router.patch("/{user_id}")
async def update_user(
    user_id: UUID,
    request: UpdateUserRequest,
    claims: AccessClaims = Depends(get_current_claims),
) -> User:
    """Update a profile; allowed to the user or an administrator of their organization."""
    user_service = UserService()
    return await user_service.update_user(
        target_id=user_id,
        requester_id=claims.user_id,
        request=request,
        current_session_id=claims.session_id,
    )
