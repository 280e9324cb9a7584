"""FastAPI dependencies for authentication."""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.errors import TokenInvalid
from src.models.auth import AccessClaims
from src.services.auth_service import AuthService

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> AccessClaims:
    """Validate the Bearer access token and return its claims.

    Only signature and expiry are checked; storage is not consulted.

    Raises:
        TokenInvalid: Missing or malformed Authorization header, bad token
        TokenExpired: Token is past its expiry
    """
    if credentials is None or not credentials.credentials:
        raise TokenInvalid("Missing bearer token")
    return AuthService().validate_access_token(credentials.credentials)
