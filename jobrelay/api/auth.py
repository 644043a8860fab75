"""
Authentication utilities for the public API.

Callers authenticate with a bearer JWT whose ``owner_id`` claim becomes
the owner of every job they submit.

Tokens are issued by this service, but deciding who may act as an owner
belongs to the external access-control collaborator. ``validate_api_key``
is a placeholder for that check and accepts any non-empty key.
"""

from datetime import datetime, timedelta
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from jobrelay.clock import utcnow
from jobrelay.config import get_settings

# Security scheme
security = HTTPBearer()


class TokenData(BaseModel):
    """Data extracted from JWT token."""

    owner_id: str
    exp: datetime


class AuthenticatedUser(BaseModel):
    """Authenticated caller context."""

    owner_id: str


def create_access_token(
    owner_id: str,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        owner_id: The owner identifier.
        expires_delta: Optional custom expiration time.

    Returns:
        The encoded JWT token.
    """
    settings = get_settings()

    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.api_access_token_expire_minutes)

    now = utcnow()
    to_encode = {
        "owner_id": owner_id,
        "exp": now + expires_delta,
        "iat": now,
    }

    return jwt.encode(
        to_encode,
        settings.api_secret_key,
        algorithm=settings.api_algorithm,
    )


def decode_token(token: str) -> TokenData:
    """
    Decode and validate a JWT token.

    Args:
        token: The JWT token to decode.

    Returns:
        TokenData extracted from the token.

    Raises:
        HTTPException: If token is invalid or expired.
    """
    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.api_secret_key,
            algorithms=[settings.api_algorithm],
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    owner_id = payload.get("owner_id")
    exp = payload.get("exp")
    if not owner_id or exp is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing owner_id or exp",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenData(owner_id=owner_id, exp=datetime.fromtimestamp(exp))


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> AuthenticatedUser:
    """
    FastAPI dependency to get the current authenticated caller.

    Args:
        credentials: The HTTP authorization credentials.

    Returns:
        AuthenticatedUser with owner information.

    Raises:
        HTTPException: If authentication fails.
    """
    token_data = decode_token(credentials.credentials)
    return AuthenticatedUser(owner_id=token_data.owner_id)


# Type alias for dependency injection
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]


def validate_api_key(api_key: str, owner_id: str) -> bool:
    """
    Validate an API key for an owner.

    Access control policy lives outside this service; any non-empty key
    for a non-empty owner is accepted here.

    Args:
        api_key: The API key to validate.
        owner_id: The owner identifier.

    Returns:
        True if the API key is valid.
    """
    return bool(api_key) and bool(owner_id)
