"""Authentication: JWT bearer tokens issued by the identity service.

Users are not stored here. A token's ``sub`` claim is the user id; the
optional ``name`` and ``email`` claims are used for presence display.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from ..config import settings

# Bearer scheme for token-based authentication
bearer_scheme = HTTPBearer(auto_error=False)


class TokenData(BaseModel):
    """Token payload data schema."""

    user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


class CurrentUser(BaseModel):
    """The authenticated caller."""

    id: UUID
    email: Optional[str] = None
    name: Optional[str] = None


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Used by tests and tooling; production tokens come from the identity
    service signed with the same secret.

    Args:
        data: Dictionary of claims to encode in the token
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.jwt_expiration_minutes
        )

    to_encode.update({"exp": expire})

    return jwt.encode(
        to_encode,
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(token: str) -> Optional[TokenData]:
    """
    Decode and validate a JWT access token.

    Args:
        token: The JWT token string to decode

    Returns:
        TokenData with user information, or None if invalid or expired
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    user_id = payload.get("sub")
    if user_id is None:
        return None

    return TokenData(
        user_id=user_id,
        email=payload.get("email"),
        name=payload.get("name"),
    )


def user_from_token(token: Optional[str]) -> Optional[CurrentUser]:
    """Resolve a raw token to the caller, or None if it is not valid."""
    if not token:
        return None
    token_data = decode_access_token(token)
    if token_data is None or token_data.user_id is None:
        return None
    try:
        user_id = UUID(token_data.user_id)
    except ValueError:
        return None
    return CurrentUser(id=user_id, email=token_data.email, name=token_data.name)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    """
    Get the current authenticated user from the Authorization header.

    Raises:
        HTTPException: 401 if the token is missing or invalid
    """
    user = user_from_token(credentials.credentials if credentials else None)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
