"""
Authentication and authorization utilities.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from jobsync.config import get_settings
from jobsync.constants import CRON_SECRET_HEADER
from jobsync.utils import utcnow

# Security scheme
security = HTTPBearer()


class TokenData(BaseModel):
    """Data extracted from JWT token."""

    tenant_id: str
    user_id: str | None = None
    exp: datetime


class AuthenticatedUser(BaseModel):
    """Authenticated user context."""

    tenant_id: str
    user_id: str | None = None


def create_access_token(
    tenant_id: str,
    user_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        tenant_id: The tenant identifier.
        user_id: Optional acting user, stored as the subject claim.
        expires_delta: Optional custom expiration time.

    Returns:
        The encoded JWT token.
    """
    settings = get_settings()

    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.api_access_token_expire_minutes)

    now = utcnow()
    to_encode = {
        "tenant_id": tenant_id,
        "exp": now + expires_delta,
        "iat": now,
    }
    if user_id is not None:
        to_encode["sub"] = user_id

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
            detail=f"Invalid token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    tenant_id = payload.get("tenant_id")
    if tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing tenant_id",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return TokenData(
        tenant_id=tenant_id,
        user_id=payload.get("sub"),
        exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> AuthenticatedUser:
    """
    FastAPI dependency to get the current authenticated user.

    Args:
        credentials: The HTTP authorization credentials.

    Returns:
        AuthenticatedUser with tenant information.

    Raises:
        HTTPException: If authentication fails.
    """
    token_data = decode_token(credentials.credentials)

    return AuthenticatedUser(
        tenant_id=token_data.tenant_id,
        user_id=token_data.user_id,
    )


# Type alias for dependency injection
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]


async def verify_cron_secret(
    authorization: Annotated[str | None, Header(alias=CRON_SECRET_HEADER)] = None,
) -> None:
    """
    Guard for internal cron endpoints.

    When a cron secret is configured the caller must send it as
    `Authorization: Bearer <secret>`. Without one the endpoint is open,
    which is only meant for local development.

    Raises:
        HTTPException: If the secret is configured and does not match.
    """
    expected = get_settings().cron_secret
    if not expected:
        return

    if not authorization or not secrets.compare_digest(
        authorization, f"Bearer {expected}"
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def validate_api_key(api_key: str, tenant_id: str) -> bool:
    """
    Validate an API key for a tenant.

    Key storage belongs to the identity service in front of this API; here
    any non-empty key is accepted.

    Args:
        api_key: The API key to validate.
        tenant_id: The tenant identifier.

    Returns:
        True if the API key is valid.
    """
    return bool(api_key) and bool(tenant_id)
