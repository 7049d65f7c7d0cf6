"""
Token issuance for API and sync clients.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from jobsync.api.auth import CurrentUser, create_access_token, validate_api_key
from jobsync.config import get_settings
from jobsync.types.api import AuthRequest, IdentityResponse, TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/token",
    response_model=TokenResponse,
    summary="Get access token",
    description=(
        "Exchange an API key for a tenant-scoped JWT, used as a bearer token on "
        "/v1 routes and as the `token` query parameter on /ws/sync."
    ),
)
async def get_token(request: AuthRequest) -> TokenResponse:
    """
    Issue a token for a tenant and, optionally, the acting user.

    Raises:
        HTTPException: 401 if the API key is rejected.
    """
    if not validate_api_key(request.api_key, request.tenant_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
        )

    ttl_minutes = get_settings().api_access_token_expire_minutes
    token = create_access_token(tenant_id=request.tenant_id, user_id=request.user_id)

    logger.info(
        "Access token issued",
        extra={"tenant_id": request.tenant_id, "user_id": request.user_id}
    )

    return TokenResponse(
        access_token=token,
        expires_in=ttl_minutes * 60,
        tenant_id=request.tenant_id,
        user_id=request.user_id,
    )


@router.get(
    "/me",
    response_model=IdentityResponse,
    summary="Current identity",
    description="Tenant and user the presented token is bound to.",
)
async def whoami(current_user: CurrentUser) -> IdentityResponse:
    return IdentityResponse(
        tenant_id=current_user.tenant_id,
        user_id=current_user.user_id,
    )
