from typing import Optional

import structlog
from app.core.exceptions import UnauthenticatedError
from app.infrastructure.supabase_client import supabase_client
from app.services.auth.seller_auth_service import SellerAuthService, seller_auth_service
from app.services.onboarding.context import SessionContext
from app.services.onboarding.session import (
    OnboardingSession,
    OnboardingSessionRegistry,
    onboarding_sessions,
)
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

logger = structlog.get_logger()

# HTTP Bearer scheme for Supabase access tokens
bearer_scheme = HTTPBearer(auto_error=False)


async def get_session_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> SessionContext:
    """
    Resolve the bearer token into an explicit SessionContext.
    Raises UnauthenticatedError when no token is sent; AuthenticationError when it is invalid.
    """
    if not credentials:
        logger.info("missing_bearer_token")
        raise UnauthenticatedError()

    user = await supabase_client.verify_token_and_get_user(credentials.credentials)
    seller_id = user.get("id")
    if not seller_id:
        logger.warning("token_missing_user_id")
        raise UnauthenticatedError("Token missing user information")

    return SessionContext(seller_id=seller_id, email=user.get("email"))


def get_session_registry() -> OnboardingSessionRegistry:
    return onboarding_sessions


def get_auth_service() -> SellerAuthService:
    return seller_auth_service


async def get_onboarding_session(
    context: SessionContext = Depends(get_session_context),
    registry: OnboardingSessionRegistry = Depends(get_session_registry),
) -> OnboardingSession:
    return await registry.get_or_create(context)
