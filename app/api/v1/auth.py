from app.api.dependencies import get_auth_service
from app.core.config import settings
from app.domain.schemas import AuthResponse, SellerLogin, SellerRegister
from app.services.auth.seller_auth_service import SellerAuthService
from fastapi import APIRouter, Depends, Request, status
from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post(
    "/register",
    response_model=AuthResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(
    f"{settings.rate_limit_auth_requests}/{settings.rate_limit_auth_period} seconds"
)
async def register(
    request: Request,
    seller_data: SellerRegister,
    auth_service: SellerAuthService = Depends(get_auth_service),
):
    """
    Register a new seller account.
    Creates the auth user and a draft onboarding record with every document not submitted.
    """
    return await auth_service.register(
        email=seller_data.email,
        password=seller_data.password,
        business_name=seller_data.business_name,
    )


@router.post("/login", response_model=AuthResponse, response_model_by_alias=True)
@limiter.limit(
    f"{settings.rate_limit_auth_requests}/{settings.rate_limit_auth_period} seconds"
)
async def login(
    request: Request,
    credentials: SellerLogin,
    auth_service: SellerAuthService = Depends(get_auth_service),
):
    """
    Sign in with email and password.
    nextRoute tells the client whether to continue document upload or open the dashboard.
    """
    return await auth_service.login(email=credentials.email, password=credentials.password)
