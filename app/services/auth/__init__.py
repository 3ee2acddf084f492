from app.services.auth.seller_auth_service import (
    SellerAuthService,
    resolve_landing_route,
    seller_auth_service,
)

__all__ = [
    "SellerAuthService",
    "resolve_landing_route",
    "seller_auth_service",
]
