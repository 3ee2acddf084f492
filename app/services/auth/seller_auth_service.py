"""
Seller registration and login.

Registration creates the auth user and the draft sellers record; login resolves
where the seller should land based on their onboarding status.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from app.core.config import settings
from app.core.exceptions import (
    AccountRejectedError,
    SellerNotFoundError,
    StoreUnavailableError,
)
from app.domain.schemas import (
    AuthResponse,
    LandingRoute,
    OverallStatus,
    SellerOnboardingRecord,
    SessionTokens,
)
from app.infrastructure.supabase_client import SupabaseClient, supabase_client

logger = structlog.get_logger(__name__)


def resolve_landing_route(record: SellerOnboardingRecord) -> LandingRoute:
    """
    Decide where a seller lands after login.

    - pending or approved with documents uploaded -> dashboard
    - documents not uploaded -> document upload steps
    - rejected after submitting -> AccountRejectedError
    """
    if record.documents_uploaded and record.overall_status in (
        OverallStatus.APPROVED,
        OverallStatus.PENDING,
    ):
        return LandingRoute.DASHBOARD
    if not record.documents_uploaded:
        return LandingRoute.DOCUMENTS
    if record.overall_status == OverallStatus.REJECTED:
        raise AccountRejectedError(details={"seller_id": record.seller_id})
    return LandingRoute.DOCUMENTS


def _tokens(session: Optional[Dict[str, Any]]) -> Optional[SessionTokens]:
    return SessionTokens(**session) if session else None


class SellerAuthService:
    def __init__(self, client: Optional[SupabaseClient] = None, collection: Optional[str] = None):
        self.client = client or supabase_client
        self.collection = collection or settings.sellers_collection

    async def register(self, email: str, password: str, business_name: str) -> AuthResponse:
        auth = await self.client.signup_seller(email, password)
        seller_id = auth["user"]["id"]

        record = SellerOnboardingRecord(
            seller_id=seller_id,
            email=email,
            business_name=business_name,
            created_at=datetime.now(timezone.utc),
        )
        try:
            await self.client.create_document(self.collection, seller_id, record.to_store())
        except StoreUnavailableError:
            await self.client.delete_auth_user(seller_id)
            raise

        logger.info("seller_registered", seller_id=seller_id)
        return AuthResponse(
            seller_id=seller_id,
            email=email,
            session=_tokens(auth.get("session")),
            overall_status=record.overall_status,
            documents_uploaded=False,
            next_route=LandingRoute.DOCUMENTS,
        )

    async def login(self, email: str, password: str) -> AuthResponse:
        auth = await self.client.signin_seller(email, password)
        seller_id = auth["user"]["id"]

        data = await self.client.get_document(self.collection, seller_id)
        if not data:
            logger.warning("seller_record_missing_on_login", seller_id=seller_id)
            raise SellerNotFoundError(
                "Seller account not found. Please register first.",
                details={"seller_id": seller_id},
            )

        record = SellerOnboardingRecord.model_validate({"sellerId": seller_id, **data})
        next_route = resolve_landing_route(record)

        logger.info(
            "seller_logged_in",
            seller_id=seller_id,
            overall_status=record.overall_status,
            next_route=next_route.value,
        )
        return AuthResponse(
            seller_id=seller_id,
            email=email,
            session=_tokens(auth.get("session")),
            overall_status=record.overall_status,
            documents_uploaded=record.documents_uploaded,
            next_route=next_route,
        )


seller_auth_service = SellerAuthService()
