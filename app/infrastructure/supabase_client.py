from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog  # type: ignore[import-not-found]
from app.core.config import settings
from app.core.exceptions import (
    AuthenticationError,
    SellerNotFoundError,
    StoreUnavailableError,
)
from pybreaker import CircuitBreaker  # type: ignore[import-not-found]
from tenacity import retry  # type: ignore[import-not-found]
from tenacity import retry_if_exception_type, stop_after_attempt, wait_exponential

import supabase  # type: ignore[import-not-found]

logger = structlog.get_logger()

# Circuit breaker for Supabase calls
supabase_breaker = CircuitBreaker(
    fail_max=5,
    reset_timeout=60,
    exclude=[AuthenticationError, SellerNotFoundError],
)

# Only transient store failures are worth retrying
store_retry = retry(
    wait=wait_exponential(multiplier=1, min=2, max=10),
    stop=stop_after_attempt(3),
    retry=retry_if_exception_type(StoreUnavailableError),
    reraise=True,
)

DOCUMENTS_TABLE = "documents"
MERGE_UPDATE_RPC = "merge_update_document"


def _session_dict(session: Any) -> Optional[Dict[str, Any]]:
    if not session:
        return None
    return {
        "access_token": session.access_token,
        "refresh_token": session.refresh_token,
        "expires_in": session.expires_in,
    }


class SupabaseClient:
    """
    Identity gateway and document store backed by Supabase.

    Documents live in a single `documents(collection, id, data jsonb)` table.
    Merge-updates go through the `merge_update_document` RPC, which applies every
    dotted path of the payload inside one UPDATE so readers never see half of it.
    """

    def __init__(self):
        client_options: Any = None
        if hasattr(supabase, "ClientOptions"):
            client_options = supabase.ClientOptions(  # type: ignore[attr-defined]
                auto_refresh_token=False,
                persist_session=False,
            )
        self._client_options = client_options
        self._client: Any = None
        self._anon_client: Any = None

    @property
    def client(self) -> Any:
        """Service-role client, created on first use."""
        if self._client is None:
            self._client = supabase.create_client(  # type: ignore[attr-defined]
                settings.supabase_url,
                settings.supabase_service_key,
                options=self._client_options,
            )
            logger.info("supabase_client_created", role="service")
        return self._client

    @property
    def anon_client(self) -> Any:
        if self._anon_client is None:
            self._anon_client = supabase.create_client(  # type: ignore[attr-defined]
                settings.supabase_url,
                settings.supabase_anon_key,
                options=self._client_options,
            )
            logger.info("supabase_client_created", role="anon")
        return self._anon_client

    # Identity & Session Gateway

    @supabase_breaker
    async def signup_seller(self, email: str, password: str) -> Dict[str, Any]:
        """Create the auth user. Raises AuthenticationError if Supabase refuses."""
        try:
            auth_response = self.anon_client.auth.sign_up(
                {"email": email, "password": password}
            )
        except Exception as e:
            logger.error("seller_signup_error", email=email, error=str(e))
            raise AuthenticationError(f"Registration failed: {str(e)}")

        if not auth_response or not auth_response.user:
            logger.error("seller_signup_failed", email=email)
            raise AuthenticationError("Registration failed - no user returned")

        logger.info("seller_signup_success", seller_id=auth_response.user.id)
        return {
            "user": {"id": str(auth_response.user.id), "email": email},
            "session": _session_dict(getattr(auth_response, "session", None)),
        }

    async def delete_auth_user(self, user_id: str) -> None:
        """Compensation for a registration whose seller record could not be created."""
        try:
            self.client.auth.admin.delete_user(user_id)
            logger.info("orphaned_user_deleted", seller_id=user_id)
        except Exception as e:
            logger.error("failed_to_delete_orphaned_user", seller_id=user_id, error=str(e))

    @supabase_breaker
    async def signin_seller(self, email: str, password: str) -> Dict[str, Any]:
        try:
            auth_response = self.anon_client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            logger.warning("seller_signin_error", email=email, error=str(e))
            raise AuthenticationError("Invalid email or password. Please try again.")

        if not auth_response or not auth_response.user:
            logger.warning("seller_signin_failed", email=email)
            raise AuthenticationError("Invalid email or password. Please try again.")

        logger.info("seller_signin_success", seller_id=auth_response.user.id)
        return {
            "user": {"id": str(auth_response.user.id), "email": email},
            "session": _session_dict(auth_response.session),
        }

    @supabase_breaker
    async def verify_token_and_get_user(self, token: str) -> Dict[str, Any]:
        """Verify a Supabase access token and return the user. Raises AuthenticationError if invalid."""
        try:
            response = self.client.auth.get_user(token)
        except Exception as e:
            logger.error("verify_token_error", error=str(e))
            raise AuthenticationError(f"Token verification failed: {str(e)}")

        if response and response.user:
            return {"id": str(response.user.id), "email": response.user.email}
        raise AuthenticationError("Invalid or expired token")

    # Document Store

    @supabase_breaker
    @store_retry
    async def get_document(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Return the document's data, or None when it does not exist."""
        try:
            response = (
                self.client.table(DOCUMENTS_TABLE)
                .select("data")
                .eq("collection", collection)
                .eq("id", record_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error(
                "get_document_error", collection=collection, record_id=record_id, error=str(e)
            )
            raise StoreUnavailableError(f"Failed to read {collection}/{record_id}: {str(e)}")

        if not response.data:
            return None
        return response.data[0]["data"]

    @supabase_breaker
    @store_retry
    async def create_document(
        self, collection: str, record_id: str, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        try:
            response = (
                self.client.table(DOCUMENTS_TABLE)
                .insert({"collection": collection, "id": record_id, "data": data})
                .execute()
            )
        except Exception as e:
            logger.error(
                "create_document_error", collection=collection, record_id=record_id, error=str(e)
            )
            raise StoreUnavailableError(f"Failed to create {collection}/{record_id}: {str(e)}")

        logger.info("document_created", collection=collection, record_id=record_id)
        return response.data[0]["data"] if response.data else data

    @supabase_breaker
    @store_retry
    async def merge_update(
        self, collection: str, record_id: str, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        """
        Apply a merge-update of named (dotted) fields and return the merged document.

        Args:
            collection: Collection name (e.g. "sellers")
            record_id: Document id
            fields: {"documents.identity": {...}, "verificationStatus.identity": "uploaded"}

        Raises:
            SellerNotFoundError: the document does not exist
            StoreUnavailableError: the write failed
        """
        try:
            response = self.client.rpc(
                MERGE_UPDATE_RPC,
                {"p_collection": collection, "p_id": record_id, "p_fields": fields},
            ).execute()
        except Exception as e:
            if "P0002" in str(e):
                raise SellerNotFoundError(
                    f"Document not found: {collection}/{record_id}",
                    details={"collection": collection, "record_id": record_id},
                )
            logger.error(
                "merge_update_error",
                collection=collection,
                record_id=record_id,
                fields=list(fields.keys()),
                error=str(e),
            )
            raise StoreUnavailableError(f"Failed to update {collection}/{record_id}: {str(e)}")

        logger.info(
            "document_merge_updated",
            collection=collection,
            record_id=record_id,
            fields=list(fields.keys()),
        )
        return response.data or {}

    # Storage

    def get_public_url(self, bucket: str, path: str) -> str:
        """Durable retrieval reference for an uploaded object."""
        return self.client.storage.from_(bucket).get_public_url(path)

    def get_client_health(self) -> Dict[str, Any]:
        return {
            "service_client": "ready" if self._client is not None else "lazy",
            "checked_at": datetime.now(timezone.utc).isoformat(),
        }


supabase_client = SupabaseClient()
