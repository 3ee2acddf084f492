"""
Explicit session context and the collaborator contracts the onboarding core consumes.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from app.core.exceptions import UnauthenticatedError
from app.infrastructure.blob_channel import UploadHandle


@dataclass(frozen=True)
class SessionContext:
    """Resolved identity of the caller, passed into every core entry point."""

    seller_id: str
    email: Optional[str] = None


def require_seller(context: Optional[SessionContext]) -> str:
    if context is None or not context.seller_id:
        raise UnauthenticatedError()
    return context.seller_id


class DocumentStore(Protocol):
    async def get_document(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def merge_update(
        self, collection: str, record_id: str, fields: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...


class BlobUploadChannel(Protocol):
    def start_upload(self, path: str, data: bytes, content_type: str) -> UploadHandle:
        ...
