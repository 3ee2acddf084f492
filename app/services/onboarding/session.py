"""
Per-seller onboarding session.

Bundles the onboarding flow machine, the upload coordinator and the submission
controller behind the operations the API layer calls.
"""

import time
from typing import Any, Callable, Dict, Optional

import structlog

from app.core.config import settings
from app.core.exceptions import AuthenticationError, SellerNotFoundError
from app.domain.schemas import OnboardingSnapshot
from app.infrastructure.blob_channel import SupabaseResumableChannel
from app.infrastructure.supabase_client import supabase_client
from app.services.onboarding.context import (
    BlobUploadChannel,
    DocumentStore,
    SessionContext,
    require_seller,
)
from app.services.onboarding.events import OnboardingEvents, onboarding_events
from app.services.onboarding.file_validator import DocumentUpload
from app.services.onboarding.submission_controller import (
    SubmissionOutcome,
    VerificationSubmissionController,
)
from app.services.onboarding.upload_coordinator import (
    UploadCoordinator,
    UploadOutcome,
    UploadTask,
)
from app.state_machines.onboarding_flow import OnboardingFlowMachine

logger = structlog.get_logger(__name__)


class OnboardingSession:
    def __init__(
        self,
        seller_id: str,
        record: Dict[str, Any],
        store: DocumentStore,
        channel: BlobUploadChannel,
        events: Optional[OnboardingEvents] = None,
        **options,
    ):
        self.seller_id = seller_id
        self.machine = OnboardingFlowMachine(record=record, seller_id=seller_id)
        self.coordinator = UploadCoordinator(
            machine=self.machine,
            store=store,
            channel=channel,
            validator=options.get("validator"),
            timeout_seconds=options.get("timeout_seconds"),
            clock=options.get("clock"),
        )
        self.controller = VerificationSubmissionController(
            machine=self.machine,
            store=store,
            events=events,
            clock=options.get("clock"),
        )

    def _check_owner(self, context: Optional[SessionContext]) -> None:
        seller_id = require_seller(context)
        if not self.machine.is_owner(seller_id):
            logger.warning(
                "onboarding_session_owner_mismatch",
                seller_id=seller_id,
                session_seller_id=self.seller_id,
            )
            raise AuthenticationError("Session does not belong to this seller")

    @property
    def is_idle(self) -> bool:
        return not self.coordinator.in_flight_categories

    def get_current_step(self) -> int:
        return self.machine.current_step_index

    def get_completion_percent(self) -> int:
        return self.machine.completion_percent

    def next(self) -> bool:
        return self.machine.next()

    def previous(self) -> bool:
        return self.machine.previous()

    def upload(
        self, context: Optional[SessionContext], category: str, upload: DocumentUpload
    ) -> UploadTask:
        self.coordinator.validator.validate_all(category, upload)
        self._check_owner(context)
        return self.coordinator.upload(context, category, upload)

    def cancel_upload(self, context: Optional[SessionContext], category: str) -> bool:
        self._check_owner(context)
        return self.coordinator.cancel(category)

    async def retry_persistence(
        self, context: Optional[SessionContext], category: str
    ) -> UploadOutcome:
        self._check_owner(context)
        return await self.coordinator.retry_persistence(context, category)

    async def submit_for_verification(
        self, context: Optional[SessionContext]
    ) -> SubmissionOutcome:
        self._check_owner(context)
        return await self.controller.submit_for_verification(context)

    def snapshot(self) -> OnboardingSnapshot:
        info = self.machine.get_flow_info()
        return OnboardingSnapshot(
            seller_id=self.seller_id,
            current_step_index=info["current_step_index"],
            current_category=info["current_category"],
            state=info["state"],
            completion_percent=info["completion_percent"],
            uploaded_by_category=info["uploaded_by_category"],
            progress_by_category=info["progress_by_category"],
            in_flight=self.coordinator.in_flight_categories,
            pending_persistence=self.coordinator.pending_persistence_categories,
            can_go_next=info["can_go_next"],
            can_go_previous=info["can_go_previous"],
            can_submit=info["can_submit"],
        )


class OnboardingSessionRegistry:
    """
    Process-wide table of live onboarding sessions, keyed by seller id.

    Every lookup re-reads the sellers record and folds it into the cached
    session. Sessions that are submitted, or unused for `idle_seconds`, are
    dropped once nothing is in flight.
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        channel_factory: Optional[Callable[[], BlobUploadChannel]] = None,
        events: Optional[OnboardingEvents] = None,
        collection: Optional[str] = None,
        idle_seconds: Optional[float] = None,
        monotonic: Optional[Callable[[], float]] = None,
        **session_options,
    ):
        self.store = store or supabase_client
        self.channel_factory = channel_factory or SupabaseResumableChannel
        self.events = events or onboarding_events
        self.collection = collection or settings.sellers_collection
        self.idle_seconds = (
            idle_seconds if idle_seconds is not None else settings.onboarding_session_idle_seconds
        )
        self._monotonic = monotonic or time.monotonic
        self.session_options = session_options
        self._sessions: Dict[str, OnboardingSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def get_or_create(self, context: Optional[SessionContext]) -> OnboardingSession:
        seller_id = require_seller(context)
        self.evict_idle()

        record = await self.store.get_document(self.collection, seller_id)
        if not record:
            raise SellerNotFoundError(
                "Seller account not found. Please register first.",
                details={"seller_id": seller_id},
            )
        record = {"sellerId": seller_id, **record}

        session = self._sessions.get(seller_id)
        if session is None:
            session = self._sessions.setdefault(
                seller_id,
                OnboardingSession(
                    seller_id=seller_id,
                    record=record,
                    store=self.store,
                    channel=self.channel_factory(),
                    events=self.events,
                    **self.session_options,
                ),
            )
            logger.info("onboarding_session_opened", seller_id=seller_id)
        else:
            session.machine.sync_with_record(record)
        self._last_seen[seller_id] = self._monotonic()

        if session.machine.is_submitted and session.is_idle:
            # Later lookups rebuild from the record
            self.discard(seller_id)
        return session

    def evict_idle(self) -> int:
        """Drop sessions unused for longer than idle_seconds. Returns how many were dropped."""
        cutoff = self._monotonic() - self.idle_seconds
        stale = [
            seller_id
            for seller_id, seen in self._last_seen.items()
            if seen < cutoff and self._sessions[seller_id].is_idle
        ]
        for seller_id in stale:
            self.discard(seller_id)
        return len(stale)

    def discard(self, seller_id: str) -> None:
        self._last_seen.pop(seller_id, None)
        session = self._sessions.pop(seller_id, None)
        if session is not None:
            for category in session.coordinator.in_flight_categories:
                session.coordinator.cancel(category)
            logger.info(
                "onboarding_session_closed",
                seller_id=seller_id,
                pending_persistence=session.coordinator.pending_persistence_categories,
            )

    def clear(self) -> None:
        for seller_id in list(self._sessions):
            self.discard(seller_id)


onboarding_sessions = OnboardingSessionRegistry()
