"""
Verification submission controller.

Gatekeeps the final submission on the store's current state, flips the seller
record to pending review in a single merge-update, then notifies the routing layer.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from app.core.config import settings
from app.core.exceptions import IncompleteSubmissionError, SellerNotFoundError
from app.domain.schemas import OverallStatus, SellerOnboardingRecord
from app.services.onboarding.context import DocumentStore, SessionContext, require_seller
from app.services.onboarding.events import (
    ONBOARDING_SUBMITTED,
    OnboardingEvents,
    onboarding_events,
)
from app.state_machines.onboarding_flow import OnboardingFlowMachine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubmissionOutcome:
    seller_id: str
    overall_status: str
    documents_uploaded: bool
    documents_submitted_at: datetime
    already_submitted: bool = False


class VerificationSubmissionController:
    def __init__(
        self,
        machine: OnboardingFlowMachine,
        store: DocumentStore,
        events: Optional[OnboardingEvents] = None,
        collection: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.machine = machine
        self.store = store
        self.events = events or onboarding_events
        self.collection = collection or settings.sellers_collection
        self._now = clock or (lambda: datetime.now(timezone.utc))

    async def load_record(self, seller_id: str) -> SellerOnboardingRecord:
        data = await self.store.get_document(self.collection, seller_id)
        if not data:
            raise SellerNotFoundError(
                "Seller account not found. Please register first.",
                details={"seller_id": seller_id},
            )
        return SellerOnboardingRecord.model_validate({"sellerId": seller_id, **data})

    async def submit_for_verification(
        self, context: Optional[SessionContext]
    ) -> SubmissionOutcome:
        """
        Submit all KYC documents for review.

        Raises:
            UnauthenticatedError: no seller in the session context
            SellerNotFoundError: no sellers record
            IncompleteSubmissionError: at least one category has no persisted document
            StoreUnavailableError: the store read or write failed (no event emitted)
        """
        seller_id = require_seller(context)

        # Checked against the store, not the local step state
        record = await self.load_record(seller_id)
        missing = record.missing_categories()
        if missing:
            logger.info("submission_incomplete", seller_id=seller_id, missing=missing)
            raise IncompleteSubmissionError(missing=missing)

        if record.documents_submitted_at is not None:
            logger.info(
                "submission_already_recorded",
                seller_id=seller_id,
                documents_submitted_at=record.documents_submitted_at.isoformat(),
            )
            outcome = SubmissionOutcome(
                seller_id=seller_id,
                overall_status=record.overall_status,
                documents_uploaded=record.documents_uploaded,
                documents_submitted_at=record.documents_submitted_at,
                already_submitted=True,
            )
            # Nothing was written, so subscribers are not notified again
            self._complete(outcome, record, notify=False)
            return outcome

        submitted_at = self._now()
        await self.store.merge_update(
            self.collection,
            seller_id,
            {
                "documentsUploaded": True,
                "documentsSubmittedAt": submitted_at.isoformat(),
                "overallStatus": OverallStatus.PENDING.value,
            },
        )
        logger.info(
            "documents_submitted_for_verification",
            seller_id=seller_id,
            documents_submitted_at=submitted_at.isoformat(),
        )

        outcome = SubmissionOutcome(
            seller_id=seller_id,
            overall_status=OverallStatus.PENDING.value,
            documents_uploaded=True,
            documents_submitted_at=submitted_at,
        )
        self._complete(outcome, record)
        return outcome

    def _complete(
        self, outcome: SubmissionOutcome, record: SellerOnboardingRecord, notify: bool = True
    ) -> None:
        # The store is authoritative; bring the local step state in line before finishing
        for category in record.uploaded_categories():
            if category not in self.machine.uploaded_by_category:
                self.machine.mark_uploaded(category)
        self.machine.mark_submitted()
        if not notify:
            return
        self.events.emit(
            ONBOARDING_SUBMITTED,
            {
                "seller_id": outcome.seller_id,
                "documents_submitted_at": outcome.documents_submitted_at.isoformat(),
            },
        )
