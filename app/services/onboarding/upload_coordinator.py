"""
Upload coordinator.

Drives one resumable upload per document category: validates the file, streams
it through the blob channel while relaying progress to the onboarding flow,
then persists the resulting DocumentRecord into the sellers record.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import structlog

from app.core.config import settings
from app.core.exceptions import (
    PersistenceError,
    SellerNotFoundError,
    StoreUnavailableError,
    UploadCancelledError,
    UploadFailedError,
    UploadTimeoutError,
    ValidationError,
)
from app.domain.schemas import DocumentRecord, VerificationStatus
from app.infrastructure.blob_channel import TransferEventKind, UploadHandle
from app.services.onboarding.context import (
    BlobUploadChannel,
    DocumentStore,
    SessionContext,
    require_seller,
)
from app.services.onboarding.file_validator import DocumentUpload, FileValidator, file_validator
from app.state_machines.onboarding_flow import OnboardingFlowMachine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class UploadOutcome:
    category: str
    path: str
    file_url: str
    completion_percent: int


class UploadTask:
    """Handle returned by UploadCoordinator.upload(); await result() for the outcome."""

    def __init__(self, category: str, path: str):
        self.category = category
        self.path = path
        self.handle: Optional[UploadHandle] = None
        # Set once the binary is stored; the record write that follows runs to the end
        self.persisting = False
        self._task: Optional[asyncio.Task] = None

    def _attach(self, task: asyncio.Task) -> None:
        self._task = task
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        # Retrieve the exception so unawaited failures are logged once, not warned about
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.info(
                "upload_task_finished",
                category=self.category,
                path=self.path,
                error_type=type(error).__name__,
            )

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> bool:
        if self.done() or self.persisting:
            return False
        if self.handle is not None:
            self.handle.cancel()
        if self._task is not None:
            self._task.cancel()
        return True

    async def result(self) -> UploadOutcome:
        # Shielded so a disconnecting waiter does not abort the transfer
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                # Cancelled before the transfer coroutine got to run
                raise UploadCancelledError(
                    "Upload was cancelled", details={"category": self.category}
                ) from None
            raise

    def __await__(self):
        return self.result().__await__()


class UploadCoordinator:
    """
    One coordinator per seller session.

    Only one transfer per category is in flight at a time; starting a new upload
    for a busy category cancels the previous transfer first.
    """

    def __init__(
        self,
        machine: OnboardingFlowMachine,
        store: DocumentStore,
        channel: BlobUploadChannel,
        validator: Optional[FileValidator] = None,
        collection: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.machine = machine
        self.store = store
        self.channel = channel
        self.validator = validator or file_validator
        self.collection = collection or settings.sellers_collection
        self.timeout_seconds = (
            timeout_seconds if timeout_seconds is not None else settings.upload_timeout_seconds
        )
        self._now = clock or (lambda: datetime.now(timezone.utc))
        self._in_flight: Dict[str, UploadTask] = {}
        self._documents: Dict[str, DocumentRecord] = {}
        self._pending_persistence: Dict[str, DocumentRecord] = {}

    @property
    def in_flight_categories(self) -> List[str]:
        return [category for category, task in self._in_flight.items() if not task.done()]

    @property
    def pending_persistence_categories(self) -> List[str]:
        return list(self._pending_persistence)

    def cached_document(self, category: str) -> Optional[DocumentRecord]:
        return self._documents.get(category)

    def build_path(self, seller_id: str, category: str, upload: DocumentUpload) -> str:
        millis = int(self._now().timestamp() * 1000)
        return f"{seller_id}/{category}_{millis}_{upload.safe_file_name}"

    def upload(
        self,
        context: Optional[SessionContext],
        category: str,
        upload: DocumentUpload,
    ) -> UploadTask:
        """
        Validate and start an upload. Returns immediately with a task handle.

        Raises:
            ValidationError: bad category, size or media type (no I/O attempted)
            UnauthenticatedError: no seller in the session context
        """
        results = self.validator.validate_all(category, upload)
        category = results["category"]
        seller_id = require_seller(context)

        previous = self._in_flight.get(category)
        if previous is not None and not previous.done():
            logger.info(
                "upload_replaced",
                seller_id=seller_id,
                category=category,
                previous_path=previous.path,
            )
            self.cancel(category)

        path = self.build_path(seller_id, category, upload)
        self.machine.reset_progress(category)

        task = UploadTask(category, path)
        self._in_flight[category] = task
        task._attach(
            asyncio.get_running_loop().create_task(
                self._drive(seller_id, category, upload, task)
            )
        )
        logger.info(
            "upload_started",
            seller_id=seller_id,
            category=category,
            path=path,
            size_bytes=upload.size,
            content_type=upload.content_type,
        )
        return task

    def cancel(self, category: str) -> bool:
        """
        Abort the in-flight transfer for a category. Progress resets immediately.

        Returns False when nothing is in flight or the transfer already finished
        and its record is being written.
        """
        task = self._in_flight.get(category)
        if task is not None and task.persisting:
            logger.info(
                "upload_cancel_ignored",
                seller_id=self.machine.seller_id,
                category=category,
                reason="persisting",
            )
            return False
        self._in_flight.pop(category, None)
        self.machine.reset_progress(category)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("upload_cancel_requested", seller_id=self.machine.seller_id, category=category)
        return True

    async def retry_persistence(
        self, context: Optional[SessionContext], category: str
    ) -> UploadOutcome:
        """Re-run only the store write for a document whose binary is already uploaded."""
        category = self.validator.validate_category(category)
        seller_id = require_seller(context)

        record = self._pending_persistence.get(category)
        if record is None:
            raise ValidationError(
                f"No uploaded {category} document is waiting to be saved",
                details={"category": category},
                error_code="NOTHING_TO_PERSIST",
            )

        try:
            await self._persist(seller_id, category, record)
        except (StoreUnavailableError, SellerNotFoundError) as e:
            logger.error(
                "document_persistence_retry_failed",
                seller_id=seller_id,
                category=category,
                error=str(e),
            )
            raise PersistenceError(
                "Document uploaded but could not be saved. Please retry.",
                details={"category": category, "file_url": record.file_url},
            ) from e

        del self._pending_persistence[category]
        percent = self.machine.mark_uploaded(category)
        logger.info("document_persistence_retried", seller_id=seller_id, category=category)
        return UploadOutcome(
            category=category,
            path=record.path,
            file_url=record.file_url,
            completion_percent=percent,
        )

    async def _drive(
        self,
        seller_id: str,
        category: str,
        upload: DocumentUpload,
        task: UploadTask,
    ) -> UploadOutcome:
        log = logger.bind(seller_id=seller_id, category=category, path=task.path)
        handle: Optional[UploadHandle] = None
        try:
            handle = self.channel.start_upload(task.path, upload.data, upload.content_type)
            task.handle = handle
            await asyncio.wait_for(
                self._consume(handle, category, task), timeout=self.timeout_seconds
            )
            file_url = await handle.retrieval_url()
            task.persisting = True
        except asyncio.TimeoutError:
            if handle is not None:
                handle.cancel()
            self._release(category, task)
            log.warning("upload_timed_out", timeout_seconds=self.timeout_seconds)
            raise UploadTimeoutError(
                "Upload timed out. Please try again.",
                details={"category": category, "timeout_seconds": self.timeout_seconds},
            )
        except asyncio.CancelledError:
            if handle is not None:
                handle.cancel()
            self._release(category, task)
            log.info("upload_cancelled")
            raise UploadCancelledError(
                "Upload was cancelled", details={"category": category}
            ) from None
        except UploadFailedError as e:
            self._release(category, task)
            log.warning("upload_failed", error=e.message, error_code=e.error_code)
            raise
        except Exception as e:
            self._release(category, task)
            log.error("upload_failed", error=str(e), error_type=type(e).__name__)
            raise UploadFailedError(
                "Upload failed. Please try again.", details={"category": category}
            ) from e

        record = DocumentRecord(
            file_url=file_url,
            path=task.path,
            content_type=upload.content_type,
            file_name=upload.file_name,
            uploaded_at=self._now(),
        )
        self._documents[category] = record
        self._pending_persistence.pop(category, None)

        try:
            await self._persist(seller_id, category, record)
        except (StoreUnavailableError, SellerNotFoundError) as e:
            self._pending_persistence[category] = record
            self._release(category, task)
            log.error("document_persistence_failed", file_url=file_url, error=str(e))
            raise PersistenceError(
                "Upload completed but failed to save document data. Please retry saving.",
                details={"category": category, "file_url": file_url},
            ) from e

        self._release(category, task)
        percent = self.machine.mark_uploaded(category)
        log.info("document_uploaded", file_url=file_url, completion_percent=percent)
        return UploadOutcome(
            category=category,
            path=task.path,
            file_url=file_url,
            completion_percent=percent,
        )

    async def _consume(self, handle: UploadHandle, category: str, task: UploadTask) -> None:
        last_percent = 0
        async for event in handle.events():
            if event.kind == TransferEventKind.PROGRESS:
                if not event.total_bytes:
                    continue
                percent = (100 * event.bytes_transferred) // event.total_bytes
                if percent > last_percent and self._owns(category, task):
                    last_percent = percent
                    self.machine.set_progress(category, percent)
            elif event.kind == TransferEventKind.ERROR:
                if isinstance(event.error, UploadFailedError):
                    raise event.error
                raise UploadFailedError(
                    "Upload failed. Please try again.",
                    details={"category": category, "cause": str(event.error)},
                ) from event.error

    async def _persist(self, seller_id: str, category: str, record: DocumentRecord) -> None:
        await self.store.merge_update(
            self.collection,
            seller_id,
            {
                f"documents.{category}": record.to_store(),
                f"verificationStatus.{category}": VerificationStatus.UPLOADED.value,
            },
        )

    def _owns(self, category: str, task: UploadTask) -> bool:
        return self._in_flight.get(category) is task

    def _release(self, category: str, task: UploadTask) -> None:
        """Drop the task from the in-flight table and zero its progress, if it still owns the category."""
        if self._owns(category, task):
            del self._in_flight[category]
            self.machine.reset_progress(category)
