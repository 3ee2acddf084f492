"""
Blob upload channel.

An upload is a cancellable task that yields a bounded stream of progress events
followed by exactly one terminal event (complete or error). The Supabase
implementation speaks the TUS resumable-upload protocol over httpx and resumes
from the server-side offset after transport errors.
"""

import asyncio
import base64
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import AsyncIterator, Awaitable, Callable, Optional

import httpx
import structlog

from app.core.config import settings
from app.core.exceptions import UploadCancelledError, UploadFailedError
from app.infrastructure.supabase_client import SupabaseClient, supabase_client

logger = structlog.get_logger(__name__)

TUS_VERSION = "1.0.0"

ProgressCallback = Callable[[int], None]
TransferFn = Callable[[ProgressCallback], Awaitable[None]]
UrlResolver = Callable[[], Awaitable[str]]


class TransferEventKind(str, Enum):
    PROGRESS = "progress"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(frozen=True)
class TransferEvent:
    kind: TransferEventKind
    bytes_transferred: int = 0
    total_bytes: int = 0
    error: Optional[BaseException] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind != TransferEventKind.PROGRESS


class UploadHandle:
    """Handle for one in-flight transfer."""

    def __init__(
        self,
        path: str,
        total_bytes: int,
        transfer: TransferFn,
        resolve_url: UrlResolver,
    ):
        self.path = path
        self.total_bytes = total_bytes
        self._transfer = transfer
        self._resolve_url = resolve_url
        self._events: "asyncio.Queue[TransferEvent]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._terminal: Optional[TransferEvent] = None

    def start(self) -> "UploadHandle":
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    @property
    def finished(self) -> bool:
        return self._terminal is not None

    @property
    def completed(self) -> bool:
        return self._terminal is not None and self._terminal.kind == TransferEventKind.COMPLETE

    def _report(self, bytes_transferred: int) -> None:
        if self.finished:
            return
        self._events.put_nowait(
            TransferEvent(
                kind=TransferEventKind.PROGRESS,
                bytes_transferred=min(bytes_transferred, self.total_bytes),
                total_bytes=self.total_bytes,
            )
        )

    def _finish(self, kind: TransferEventKind, error: Optional[BaseException] = None) -> None:
        if self.finished:
            return
        self._terminal = TransferEvent(
            kind=kind,
            bytes_transferred=self.total_bytes if kind == TransferEventKind.COMPLETE else 0,
            total_bytes=self.total_bytes,
            error=error,
        )
        self._events.put_nowait(self._terminal)

    async def _run(self) -> None:
        try:
            await self._transfer(self._report)
        except asyncio.CancelledError:
            self._finish(
                TransferEventKind.ERROR,
                UploadCancelledError("Upload was cancelled", details={"path": self.path}),
            )
            raise
        except Exception as e:
            logger.warning("blob_transfer_failed", path=self.path, error=str(e))
            self._finish(TransferEventKind.ERROR, e)
        else:
            self._finish(TransferEventKind.COMPLETE)

    def cancel(self) -> bool:
        """Abort the transfer. Returns False if it had already finished."""
        if self.finished:
            return False
        self._finish(
            TransferEventKind.ERROR,
            UploadCancelledError("Upload was cancelled", details={"path": self.path}),
        )
        if self._task is not None and not self._task.done():
            self._task.cancel()
        logger.info("blob_transfer_cancelled", path=self.path)
        return True

    async def events(self) -> AsyncIterator[TransferEvent]:
        while True:
            event = await self._events.get()
            yield event
            if event.is_terminal:
                return

    async def retrieval_url(self) -> str:
        if not self.completed:
            raise UploadFailedError(
                "Upload has not completed", details={"path": self.path}
            )
        return await self._resolve_url()


class SupabaseResumableChannel:
    """Resumable uploads into a Supabase Storage bucket."""

    def __init__(
        self,
        storage: Optional[SupabaseClient] = None,
        bucket: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.storage = storage or supabase_client
        self.bucket = bucket or settings.storage_bucket
        self._transport = transport
        self.endpoint = f"{settings.supabase_url.rstrip('/')}/storage/v1/upload/resumable"

    def start_upload(self, path: str, data: bytes, content_type: str) -> UploadHandle:
        handle = UploadHandle(
            path=path,
            total_bytes=len(data),
            transfer=partial(self._transfer, path, data, content_type),
            resolve_url=partial(self._resolve_url, path),
        )
        logger.info("blob_transfer_started", bucket=self.bucket, path=path, size=len(data))
        return handle.start()

    async def _resolve_url(self, path: str) -> str:
        return self.storage.get_public_url(self.bucket, path)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {settings.supabase_service_key}",
            "apikey": settings.supabase_service_key,
            "Tus-Resumable": TUS_VERSION,
        }

    @staticmethod
    def _metadata(**values: str) -> str:
        return ",".join(
            f"{key} {base64.b64encode(value.encode()).decode()}"
            for key, value in values.items()
        )

    async def _transfer(
        self, path: str, data: bytes, content_type: str, report: ProgressCallback
    ) -> None:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=10.0), transport=self._transport
        ) as http:
            upload_url = await self._create(http, path, len(data), content_type)
            offset = 0
            resume_attempts = 0
            report(0)
            while offset < len(data):
                try:
                    offset = await self._patch(http, upload_url, data, offset, report)
                except httpx.TransportError as e:
                    resume_attempts += 1
                    if resume_attempts > settings.upload_max_resume_attempts:
                        raise UploadFailedError(
                            "Upload failed. Please try again.",
                            details={"path": path, "cause": str(e)},
                        ) from e
                    logger.warning(
                        "blob_transfer_resuming",
                        path=path,
                        attempt=resume_attempts,
                        error=str(e),
                    )
                    offset = await self._current_offset(http, upload_url)
                    report(offset)

    async def _create(
        self, http: httpx.AsyncClient, path: str, size: int, content_type: str
    ) -> str:
        headers = {
            **self._headers(),
            "Upload-Length": str(size),
            "Upload-Metadata": self._metadata(
                bucketName=self.bucket,
                objectName=path,
                contentType=content_type,
                cacheControl="3600",
            ),
            "x-upsert": "true",
        }
        response = await http.post(self.endpoint, headers=headers)
        self._raise_for_status(response, path)
        location = response.headers.get("Location")
        if not location:
            raise UploadFailedError(
                "Storage did not return an upload location", details={"path": path}
            )
        return location

    async def _patch(
        self,
        http: httpx.AsyncClient,
        upload_url: str,
        data: bytes,
        offset: int,
        report: ProgressCallback,
    ) -> int:
        end = min(offset + settings.upload_chunk_size, len(data))
        block = settings.upload_stream_block_size

        async def body() -> AsyncIterator[bytes]:
            for start in range(offset, end, block):
                chunk = data[start:min(start + block, end)]
                yield chunk
                report(start + len(chunk))

        headers = {
            **self._headers(),
            "Upload-Offset": str(offset),
            "Content-Type": "application/offset+octet-stream",
            "Content-Length": str(end - offset),
        }
        response = await http.patch(upload_url, headers=headers, content=body())
        self._raise_for_status(response, upload_url)
        return int(response.headers.get("Upload-Offset", end))

    async def _current_offset(self, http: httpx.AsyncClient, upload_url: str) -> int:
        response = await http.head(upload_url, headers=self._headers())
        self._raise_for_status(response, upload_url)
        return int(response.headers.get("Upload-Offset", 0))

    @staticmethod
    def _raise_for_status(response: httpx.Response, path: str) -> None:
        if response.is_success:
            return
        logger.error(
            "blob_transfer_http_error",
            path=path,
            status_code=response.status_code,
            body=response.text[:200],
        )
        raise UploadFailedError(
            "Upload failed. Please try again.",
            details={"path": path, "status_code": response.status_code},
        )
