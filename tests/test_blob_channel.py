import asyncio
import base64

import httpx
import pytest

from app.core.exceptions import UploadCancelledError, UploadFailedError
from app.infrastructure.blob_channel import (
    SupabaseResumableChannel,
    TransferEventKind,
    UploadHandle,
)

UPLOAD_LOCATION = "http://supabase.test/storage/v1/upload/resumable/abc123"


class FakeStorage:
    def get_public_url(self, bucket, path):
        return f"https://cdn.test/{bucket}/{path}"


class TusServer:
    """Minimal TUS endpoint for httpx.MockTransport."""

    def __init__(self, drop_first_patch: bool = False, create_status: int = 201):
        self.drop_first_patch = drop_first_patch
        self.create_status = create_status
        self.received = b""
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if self.create_status != 201:
                return httpx.Response(self.create_status, text="bucket not found")
            return httpx.Response(201, headers={"Location": UPLOAD_LOCATION})
        if request.method == "HEAD":
            return httpx.Response(200, headers={"Upload-Offset": str(len(self.received))})
        if request.method == "PATCH":
            if self.drop_first_patch:
                self.drop_first_patch = False
                raise httpx.ConnectError("connection reset", request=request)
            assert int(request.headers["Upload-Offset"]) == len(self.received)
            self.received += request.content
            return httpx.Response(204, headers={"Upload-Offset": str(len(self.received))})
        return httpx.Response(405)


def _channel(server: TusServer) -> SupabaseResumableChannel:
    return SupabaseResumableChannel(
        storage=FakeStorage(),
        bucket="seller-documents",
        transport=httpx.MockTransport(server),
    )


async def _drain(handle: UploadHandle):
    return [event async for event in handle.events()]


def test_resumable_upload_reports_progress_and_completes():
    async def _run():
        server = TusServer()
        data = b"a" * (600 * 1024)
        handle = _channel(server).start_upload("seller-1/identity_1_id.pdf", data, "application/pdf")

        events = await _drain(handle)

        assert events[-1].kind == TransferEventKind.COMPLETE
        assert [e.kind for e in events[:-1]] == [TransferEventKind.PROGRESS] * (len(events) - 1)
        offsets = [e.bytes_transferred for e in events[:-1]]
        assert offsets == sorted(offsets)
        assert offsets[-1] == len(data)
        assert server.received == data

        create = server.requests[0]
        assert create.headers["Upload-Length"] == str(len(data))
        assert create.headers["x-upsert"] == "true"
        metadata = dict(item.split(" ") for item in create.headers["Upload-Metadata"].split(","))
        assert base64.b64decode(metadata["objectName"]).decode() == "seller-1/identity_1_id.pdf"
        assert base64.b64decode(metadata["bucketName"]).decode() == "seller-documents"

        url = await handle.retrieval_url()
        assert url == "https://cdn.test/seller-documents/seller-1/identity_1_id.pdf"

    asyncio.run(_run())


def test_transport_error_resumes_from_server_offset():
    async def _run():
        server = TusServer(drop_first_patch=True)
        data = b"b" * 1024
        handle = _channel(server).start_upload("seller-1/bank_1_s.pdf", data, "application/pdf")

        events = await _drain(handle)

        assert events[-1].kind == TransferEventKind.COMPLETE
        assert server.received == data
        assert [r.method for r in server.requests] == ["POST", "PATCH", "HEAD", "PATCH"]

    asyncio.run(_run())


def test_rejected_create_ends_with_error_event():
    async def _run():
        server = TusServer(create_status=400)
        handle = _channel(server).start_upload("seller-1/x.pdf", b"c" * 10, "application/pdf")

        events = await _drain(handle)

        assert len(events) == 1
        assert events[0].kind == TransferEventKind.ERROR
        assert isinstance(events[0].error, UploadFailedError)
        with pytest.raises(UploadFailedError):
            await handle.retrieval_url()

    asyncio.run(_run())


def test_cancel_emits_single_terminal_event():
    async def _run():
        started = asyncio.Event()

        async def stalled(report):
            report(5)
            started.set()
            await asyncio.Event().wait()

        async def resolve():
            return "unused"

        handle = UploadHandle("seller-1/y.pdf", 10, stalled, resolve).start()
        await started.wait()

        assert handle.cancel() is True
        assert handle.cancel() is False

        events = await _drain(handle)
        assert [e.kind for e in events] == [TransferEventKind.PROGRESS, TransferEventKind.ERROR]
        assert isinstance(events[-1].error, UploadCancelledError)

    asyncio.run(_run())
