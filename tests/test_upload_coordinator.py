import asyncio

import pytest

from app.core.exceptions import (
    PersistenceError,
    UnauthenticatedError,
    UploadCancelledError,
    UploadFailedError,
    UploadTimeoutError,
    ValidationError,
)
from app.services.onboarding.context import SessionContext
from app.services.onboarding.file_validator import DocumentUpload
from app.services.onboarding.upload_coordinator import UploadCoordinator
from app.state_machines.onboarding_flow import OnboardingFlowMachine

from tests.fakes import (
    FIXED_NOW,
    SELLER_ID,
    FakeChannel,
    FakeStore,
    fixed_clock,
    seller_record,
    settle,
)

CONTEXT = SessionContext(seller_id=SELLER_ID, email="seller@shop.io")


def _pdf(name: str = "passport.pdf", size: int = 1000) -> DocumentUpload:
    return DocumentUpload(file_name=name, content_type="application/pdf", data=b"%" * size)


def _setup(channel=None, store=None, timeout_seconds=None):
    store = store or FakeStore()
    store.put("sellers", SELLER_ID, seller_record())
    machine = OnboardingFlowMachine(
        record={"sellerId": SELLER_ID, **seller_record()}, seller_id=SELLER_ID
    )
    coordinator = UploadCoordinator(
        machine=machine,
        store=store,
        channel=channel or FakeChannel(),
        timeout_seconds=timeout_seconds,
        clock=fixed_clock,
    )
    return coordinator, machine, store


def test_successful_upload_persists_document_and_updates_completion():
    async def _run():
        channel = FakeChannel()
        coordinator, machine, store = _setup(channel=channel)

        task = coordinator.upload(CONTEXT, "identity", _pdf())
        outcome = await task

        millis = int(FIXED_NOW.timestamp() * 1000)
        assert outcome.path == f"{SELLER_ID}/identity_{millis}_passport.pdf"
        assert outcome.file_url == f"https://cdn.test/{outcome.path}"
        assert outcome.completion_percent == 33
        assert channel.started == [outcome.path]

        record = store.get("sellers", SELLER_ID)
        assert record["documents"]["identity"]["fileUrl"] == outcome.file_url
        assert record["documents"]["identity"]["path"] == outcome.path
        assert record["verificationStatus"]["identity"] == "uploaded"
        # Untouched categories keep their status
        assert record["verificationStatus"]["business"] == "not-submitted"

        assert machine.uploaded_by_category == {"identity"}
        assert machine.progress_by_category["identity"] == 0
        assert coordinator.in_flight_categories == []
        assert coordinator.cached_document("identity").file_url == outcome.file_url

    asyncio.run(_run())


def test_progress_is_relayed_while_transfer_is_running():
    async def _run():
        gate = asyncio.Event()
        channel = FakeChannel(steps=[0.25, 0.5], gate=gate)
        coordinator, machine, _ = _setup(channel=channel)

        task = coordinator.upload(CONTEXT, "identity", _pdf(size=1000))
        await settle()

        assert machine.progress_by_category["identity"] == 50
        assert coordinator.in_flight_categories == ["identity"]

        gate.set()
        await task
        assert machine.progress_by_category["identity"] == 0

    asyncio.run(_run())


def test_invalid_file_is_rejected_before_any_transfer():
    async def _run():
        channel = FakeChannel()
        coordinator, _, store = _setup(channel=channel)
        oversized = _pdf(size=5 * 1024 * 1024 + 1)

        with pytest.raises(ValidationError) as exc_info:
            coordinator.upload(CONTEXT, "identity", oversized)

        assert exc_info.value.error_code == "FILE_TOO_LARGE"
        assert channel.started == []
        assert store.merge_calls == []

    asyncio.run(_run())


def test_upload_requires_a_seller_session():
    async def _run():
        channel = FakeChannel()
        coordinator, _, _ = _setup(channel=channel)

        with pytest.raises(UnauthenticatedError):
            coordinator.upload(None, "identity", _pdf())
        assert channel.started == []

    asyncio.run(_run())


def test_transfer_failure_leaves_no_trace_and_can_be_retried():
    async def _run():
        channel = FakeChannel(steps=[0.4], fail_with=RuntimeError("connection reset"))
        coordinator, machine, store = _setup(channel=channel)

        with pytest.raises(UploadFailedError):
            await coordinator.upload(CONTEXT, "business", _pdf("license.pdf"))

        assert store.merge_calls == []
        assert "business" not in machine.uploaded_by_category
        assert machine.progress_by_category["business"] == 0
        assert coordinator.in_flight_categories == []

        channel.fail_with = None
        outcome = await coordinator.upload(CONTEXT, "business", _pdf("license.pdf"))
        assert outcome.completion_percent == 33
        assert len(store.merge_calls) == 1

    asyncio.run(_run())


def test_persistence_failure_is_retried_without_reuploading():
    async def _run():
        channel = FakeChannel()
        store = FakeStore(fail_merges=1)
        coordinator, machine, _ = _setup(channel=channel, store=store)

        with pytest.raises(PersistenceError) as exc_info:
            await coordinator.upload(CONTEXT, "bank", _pdf("statement.pdf"))

        assert exc_info.value.details["file_url"].startswith("https://cdn.test/")
        assert coordinator.pending_persistence_categories == ["bank"]
        assert "bank" not in machine.uploaded_by_category

        outcome = await coordinator.retry_persistence(CONTEXT, "bank")

        assert len(channel.started) == 1
        assert outcome.completion_percent == 33
        assert coordinator.pending_persistence_categories == []
        record = store.get("sellers", SELLER_ID)
        assert record["verificationStatus"]["bank"] == "uploaded"
        assert record["documents"]["bank"]["fileUrl"] == outcome.file_url

    asyncio.run(_run())


def test_retry_persistence_with_nothing_pending():
    async def _run():
        coordinator, _, _ = _setup()

        with pytest.raises(ValidationError) as exc_info:
            await coordinator.retry_persistence(CONTEXT, "identity")

        assert exc_info.value.error_code == "NOTHING_TO_PERSIST"

    asyncio.run(_run())


def test_cancel_aborts_transfer_and_resets_progress():
    async def _run():
        gate = asyncio.Event()
        channel = FakeChannel(steps=[0.3], gate=gate)
        coordinator, machine, store = _setup(channel=channel)

        task = coordinator.upload(CONTEXT, "identity", _pdf())
        await settle()
        assert machine.progress_by_category["identity"] == 30

        assert coordinator.cancel("identity") is True
        assert machine.progress_by_category["identity"] == 0

        with pytest.raises(UploadCancelledError):
            await task.result()

        assert channel.handles[0].finished
        assert store.merge_calls == []
        assert machine.uploaded_by_category == set()
        assert coordinator.cancel("identity") is False

    asyncio.run(_run())


def test_cancel_before_transfer_starts():
    async def _run():
        channel = FakeChannel()
        coordinator, _, store = _setup(channel=channel)

        task = coordinator.upload(CONTEXT, "identity", _pdf())
        coordinator.cancel("identity")

        with pytest.raises(UploadCancelledError):
            await task.result()
        assert store.merge_calls == []

    asyncio.run(_run())


def test_timeout_aborts_a_stalled_transfer():
    async def _run():
        channel = FakeChannel(steps=[0.1], gate=asyncio.Event())
        coordinator, machine, store = _setup(channel=channel, timeout_seconds=0.05)

        with pytest.raises(UploadTimeoutError):
            await coordinator.upload(CONTEXT, "identity", _pdf())

        assert channel.handles[0].finished
        assert machine.progress_by_category["identity"] == 0
        assert store.merge_calls == []

    asyncio.run(_run())


def test_new_upload_replaces_in_flight_upload_for_same_category():
    async def _run():
        gate = asyncio.Event()
        channel = FakeChannel(steps=[0.5], gate=gate)
        coordinator, machine, store = _setup(channel=channel)

        first = coordinator.upload(CONTEXT, "identity", _pdf("old.pdf"))
        await settle()

        second = coordinator.upload(CONTEXT, "identity", _pdf("new.pdf"))
        gate.set()

        with pytest.raises(UploadCancelledError):
            await first.result()
        outcome = await second.result()

        assert outcome.path.endswith("_new.pdf")
        assert len(store.merge_calls) == 1
        assert store.get("sellers", SELLER_ID)["documents"]["identity"]["path"] == outcome.path
        assert machine.completion_percent == 33

    asyncio.run(_run())


def test_uploads_for_different_categories_run_side_by_side():
    async def _run():
        coordinator, machine, _ = _setup()

        tasks = [
            coordinator.upload(CONTEXT, category, _pdf(f"{category}.pdf"))
            for category in ("identity", "business", "bank")
        ]
        outcomes = await asyncio.gather(*(task.result() for task in tasks))

        assert sorted(outcome.category for outcome in outcomes) == ["bank", "business", "identity"]
        assert machine.completion_percent == 100

    asyncio.run(_run())


class SlowWriteStore(FakeStore):
    """Commits the merge, then holds the call open until `released` is set."""

    def __init__(self):
        super().__init__()
        self.committed = asyncio.Event()
        self.released = asyncio.Event()

    async def merge_update(self, collection, record_id, fields):
        data = await super().merge_update(collection, record_id, fields)
        self.committed.set()
        await self.released.wait()
        return data


def test_cancel_during_record_write_is_ignored():
    async def _run():
        store = SlowWriteStore()
        coordinator, machine, _ = _setup(store=store)

        task = coordinator.upload(CONTEXT, "identity", _pdf())
        await store.committed.wait()

        assert coordinator.cancel("identity") is False
        assert task.cancel() is False

        store.released.set()
        outcome = await task.result()

        assert outcome.completion_percent == 33
        assert "identity" in store.get("sellers", SELLER_ID)["documents"]
        assert machine.uploaded_by_category == {"identity"}
        assert coordinator.pending_persistence_categories == []
        assert coordinator.in_flight_categories == []

    asyncio.run(_run())


def test_progress_never_goes_backwards_within_a_transfer():
    async def _run():
        # A resume can restart from a lower server offset
        channel = FakeChannel(steps=[0.8, 0.4, 1.0])
        coordinator, machine, _ = _setup(channel=channel)
        published = []
        set_progress = machine.set_progress

        def record_progress(category, percent):
            published.append(percent)
            set_progress(category, percent)

        machine.set_progress = record_progress

        await coordinator.upload(CONTEXT, "identity", _pdf(size=1000))

        assert published == [80, 100]

    asyncio.run(_run())
