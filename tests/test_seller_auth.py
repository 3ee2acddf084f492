import asyncio

import pytest

from app.core.exceptions import (
    AccountRejectedError,
    AuthenticationError,
    SellerNotFoundError,
    StoreUnavailableError,
)
from app.domain.schemas import LandingRoute, SellerOnboardingRecord
from app.services.auth.seller_auth_service import SellerAuthService, resolve_landing_route

from tests.fakes import SELLER_ID, FakeAuthClient, seller_record


def _record(**overrides) -> SellerOnboardingRecord:
    return SellerOnboardingRecord.model_validate({"sellerId": SELLER_ID, **seller_record(**overrides)})


def test_landing_route_for_each_status():
    assert resolve_landing_route(_record()) == LandingRoute.DOCUMENTS
    assert (
        resolve_landing_route(_record(documentsUploaded=True, overallStatus="pending"))
        == LandingRoute.DASHBOARD
    )
    assert (
        resolve_landing_route(_record(documentsUploaded=True, overallStatus="approved"))
        == LandingRoute.DASHBOARD
    )
    # Rejected before uploading still goes back to the document steps
    assert resolve_landing_route(_record(overallStatus="rejected")) == LandingRoute.DOCUMENTS


def test_rejected_seller_cannot_log_in():
    with pytest.raises(AccountRejectedError):
        resolve_landing_route(_record(documentsUploaded=True, overallStatus="rejected"))


def test_register_creates_draft_record():
    async def _run():
        client = FakeAuthClient()
        service = SellerAuthService(client=client)

        response = await service.register("seller@shop.io", "s3cretpass", "Acme Traders")

        assert response.seller_id == SELLER_ID
        assert response.next_route == LandingRoute.DOCUMENTS
        assert response.session.access_token == "access"

        stored = client.get("sellers", SELLER_ID)
        assert stored["sellerId"] == SELLER_ID
        assert stored["businessName"] == "Acme Traders"
        assert stored["overallStatus"] == "draft"
        assert stored["documentsUploaded"] is False
        assert stored["documentsSubmittedAt"] is None
        assert stored["verificationStatus"] == {
            "identity": "not-submitted",
            "business": "not-submitted",
            "bank": "not-submitted",
        }

    asyncio.run(_run())


def test_register_removes_auth_user_when_record_cannot_be_created():
    async def _run():
        client = FakeAuthClient(fail_create=True)
        service = SellerAuthService(client=client)

        with pytest.raises(StoreUnavailableError):
            await service.register("seller@shop.io", "s3cretpass", "Acme Traders")

        assert client.deleted_users == [SELLER_ID]

    asyncio.run(_run())


def test_login_routes_by_onboarding_status():
    async def _run():
        client = FakeAuthClient()
        service = SellerAuthService(client=client)
        await service.register("seller@shop.io", "s3cretpass", "Acme Traders")

        first = await service.login("seller@shop.io", "s3cretpass")
        assert first.next_route == LandingRoute.DOCUMENTS

        await client.merge_update(
            "sellers", SELLER_ID, {"documentsUploaded": True, "overallStatus": "pending"}
        )
        second = await service.login("seller@shop.io", "s3cretpass")
        assert second.next_route == LandingRoute.DASHBOARD
        assert second.overall_status == "pending"

    asyncio.run(_run())


def test_login_with_wrong_password_or_missing_record():
    async def _run():
        client = FakeAuthClient()
        service = SellerAuthService(client=client)
        client.users["seller@shop.io"] = (SELLER_ID, "s3cretpass")

        with pytest.raises(AuthenticationError):
            await service.login("seller@shop.io", "wrong-password")

        with pytest.raises(SellerNotFoundError):
            await service.login("seller@shop.io", "s3cretpass")

    asyncio.run(_run())
