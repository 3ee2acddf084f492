from app.state_machines.onboarding_flow import STEP_ORDER, OnboardingFlowMachine

from tests.fakes import SELLER_ID, seller_record, stored_document


def _machine(**record_overrides) -> OnboardingFlowMachine:
    return OnboardingFlowMachine(
        record={"sellerId": SELLER_ID, **seller_record(**record_overrides)},
        seller_id=SELLER_ID,
    )


def test_new_seller_starts_on_identity_step():
    machine = _machine()

    assert STEP_ORDER == ["identity", "business", "bank"]
    assert machine.current_step_index == 0
    assert machine.current_category == "identity"
    assert machine.completion_percent == 0
    assert machine.can_go_previous() is False


def test_next_is_a_no_op_until_current_category_uploaded():
    machine = _machine()

    assert machine.next() is False
    assert machine.current_step_index == 0

    machine.mark_uploaded("identity")
    assert machine.next() is True
    assert machine.current_step_index == 1
    assert machine.current_category == "business"

    # business is not uploaded yet
    assert machine.next() is False
    assert machine.current_step_index == 1


def test_previous_is_unconditional_and_stops_at_first_step():
    machine = _machine(documents={"identity": stored_document("identity")})
    machine.next()

    assert machine.previous() is True
    assert machine.current_step_index == 0
    assert machine.previous() is False
    assert machine.current_step_index == 0


def test_next_stops_at_last_step():
    machine = _machine(
        documents={category: stored_document(category) for category in STEP_ORDER}
    )

    assert machine.next() is True
    assert machine.next() is True
    assert machine.current_category == "bank"
    assert machine.next() is False
    assert machine.current_step_index == 2


def test_completion_percent_is_rounded_share_of_uploaded_categories():
    machine = _machine()

    assert machine.mark_uploaded("identity") == 33
    assert machine.mark_uploaded("business") == 67
    assert machine.mark_uploaded("bank") == 100
    # Re-uploading a category does not double count
    assert machine.mark_uploaded("bank") == 100


def test_uploaded_categories_are_derived_from_record_documents():
    machine = _machine(documents={"business": stored_document("business"), "bank": None})

    assert machine.uploaded_by_category == {"business"}
    assert machine.completion_percent == 33


def test_progress_is_clamped_and_reset_on_upload():
    machine = _machine()

    machine.set_progress("identity", 140)
    assert machine.progress_by_category["identity"] == 100
    machine.set_progress("identity", -5)
    assert machine.progress_by_category["identity"] == 0

    machine.set_progress("identity", 60)
    machine.mark_uploaded("identity")
    assert machine.progress_by_category["identity"] == 0


def test_mark_submitted_requires_every_category():
    machine = _machine(
        documents={category: stored_document(category) for category in STEP_ORDER}
    )

    assert machine.mark_submitted() is True
    assert machine.is_submitted
    assert machine.mark_submitted() is False
    assert machine.can_go_next() is False
    assert machine.can_go_previous() is False


def test_record_with_submission_timestamp_starts_submitted():
    machine = _machine(
        documents={category: stored_document(category) for category in STEP_ORDER},
        documentsSubmittedAt="2024-05-01T12:30:00+00:00",
    )

    assert machine.is_submitted
    assert machine.current_step_index == 2


def test_flow_info_reports_navigation_flags():
    machine = _machine(documents={"identity": stored_document("identity")})
    machine.set_progress("business", 40)

    info = machine.get_flow_info()

    assert info["state"] == "step_identity"
    assert set(info) >= {"state", "completion_percent"}
    assert "error_code" not in info
    assert info["uploaded_by_category"] == ["identity"]
    assert info["progress_by_category"]["business"] == 40
    assert info["can_go_next"] is True
    assert info["can_submit"] is False


def test_is_owner_checks_record_seller():
    machine = _machine()

    assert machine.is_owner(SELLER_ID)
    assert not machine.is_owner("someone-else")


def test_sync_with_record_adds_stored_documents_and_submission():
    machine = _machine()
    machine.mark_uploaded("identity")

    # A read taken before identity was written must not drop it
    machine.sync_with_record(
        seller_record(documents={c: stored_document(c) for c in ("business", "bank")})
    )
    assert machine.uploaded_by_category == {"identity", "business", "bank"}
    assert machine.is_submitted is False

    machine.sync_with_record(
        seller_record(
            documents={c: stored_document(c) for c in STEP_ORDER},
            documentsSubmittedAt="2024-04-01T08:00:00+00:00",
        )
    )
    assert machine.is_submitted is True
