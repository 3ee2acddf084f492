from app.services.onboarding.context import SessionContext, require_seller
from app.services.onboarding.events import ONBOARDING_SUBMITTED, OnboardingEvents, onboarding_events
from app.services.onboarding.file_validator import DocumentUpload, FileValidator, file_validator
from app.services.onboarding.session import (
    OnboardingSession,
    OnboardingSessionRegistry,
    onboarding_sessions,
)
from app.services.onboarding.submission_controller import (
    SubmissionOutcome,
    VerificationSubmissionController,
)
from app.services.onboarding.upload_coordinator import UploadCoordinator, UploadOutcome, UploadTask

__all__ = [
    "SessionContext",
    "require_seller",
    "ONBOARDING_SUBMITTED",
    "OnboardingEvents",
    "onboarding_events",
    "DocumentUpload",
    "FileValidator",
    "file_validator",
    "OnboardingSession",
    "OnboardingSessionRegistry",
    "onboarding_sessions",
    "SubmissionOutcome",
    "VerificationSubmissionController",
    "UploadCoordinator",
    "UploadOutcome",
    "UploadTask",
]
