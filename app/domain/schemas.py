from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase"""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


class CamelCaseModel(BaseModel):
    """Base model with camelCase alias configuration"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,  # Allow both snake_case and camelCase
        use_enum_values=True,
    )

    def to_store(self) -> Dict:
        return self.model_dump(mode="json", by_alias=True)


class DocumentCategory(str, Enum):
    """KYC document categories, in onboarding step order."""

    IDENTITY = "identity"
    BUSINESS = "business"
    BANK = "bank"

    @classmethod
    def ordered(cls) -> List["DocumentCategory"]:
        return [cls.IDENTITY, cls.BUSINESS, cls.BANK]


CATEGORY_COUNT = len(DocumentCategory.ordered())


class VerificationStatus(str, Enum):
    NOT_SUBMITTED = "not-submitted"
    UPLOADED = "uploaded"
    APPROVED = "approved"
    REJECTED = "rejected"


class OverallStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class LandingRoute(str, Enum):
    DASHBOARD = "dashboard"
    DOCUMENTS = "documents"
    LOGIN = "login"


# Seller Onboarding Record (document store shape)
class DocumentRecord(CamelCaseModel):
    file_url: str
    path: str
    content_type: Optional[str] = None
    file_name: Optional[str] = None
    uploaded_at: Optional[datetime] = None


def _initial_verification_status() -> Dict[str, str]:
    return {
        category.value: VerificationStatus.NOT_SUBMITTED.value
        for category in DocumentCategory.ordered()
    }


class SellerOnboardingRecord(CamelCaseModel):
    seller_id: str
    email: Optional[str] = None
    business_name: Optional[str] = None
    documents: Dict[str, Optional[DocumentRecord]] = Field(default_factory=dict)
    verification_status: Dict[str, VerificationStatus] = Field(
        default_factory=_initial_verification_status
    )
    documents_uploaded: bool = False
    overall_status: OverallStatus = OverallStatus.DRAFT
    documents_submitted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def uploaded_categories(self) -> List[str]:
        """Categories that have a persisted DocumentRecord, in step order."""
        return [
            category.value
            for category in DocumentCategory.ordered()
            if self.documents.get(category.value)
        ]

    def missing_categories(self) -> List[str]:
        uploaded = set(self.uploaded_categories())
        return [
            category.value
            for category in DocumentCategory.ordered()
            if category.value not in uploaded
        ]


# Auth Schemas
class SellerRegister(CamelCaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    business_name: str = Field(..., min_length=1, max_length=200)

    @field_validator("business_name")
    @classmethod
    def strip_business_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Business name is required")
        return v


class SellerLogin(CamelCaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class SessionTokens(CamelCaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


class AuthResponse(CamelCaseModel):
    seller_id: str
    email: Optional[str] = None
    session: Optional[SessionTokens] = None
    overall_status: OverallStatus
    documents_uploaded: bool
    next_route: LandingRoute


# Onboarding Schemas
class OnboardingSnapshot(CamelCaseModel):
    """Read-only projection of the onboarding state for rendering."""

    seller_id: str
    current_step_index: int
    current_category: str
    state: str
    completion_percent: int
    uploaded_by_category: List[str]
    progress_by_category: Dict[str, int]
    in_flight: List[str] = Field(default_factory=list)
    pending_persistence: List[str] = Field(default_factory=list)
    can_go_next: bool
    can_go_previous: bool
    can_submit: bool


class OnboardingStatusResponse(OnboardingSnapshot):
    verification_status: Dict[str, VerificationStatus]
    overall_status: OverallStatus
    documents_submitted_at: Optional[datetime] = None


class StepResponse(CamelCaseModel):
    moved: bool
    current_step_index: int
    current_category: str


class UploadResponse(CamelCaseModel):
    category: str
    status: str
    path: Optional[str] = None
    file_url: Optional[str] = None
    completion_percent: int


class DocumentView(CamelCaseModel):
    category: str
    file_url: str
    verification_status: VerificationStatus


class SubmissionResponse(CamelCaseModel):
    seller_id: str
    overall_status: OverallStatus
    documents_uploaded: bool
    documents_submitted_at: datetime
    already_submitted: bool = False
    next_route: LandingRoute = LandingRoute.LOGIN


class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Optional[Dict] = None
