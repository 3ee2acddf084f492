"""
API endpoints for the KYC document onboarding steps.
"""

import structlog
from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status

from app.api.dependencies import get_onboarding_session, get_session_context
from app.core.config import settings
from app.domain.schemas import (
    DocumentCategory,
    DocumentView,
    ErrorResponse,
    OnboardingStatusResponse,
    StepResponse,
    SubmissionResponse,
    UploadResponse,
)
from app.services.onboarding.context import SessionContext
from app.services.onboarding.file_validator import DocumentUpload
from app.services.onboarding.session import OnboardingSession

logger = structlog.get_logger()

router = APIRouter(
    prefix="/onboarding",
    tags=["Onboarding"],
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
    },
)


def _step(session: OnboardingSession, moved: bool) -> StepResponse:
    return StepResponse(
        moved=moved,
        current_step_index=session.get_current_step(),
        current_category=session.machine.current_category,
    )


@router.get("", response_model=OnboardingStatusResponse, response_model_by_alias=True)
async def get_onboarding_status(
    context: SessionContext = Depends(get_session_context),
    session: OnboardingSession = Depends(get_onboarding_session),
):
    """Current step, completion, upload progress and the stored verification status."""
    record = await session.controller.load_record(context.seller_id)
    return OnboardingStatusResponse(
        **session.snapshot().model_dump(),
        verification_status=record.verification_status,
        overall_status=record.overall_status,
        documents_submitted_at=record.documents_submitted_at,
    )


@router.post("/next", response_model=StepResponse, response_model_by_alias=True)
async def next_step(session: OnboardingSession = Depends(get_onboarding_session)):
    """Advance one step. Stays put (moved=false) until the current document is uploaded."""
    return _step(session, session.next())


@router.post("/previous", response_model=StepResponse, response_model_by_alias=True)
async def previous_step(session: OnboardingSession = Depends(get_onboarding_session)):
    return _step(session, session.previous())


@router.post(
    "/documents/{category}",
    response_model=UploadResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def upload_document(
    category: DocumentCategory,
    response: Response,
    file: UploadFile = File(...),
    wait: bool = Query(False, description="Wait for the upload to finish"),
    context: SessionContext = Depends(get_session_context),
    session: OnboardingSession = Depends(get_onboarding_session),
):
    """
    Upload the document for one KYC category (PDF, JPG or PNG, max 5MB).

    Returns 202 immediately and the client polls GET /onboarding for progress,
    or with wait=true responds once the document is stored.
    """
    # One byte past the limit is enough for the size check to fail
    data = await file.read(settings.max_document_size + 1)
    upload = DocumentUpload(
        file_name=file.filename or "document",
        content_type=file.content_type or "",
        data=data,
    )

    task = session.upload(context, category.value, upload)
    logger.info("document_upload_accepted", category=category.value, path=task.path, wait=wait)

    if not wait:
        return UploadResponse(
            category=category.value,
            status="uploading",
            path=task.path,
            completion_percent=session.get_completion_percent(),
        )

    outcome = await task.result()
    response.status_code = status.HTTP_200_OK
    return UploadResponse(
        category=outcome.category,
        status="uploaded",
        path=outcome.path,
        file_url=outcome.file_url,
        completion_percent=outcome.completion_percent,
    )


@router.delete("/documents/{category}/upload")
async def cancel_upload(
    category: DocumentCategory,
    context: SessionContext = Depends(get_session_context),
    session: OnboardingSession = Depends(get_onboarding_session),
):
    """Abort the in-flight upload for a category."""
    cancelled = session.cancel_upload(context, category.value)
    return {"category": category.value, "cancelled": cancelled}


@router.post(
    "/documents/{category}/persist",
    response_model=UploadResponse,
    response_model_by_alias=True,
)
async def retry_persistence(
    category: DocumentCategory,
    context: SessionContext = Depends(get_session_context),
    session: OnboardingSession = Depends(get_onboarding_session),
):
    """Save an already uploaded document whose record write failed earlier."""
    outcome = await session.retry_persistence(context, category.value)
    return UploadResponse(
        category=outcome.category,
        status="uploaded",
        path=outcome.path,
        file_url=outcome.file_url,
        completion_percent=outcome.completion_percent,
    )


@router.get(
    "/documents/{category}",
    response_model=DocumentView,
    response_model_by_alias=True,
)
async def view_document(
    category: DocumentCategory,
    context: SessionContext = Depends(get_session_context),
    session: OnboardingSession = Depends(get_onboarding_session),
):
    record = await session.controller.load_record(context.seller_id)
    document = record.documents.get(category.value)
    if not document:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No {category.value} document uploaded yet",
        )
    return DocumentView(
        category=category.value,
        file_url=document.file_url,
        verification_status=record.verification_status.get(category.value),
    )


@router.post("/submit", response_model=SubmissionResponse, response_model_by_alias=True)
async def submit_for_verification(
    context: SessionContext = Depends(get_session_context),
    session: OnboardingSession = Depends(get_onboarding_session),
):
    """Submit every document for review. Fails with 409 naming any missing category."""
    outcome = await session.submit_for_verification(context)
    return SubmissionResponse(
        seller_id=outcome.seller_id,
        overall_status=outcome.overall_status,
        documents_uploaded=outcome.documents_uploaded,
        documents_submitted_at=outcome.documents_submitted_at,
        already_submitted=outcome.already_submitted,
    )
