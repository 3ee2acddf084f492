"""Custom exceptions for domain-specific errors"""

from typing import Any, Dict, List, Optional


class DomainException(Exception):
    """Base exception for all domain errors"""

    error_code = "DOMAIN_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(message)


# Validation Errors
class ValidationError(DomainException):
    """Raised when a document fails size/type checks. No I/O has happened."""

    error_code = "VALIDATION_ERROR"


# Authentication Errors
class AuthenticationError(DomainException):
    """Raised when authentication fails"""

    error_code = "AUTHENTICATION_ERROR"


class UnauthenticatedError(AuthenticationError):
    """Raised when an operation needs a seller session and none is present"""

    error_code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Please log in to continue.", **kwargs):
        super().__init__(message, **kwargs)


# Seller Errors
class SellerNotFoundError(DomainException):
    """Raised when no seller record exists for the identity"""

    error_code = "SELLER_NOT_FOUND"


class AccountRejectedError(DomainException):
    """Raised when a rejected seller tries to log in"""

    error_code = "ACCOUNT_REJECTED"

    def __init__(
        self,
        message: str = "Your seller account has been rejected. Please contact support.",
        **kwargs,
    ):
        super().__init__(message, **kwargs)


# Upload Errors
class UploadFailedError(DomainException):
    """Transfer failed. Retrying the same category has no side effects."""

    error_code = "UPLOAD_FAILED"


class UploadCancelledError(UploadFailedError):
    """Transfer was aborted before it completed"""

    error_code = "UPLOAD_CANCELLED"


class UploadTimeoutError(UploadFailedError):
    """Transfer did not finish within the configured timeout"""

    error_code = "UPLOAD_TIMEOUT"


class PersistenceError(DomainException):
    """Binary is stored but the seller record was not updated.

    Retry the persistence step only; the upload must not be repeated.
    """

    error_code = "PERSISTENCE_FAILED"


# Submission Errors
class IncompleteSubmissionError(DomainException):
    """Raised when submitting before every category has a document"""

    error_code = "INCOMPLETE_SUBMISSION"

    def __init__(self, missing: List[str], details: Optional[Dict[str, Any]] = None):
        self.missing = list(missing)
        super().__init__(
            message=f"Please upload all required documents before submitting: {', '.join(self.missing)}",
            details=details or {"missing": self.missing},
        )


# External Service Errors
class ExternalServiceError(DomainException):
    """Raised when external service call fails"""

    error_code = "EXTERNAL_SERVICE_ERROR"


class StoreUnavailableError(ExternalServiceError):
    """Raised when a document store read or write fails"""

    error_code = "STORE_UNAVAILABLE"
