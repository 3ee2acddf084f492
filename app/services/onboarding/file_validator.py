"""
File validation for KYC document uploads.
Checks run before any network activity.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import structlog

from app.core.config import settings
from app.core.exceptions import ValidationError
from app.domain.schemas import DocumentCategory

logger = structlog.get_logger()

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True)
class DocumentUpload:
    """A file selected by the seller for one KYC category."""

    file_name: str
    content_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def safe_file_name(self) -> str:
        cleaned = _UNSAFE_FILENAME_CHARS.sub("_", self.file_name.rsplit("/", 1)[-1]).strip("._")
        return cleaned or "document"


class FileValidator:
    """
    Validates seller documents against the size and media type policy.
    """

    def __init__(
        self,
        max_file_size: Optional[int] = None,
        allowed_types: Optional[Iterable[str]] = None,
    ):
        self.max_file_size = max_file_size or settings.max_document_size
        self.allowed_types = {t.lower() for t in (allowed_types or settings.allowed_document_types)}

    def validate_category(self, category: str) -> str:
        try:
            return DocumentCategory(category).value
        except ValueError:
            raise ValidationError(
                f"Unknown document category: {category}",
                details={"category": category},
                error_code="UNKNOWN_CATEGORY",
            )

    def validate_file_size(self, upload: DocumentUpload) -> Dict[str, Any]:
        if upload.size == 0:
            raise ValidationError("The selected file is empty", error_code="FILE_EMPTY")

        if upload.size > self.max_file_size:
            max_mb = self.max_file_size / 1024 / 1024
            raise ValidationError(
                f"File size should not exceed {max_mb:g}MB",
                details={"size_bytes": upload.size, "max_bytes": self.max_file_size},
                error_code="FILE_TOO_LARGE",
            )

        return {"valid": True, "size_bytes": upload.size}

    def validate_content_type(self, upload: DocumentUpload) -> Dict[str, Any]:
        content_type = (upload.content_type or "").split(";", 1)[0].strip().lower()
        if content_type not in self.allowed_types:
            raise ValidationError(
                "Please upload only PDF, JPG, or PNG files",
                details={"content_type": upload.content_type},
                error_code="INVALID_FILE_TYPE",
            )
        return {"valid": True, "content_type": content_type}

    def validate_all(self, category: str, upload: DocumentUpload) -> Dict[str, Any]:
        """Run all checks. Raises ValidationError on the first failure."""
        results = {
            "category": self.validate_category(category),
            "size": self.validate_file_size(upload),
            "content_type": self.validate_content_type(upload),
        }
        logger.debug(
            "document_validation_passed",
            category=category,
            file_name=upload.file_name,
            size_bytes=upload.size,
        )
        return results


file_validator = FileValidator()
