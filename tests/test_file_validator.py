import pytest

from app.core.exceptions import ValidationError
from app.services.onboarding.file_validator import DocumentUpload, FileValidator

MB = 1024 * 1024


def _upload(size: int = 1024, content_type: str = "application/pdf", name: str = "id.pdf"):
    return DocumentUpload(file_name=name, content_type=content_type, data=b"x" * size)


def test_accepts_pdf_jpeg_and_png():
    validator = FileValidator()

    for content_type in ("application/pdf", "image/jpeg", "image/jpg", "image/png"):
        results = validator.validate_all("identity", _upload(content_type=content_type))
        assert results["category"] == "identity"


def test_accepts_exactly_five_megabytes():
    results = FileValidator().validate_all("bank", _upload(size=5 * MB))

    assert results["size"]["size_bytes"] == 5 * MB


def test_rejects_file_over_five_megabytes():
    with pytest.raises(ValidationError) as exc_info:
        FileValidator().validate_all("identity", _upload(size=5 * MB + 1))

    assert exc_info.value.error_code == "FILE_TOO_LARGE"
    assert "5MB" in exc_info.value.message


def test_rejects_empty_file():
    with pytest.raises(ValidationError) as exc_info:
        FileValidator().validate_file_size(_upload(size=0))

    assert exc_info.value.error_code == "FILE_EMPTY"


def test_rejects_disallowed_media_type():
    with pytest.raises(ValidationError) as exc_info:
        FileValidator().validate_all("business", _upload(content_type="image/gif", name="a.gif"))

    assert exc_info.value.error_code == "INVALID_FILE_TYPE"


def test_content_type_parameters_are_ignored():
    results = FileValidator().validate_content_type(
        _upload(content_type="Application/PDF; charset=binary")
    )

    assert results["content_type"] == "application/pdf"


def test_rejects_unknown_category():
    with pytest.raises(ValidationError) as exc_info:
        FileValidator().validate_all("tax", _upload())

    assert exc_info.value.error_code == "UNKNOWN_CATEGORY"


def test_safe_file_name_strips_path_and_odd_characters():
    upload = _upload(name="../scans/my passport (1).pdf")

    assert upload.safe_file_name == "my_passport_1_.pdf"
