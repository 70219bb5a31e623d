"""Tests for file validation."""

import pytest

from uploader.config import UploaderOptions
from uploader.services.validator import FileValidator, ValidationCode, message_parameters


def _validator(**overrides: object) -> FileValidator:
    options = UploaderOptions(url="http://uploads.test", **overrides)  # type: ignore[arg-type]
    return FileValidator(options)


class TestExtensionCheck:
    """Tests for the accepted extension check."""

    def test_no_restriction(self) -> None:
        assert _validator().validate("anything.exe", 10).ok

    @pytest.mark.parametrize("name", ["photo.jpg", "photo.JPG", "archive.old.png"])
    def test_accepted(self, name: str) -> None:
        """Test extensions match case-insensitively, with or without a dot."""
        validator = _validator(accepted_extensions=["jpg", ".PNG"])
        assert validator.validate(name, 10).ok

    @pytest.mark.parametrize("name", ["notes.txt", "jpg", "photo.jpg.zip"])
    def test_rejected(self, name: str) -> None:
        validator = _validator(accepted_extensions=["jpg", "png"])
        result = validator.validate(name, 10)
        assert result.codes == [ValidationCode.INVALID_TYPE]

    def test_rejection_message(self) -> None:
        """Test the invalid type template is resolved for the file."""
        validator = _validator(accepted_extensions=["jpg", "png"])
        message = validator.validate("notes.txt", 10).violations[0].message
        assert "notes.txt" in message
        assert "jpg,png" in message


class TestSizeChecks:
    """Tests for the size range checks."""

    def test_too_small(self) -> None:
        validator = _validator(accepted_size_range_kib=(1, None))
        result = validator.validate("a.txt", 1023)
        assert result.codes == [ValidationCode.SIZE_TOO_SMALL]
        assert "1.0 KB" in result.violations[0].message

    def test_too_large(self) -> None:
        validator = _validator(accepted_size_range_kib=(None, 2))
        result = validator.validate("a.txt", 2049)
        assert result.codes == [ValidationCode.SIZE_TOO_LARGE]
        assert "2.0 KB" in result.violations[0].message

    def test_limits_are_inclusive(self) -> None:
        validator = _validator(accepted_size_range_kib=(1, 2))
        assert validator.validate("a.txt", 1024).ok
        assert validator.validate("a.txt", 2048).ok

    def test_unknown_size_skips_checks(self) -> None:
        """Test size checks are skipped when the size cannot be known."""
        validator = _validator(accepted_size_range_kib=(1, 2))
        assert validator.validate("a.txt", None).ok

    def test_violations_accumulate(self) -> None:
        """Test a file can violate the type and size rules at once."""
        validator = _validator(accepted_extensions=["pdf"], accepted_size_range_kib=(None, 1))
        result = validator.validate("big.txt", 5000)
        assert result.codes == [ValidationCode.INVALID_TYPE, ValidationCode.SIZE_TOO_LARGE]
        assert not result.ok

    def test_custom_messages(self) -> None:
        validator = _validator(
            accepted_size_range_kib=(None, 1),
            messages={"size_too_large": "{{FILENAME}} over {{allowedMaxSize}}"},
        )
        result = validator.validate("big.txt", 5000)
        assert result.violations[0].message == "big.txt over 1.0 KB"

    def test_violation_to_dict(self) -> None:
        validator = _validator(accepted_size_range_kib=(1, None))
        violation = validator.validate("a.txt", 1).violations[0]
        assert violation.to_dict()["code"] == 2


class TestMessageParameters:
    """Tests for the placeholder values."""

    def test_parameters(self) -> None:
        options = UploaderOptions(
            accepted_extensions=["txt"], accepted_size_range_kib=(None, 4), max_files=2
        )
        params = message_parameters(options, "notes.txt", 1536)
        assert params == {
            "fileName": "notes.txt",
            "fileSize": "1.5 KB",
            "fileExtension": "txt",
            "allowedExtensions": "txt",
            "allowedMinSize": None,
            "allowedMaxSize": "4.0 KB",
            "maxFiles": 2,
        }
