"""Per-file validation against the configured type and size constraints."""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from uploader.config import UploaderOptions
from uploader.services.utils import format_bytes, get_file_extension, render_message


class ValidationCode(IntEnum):
    """Stable codes for validation violations."""

    INVALID_TYPE = 1
    SIZE_TOO_SMALL = 2
    SIZE_TOO_LARGE = 3


@dataclass(frozen=True)
class Violation:
    """A single reason a file was rejected."""

    code: ValidationCode
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"code": int(self.code), "message": self.message}


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one file."""

    violations: list[Violation] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.violations

    @property
    def codes(self) -> list[ValidationCode]:
        return [v.code for v in self.violations]


def _normalize_extension(extension: str) -> str:
    return "." + extension.lower().lstrip(".")


def message_parameters(
    options: UploaderOptions, file_name: str, file_size: int | None
) -> dict[str, Any]:
    """Build the placeholder values used by message templates."""
    min_size = options.min_size_bytes
    max_size = options.max_size_bytes
    return {
        "fileName": file_name,
        "fileSize": format_bytes(file_size) if file_size is not None else None,
        "fileExtension": get_file_extension(file_name),
        "allowedExtensions": ",".join(options.accepted_extensions or []),
        "allowedMinSize": format_bytes(min_size) if min_size is not None else None,
        "allowedMaxSize": format_bytes(max_size) if max_size is not None else None,
        "maxFiles": options.max_files,
    }


def resolve_message(
    options: UploaderOptions, template: str, file_name: str, file_size: int | None
) -> str:
    """Fill a message template for the given file."""
    return render_message(template, message_parameters(options, file_name, file_size))


class FileValidator:
    """Checks a file's extension and size, accumulating every violation."""

    def __init__(self, options: UploaderOptions) -> None:
        self.options = options

    def validate(self, file_name: str, file_size: int | None) -> ValidationResult:
        """Validate a file before it becomes a job.

        Args:
            file_name: Display name of the file
            file_size: Size in bytes, or None when it cannot be known

        Returns:
            ValidationResult listing all violations (empty when valid)
        """
        options = self.options
        violations: list[Violation] = []

        def reject(code: ValidationCode, template_key: str) -> None:
            message = resolve_message(
                options, options.messages[template_key], file_name, file_size
            )
            violations.append(Violation(code=code, message=message))

        if options.accepted_extensions:
            allowed = {_normalize_extension(ext) for ext in options.accepted_extensions}
            extension = get_file_extension(file_name)
            if not extension or _normalize_extension(extension) not in allowed:
                reject(ValidationCode.INVALID_TYPE, "invalid_type")

        if file_size is not None:
            min_size = options.min_size_bytes
            max_size = options.max_size_bytes
            if min_size is not None and file_size < min_size:
                reject(ValidationCode.SIZE_TOO_SMALL, "size_too_small")
            if max_size is not None and file_size > max_size:
                reject(ValidationCode.SIZE_TOO_LARGE, "size_too_large")

        return ValidationResult(violations=violations)
