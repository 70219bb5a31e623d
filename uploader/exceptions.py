"""Exceptions raised by the uploader.

Expected upload conditions (invalid files, too many files, transport
failures, aborts) are reported as notifications, not exceptions. The classes
here cover caller errors and transport internals.
"""


class UploaderError(Exception):
    """Base exception for uploader errors."""


class ConfigurationError(UploaderError):
    """Raised when uploader options are inconsistent."""


class JobNotFoundError(UploaderError, KeyError):
    """Raised when an operation names a job id the queue does not hold."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")

    def __str__(self) -> str:
        return f"Job not found: {self.job_id}"


class TransferCancelled(UploaderError):
    """Raised inside a transport worker when its transfer was cancelled."""
