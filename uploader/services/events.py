"""Synchronous event bus for upload notifications."""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any


class UploadEvent(Enum):
    """Notifications published by the upload queue."""

    FILE_ADDED = "file_added"
    FILE_INVALID = "file_invalid"
    TOO_MANY_FILES = "too_many_files"
    BEFORE_UPLOAD = "before_upload"
    UPLOAD_STARTED = "upload_started"
    UPLOAD_PROGRESS = "upload_progress"
    UPLOAD_COMPLETED = "upload_completed"
    UPLOAD_FAILED = "upload_failed"
    UPLOAD_ABORTED = "upload_aborted"
    JOB_REMOVED = "job_removed"


@dataclass(frozen=True)
class HandlerOutcome:
    """Result a handler may return to classify the published data.

    A failure outcome marks a nominally successful operation as failed
    (e.g. the server answered, but with an error payload).
    """

    failed: bool = False
    message: str = ""

    @classmethod
    def normal(cls) -> "HandlerOutcome":
        return cls()

    @classmethod
    def failure(cls, message: str) -> "HandlerOutcome":
        return cls(failed=True, message=message)


Handler = Callable[..., HandlerOutcome | None]


class EventBus:
    """Multi-subscriber dispatch with business-failure aggregation.

    Every handler registered for an event runs in registration order. A
    handler returning ``HandlerOutcome.failure`` does not stop the loop; the
    last failure seen is returned from ``publish``. Exceptions raised by a
    handler are defects and propagate immediately.
    """

    def __init__(self) -> None:
        self._handlers: dict[UploadEvent, list[Handler]] = {}
        self._lock = threading.Lock()

    def on(self, event: UploadEvent | str, handler: Handler) -> "EventBus":
        """Register a handler for an event."""
        key = UploadEvent(event)
        with self._lock:
            self._handlers.setdefault(key, []).append(handler)
        return self

    def off(self, event: UploadEvent | str | None = None) -> "EventBus":
        """Remove the handlers of one event, or of all events if none is given."""
        with self._lock:
            if event is None:
                self._handlers = {}
            else:
                self._handlers.pop(UploadEvent(event), None)
        return self

    def handler_count(self, event: UploadEvent | str) -> int:
        with self._lock:
            return len(self._handlers.get(UploadEvent(event), []))

    def publish(self, event: UploadEvent | str, *args: Any) -> HandlerOutcome:
        """Invoke every handler of an event with the given arguments.

        Returns:
            The last failure outcome returned by a handler, or a normal outcome
        """
        key = UploadEvent(event)
        with self._lock:
            handlers = list(self._handlers.get(key, []))

        last_failure: HandlerOutcome | None = None
        for handler in handlers:
            outcome = handler(*args)
            if isinstance(outcome, HandlerOutcome) and outcome.failed:
                last_failure = outcome

        return last_failure or HandlerOutcome.normal()
