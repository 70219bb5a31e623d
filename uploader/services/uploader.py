"""Uploader facade composing the queue, transport and event bus."""

import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from uploader.config import UploaderOptions, get_uploader_options
from uploader.services.events import EventBus, UploadEvent
from uploader.services.log_service import LogService
from uploader.services.transports import Transport, create_transport
from uploader.services.upload_queue import FileSource, JobStatus, UploadJob, UploadQueue

logger = logging.getLogger(__name__)

SourceLike = str | Path | FileSource


class Uploader:
    """Public entry point for adding, starting, aborting and observing uploads.

    Args:
        options: Uploader options (defaults to the current settings)
        transport: Transport to use (defaults to the one named in the options)
        clock: Millisecond clock used for progress timing
        log: JSONL log service for the audit trail
    """

    def __init__(
        self,
        options: UploaderOptions | None = None,
        transport: Transport | None = None,
        clock: Callable[[], float] | None = None,
        log: LogService | None = None,
    ) -> None:
        self.options = options or get_uploader_options()
        self.transport = transport if transport is not None else create_transport(self.options)
        self.bus = EventBus()
        self.queue = UploadQueue(self.options, self.transport, self.bus, clock=clock, log=log)

    def on(self, event: UploadEvent | str, handler: Callable[..., Any]) -> "Uploader":
        """Subscribe a handler to an event; returns self for chaining."""
        self.bus.on(event, handler)
        return self

    def off(self, event: UploadEvent | str | None = None) -> "Uploader":
        """Remove the handlers of one event, or of every event."""
        self.bus.off(event)
        return self

    def add(
        self, sources: SourceLike | Iterable[SourceLike], auto_start: bool | None = None
    ) -> list[UploadJob]:
        """Submit one or more files.

        Paths are turned into file sources; rejected files are reported
        through FILE_INVALID / TOO_MANY_FILES notifications.

        Args:
            sources: Paths or file sources to upload
            auto_start: Override ``options.auto_start`` for these files

        Returns:
            The jobs that were accepted
        """
        if isinstance(sources, (str, Path, FileSource)):
            sources = [sources]

        jobs: list[UploadJob] = []
        for source in sources:
            if not isinstance(source, FileSource):
                source = FileSource.from_path(source)
            job = self.queue.submit(source, auto_start=auto_start)
            if job is not None:
                jobs.append(job)
        return jobs

    def upload(self, job_id: str | None = None) -> None:
        """Start one job, or every added job when no id is given."""
        if job_id is None:
            self.queue.start_all()
        else:
            self.queue.start(job_id)

    def upload_all(self) -> None:
        self.queue.start_all()

    def abort(self, job_id: str | None = None) -> None:
        """Abort one upload, or every upload when no id is given."""
        if job_id is None:
            self.queue.abort_all()
        else:
            self.queue.abort(job_id)

    def abort_all(self) -> None:
        self.queue.abort_all()

    def remove(self, job_id: str) -> None:
        self.queue.remove(job_id)

    def destroy(self) -> None:
        """Tear down the uploader; in-flight uploads are cancelled silently."""
        self.queue.destroy()
        self.transport.close()

    @property
    def destroyed(self) -> bool:
        return self.queue.destroyed

    @property
    def jobs(self) -> list[UploadJob]:
        return self.queue.snapshot()

    def get_job(self, job_id: str) -> UploadJob | None:
        return self.queue.get_job(job_id)

    def count(self, status: JobStatus | str | None = None) -> int:
        """Number of jobs, optionally only those with a given status."""
        if status is not None:
            status = JobStatus(status)
        return self.queue.count(status)

    def is_busy(self, job_id: str | None = None) -> bool:
        return self.queue.is_busy(job_id)

    def get_bytes(self, job_id: str | None = None) -> int | None:
        """Total size in bytes of one job or of all jobs."""
        return self.queue.total_bytes(job_id)

    def get_uploaded_bytes(self, job_id: str | None = None) -> int | None:
        """Bytes transferred so far for one job or for all jobs."""
        return self.queue.total_transferred(job_id)

    def get_upload_speed(self, job_id: str | None = None, average: bool = True) -> int | None:
        """Upload speed in bytes/sec for one job or summed over all jobs."""
        return self.queue.speed(job_id, average)

    def get_time_left(self, job_id: str | None = None, average: bool = True) -> int | None:
        """Estimated seconds remaining for one job or for the slowest of all jobs."""
        return self.queue.time_remaining(job_id, average)

    def stats(self) -> dict[str, Any]:
        return self.queue.stats()


# Global uploader instance
_uploader: Uploader | None = None
_uploader_lock = threading.Lock()


def get_uploader() -> Uploader:
    """Get the global uploader instance, built from the current settings."""
    global _uploader
    with _uploader_lock:
        if _uploader is None:
            _uploader = Uploader()
            logger.info(
                "Created uploader (transport=%s, concurrency=%d)",
                _uploader.options.transport,
                _uploader.options.concurrency_limit,
            )
        return _uploader


def reset_uploader() -> None:
    """Destroy the global uploader so the next access rebuilds it from settings."""
    global _uploader
    with _uploader_lock:
        if _uploader is not None:
            _uploader.destroy()
        _uploader = None
