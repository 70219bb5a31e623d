"""Upload queue: per-file state machine and bounded-concurrency scheduling."""

import io
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

from uploader.config import UploaderOptions
from uploader.exceptions import JobNotFoundError, UploaderError
from uploader.services.events import EventBus, UploadEvent
from uploader.services.log_service import LogService, get_log_service
from uploader.services.progress import JobProgress, time_remaining, transfer_speed
from uploader.services.utils import format_bytes, get_file_name
from uploader.services.validator import FileValidator, resolve_message

if TYPE_CHECKING:
    from uploader.services.transports import Transport

logger = logging.getLogger(__name__)

ABORTED_MESSAGE = "aborted"


def _now_ms() -> float:
    return time.time() * 1000


class JobStatus(Enum):
    """Lifecycle state of an upload job."""

    ADDED = "added"
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class FileSource:
    """A file handed to the uploader: a path on disk or an in-memory payload."""

    name: str
    size: int | None = None
    path: Path | None = None
    content: bytes | None = field(default=None, repr=False)

    @classmethod
    def from_path(cls, path: str | Path) -> "FileSource":
        """Create a source for a file on disk.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        file_path = Path(path)
        return cls(
            name=get_file_name(str(path)),
            size=file_path.stat().st_size,
            path=file_path,
        )

    @classmethod
    def from_bytes(cls, name: str, content: bytes) -> "FileSource":
        return cls(name=name, size=len(content), content=content)

    def open(self) -> IO[bytes]:
        """Open the source for reading."""
        if self.content is not None:
            return io.BytesIO(self.content)
        if self.path is None:
            raise UploaderError(f"File source '{self.name}' has no data to read")
        return open(self.path, "rb")


@dataclass
class UploadJob:
    """One accepted file and the state of its upload."""

    job_id: str
    name: str
    source: FileSource
    size_bytes: int | None
    status: JobStatus = JobStatus.ADDED
    progress: JobProgress | None = None
    transport_handle: Any = field(default=None, repr=False)
    form_fields: dict[str, str] = field(default_factory=dict)
    error_message: str = ""
    added_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    # True while the job still occupies a place in the accepted count
    counted: bool = field(default=True, repr=False)

    @property
    def bytes_transferred(self) -> int:
        """Bytes sent so far (the full size once completed, 0 when not started)."""
        if self.status is JobStatus.COMPLETED and self.size_bytes is not None:
            return self.size_bytes
        if self.status is JobStatus.UPLOADING and self.progress is not None:
            return self.progress.current.bytes
        return 0

    @property
    def progress_percent(self) -> float | None:
        if self.size_bytes is None:
            return None
        if self.size_bytes == 0:
            return 100.0 if self.status is JobStatus.COMPLETED else 0.0
        return round(self.bytes_transferred / self.size_bytes * 100, 1)

    def speed(self, average: bool = True) -> int | None:
        """Upload speed in bytes/sec (None when the size is unknown)."""
        progress = self.progress if self.status is JobStatus.UPLOADING else None
        return transfer_speed(progress, self.size_bytes, average)

    def time_remaining(self, average: bool = True) -> int | None:
        """Seconds until this upload finishes (None when it cannot be estimated)."""
        if self.size_bytes is None:
            return None
        if self.status is not JobStatus.UPLOADING:
            return 0
        return time_remaining(self.size_bytes, self.bytes_transferred, self.speed(average))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "job_id": self.job_id,
            "name": self.name,
            "size_bytes": self.size_bytes,
            "size_formatted": (
                format_bytes(self.size_bytes) if self.size_bytes is not None else None
            ),
            "status": self.status.value,
            "bytes_transferred": self.bytes_transferred,
            "progress_percent": self.progress_percent,
            "speed_bytes_per_second": self.speed(),
            "time_remaining_seconds": self.time_remaining(),
            "error_message": self.error_message,
            "added_at": self.added_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class UploadQueue:
    """Admission control and lifecycle management for upload jobs.

    At most ``options.concurrency_limit`` jobs upload at once; further jobs
    wait in a FIFO pending list and are promoted as uploads finish. All state
    changes, including transport callbacks arriving on worker threads, are
    serialised by one re-entrant lock, so event handlers may call back into
    the queue.
    """

    def __init__(
        self,
        options: UploaderOptions,
        transport: "Transport",
        bus: EventBus | None = None,
        clock: Callable[[], float] | None = None,
        log: LogService | None = None,
    ) -> None:
        self.options = options
        self.transport = transport
        self.bus = bus if bus is not None else EventBus()
        self.validator = FileValidator(options)
        self._clock = clock or _now_ms
        self._log = log if log is not None else get_log_service()
        self._jobs: dict[str, UploadJob] = {}
        self._pending: list[str] = []
        self._accepted_count = 0
        self._id_counter = 0
        self._destroyed = False
        self._lock = threading.RLock()

    # -- state access ---------------------------------------------------

    @property
    def accepted_count(self) -> int:
        return self._accepted_count

    @property
    def pending_ids(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    def get_job(self, job_id: str) -> UploadJob | None:
        """Get a job by ID."""
        return self._jobs.get(job_id)

    def snapshot(self) -> list[UploadJob]:
        """All jobs in the order they were added."""
        with self._lock:
            return list(self._jobs.values())

    def _get(self, job_id: str) -> UploadJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _next_id(self) -> str:
        self._id_counter += 1
        return f"{self.options.id_prefix}file_{self._id_counter}"

    def _ensure_active(self) -> None:
        if self._destroyed:
            raise UploaderError("The uploader has been destroyed")

    # -- public operations ----------------------------------------------

    def submit(self, source: FileSource, auto_start: bool | None = None) -> UploadJob | None:
        """Admit, validate and register a file.

        Args:
            source: File to upload
            auto_start: Start the job right away (defaults to ``options.auto_start``)

        Returns:
            The new job, or None if the file was rejected (a TOO_MANY_FILES or
            FILE_INVALID notification is published instead)
        """
        with self._lock:
            self._ensure_active()
            options = self.options
            name = source.name
            size = source.size if self.transport.supports_progress else None

            if options.max_files is not None and self._accepted_count >= options.max_files:
                message = resolve_message(options, options.messages["too_many_files"], name, size)
                self._log.warning(
                    "upload",
                    "upload_too_many_files",
                    message,
                    {"filename": name, "max_files": options.max_files},
                )
                self.bus.publish(UploadEvent.TOO_MANY_FILES, name, message)
                return None

            result = self.validator.validate(name, size)
            if not result.ok:
                self._log.warning(
                    "upload",
                    "upload_job_invalid",
                    f"Rejected {name}",
                    {"filename": name, "violations": [v.to_dict() for v in result.violations]},
                )
                self.bus.publish(UploadEvent.FILE_INVALID, name, result.violations)
                return None

            job = UploadJob(job_id=self._next_id(), name=name, source=source, size_bytes=size)
            self._jobs[job.job_id] = job
            self._accepted_count += 1

            self._log.info(
                "upload",
                "upload_job_added",
                f"Added {name}",
                {"job_id": job.job_id, "filename": name, "file_size": size},
            )
            self.bus.publish(UploadEvent.FILE_ADDED, job.job_id, name)

            if auto_start is None:
                auto_start = options.auto_start
            if auto_start and self._jobs.get(job.job_id) is job:
                self.start(job.job_id)
            return job

    def start(self, job_id: str) -> None:
        """Start a job now if a slot is free, otherwise queue it.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self._lock:
            job = self._get(job_id)
            if job.status is JobStatus.UPLOADING:
                return
            if job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                logger.warning("Not starting job %s: already %s", job_id, job.status.value)
                return

            if self.count(JobStatus.UPLOADING) < self.options.concurrency_limit:
                self._begin(job)
            elif job.status is not JobStatus.PENDING:
                self._pending.append(job_id)
                job.status = JobStatus.PENDING
                logger.debug("Job %s pending (%d waiting)", job_id, len(self._pending))

    def start_all(self) -> None:
        """Start every job that has been added but not started yet."""
        with self._lock:
            for job in list(self._jobs.values()):
                if job.status is JobStatus.ADDED and self._jobs.get(job.job_id) is job:
                    self.start(job.job_id)

    def abort(self, job_id: str) -> None:
        """Ask the transport to cancel an upload; a no-op unless it is uploading."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.UPLOADING:
                return
            if job.transport_handle is None:
                # Aborted from a before-upload handler, nothing was sent yet
                self._handle_abort(job_id)
                return
            self.transport.cancel(job.transport_handle)

    def abort_all(self) -> None:
        """Abort every upload in progress."""
        with self._lock:
            for job in list(self._jobs.values()):
                if job.status is JobStatus.UPLOADING:
                    self.abort(job.job_id)

    def remove(self, job_id: str) -> None:
        """Remove a job from the queue whatever its state.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        with self._lock:
            job = self._get(job_id)
            was_uploading = job.status is JobStatus.UPLOADING
            del self._jobs[job_id]
            if job.status is JobStatus.PENDING:
                self._pending.remove(job_id)
            self._release_count(job)

            if was_uploading:
                logger.warning("Removed job %s while its upload was in flight", job_id)
                handle = job.transport_handle
                if handle is not None:
                    self.transport.cancel(handle)
                self._release_transport(job)

            self._log.info(
                "upload",
                "upload_job_removed",
                f"Removed {job.name}",
                {"job_id": job_id, "filename": job.name, "status": job.status.value},
            )
            self.bus.publish(UploadEvent.JOB_REMOVED, job_id, job.name)

            if was_uploading:
                self._promote_next()

    def destroy(self) -> None:
        """Drop all handlers, cancel in-flight uploads silently and clear the queue."""
        with self._lock:
            if self._destroyed:
                return
            self._destroyed = True
            self.bus.off()

            in_flight = [
                job
                for job in self._jobs.values()
                if job.status is JobStatus.UPLOADING and job.transport_handle is not None
            ]
            # Clear first so callbacks triggered by cancel find nothing to act on
            self._jobs.clear()
            self._pending.clear()
            self._accepted_count = 0

            for job in in_flight:
                self.transport.cancel(job.transport_handle)
                self._release_transport(job)

            self._log.info(
                "upload",
                "uploader_destroyed",
                f"Uploader destroyed ({len(in_flight)} uploads cancelled)",
                {"cancelled": len(in_flight)},
            )

    # -- aggregate queries ----------------------------------------------

    def count(self, status: JobStatus | None = None) -> int:
        """Number of jobs with the given status (all jobs if None)."""
        with self._lock:
            if status is None:
                return len(self._jobs)
            return sum(1 for job in self._jobs.values() if job.status is status)

    def is_busy(self, job_id: str | None = None) -> bool:
        """Whether a given job, or any job if none is given, is uploading."""
        with self._lock:
            if job_id is not None:
                return self._get(job_id).status is JobStatus.UPLOADING
            return any(job.status is JobStatus.UPLOADING for job in self._jobs.values())

    def total_bytes(self, job_id: str | None = None) -> int | None:
        with self._lock:
            if not self.transport.supports_progress:
                return None
            if job_id is not None:
                return self._get(job_id).size_bytes
            return sum(job.size_bytes or 0 for job in self._jobs.values())

    def total_transferred(self, job_id: str | None = None) -> int | None:
        with self._lock:
            if not self.transport.supports_progress:
                return None
            if job_id is not None:
                return self._get(job_id).bytes_transferred
            return sum(job.bytes_transferred for job in self._jobs.values())

    def speed(self, job_id: str | None = None, average: bool = True) -> int | None:
        """Upload speed in bytes/sec of one job, or summed over all jobs."""
        with self._lock:
            if not self.transport.supports_progress:
                return None
            if job_id is not None:
                return self._get(job_id).speed(average)
            return sum(job.speed(average) or 0 for job in self._jobs.values())

    def time_remaining(self, job_id: str | None = None, average: bool = True) -> int | None:
        """Seconds left for one job, or the longest wait across all jobs."""
        with self._lock:
            if not self.transport.supports_progress:
                return None
            if job_id is not None:
                return self._get(job_id).time_remaining(average)
            estimates = [job.time_remaining(average) for job in self._jobs.values()]
            if any(estimate is None for estimate in estimates):
                return None
            return max((e for e in estimates if e is not None), default=0)

    def stats(self) -> dict[str, Any]:
        """Aggregate counters and transfer figures for the whole queue."""
        with self._lock:
            total = self.total_bytes()
            transferred = self.total_transferred()
            return {
                "total_jobs": self.count(),
                "accepted": self._accepted_count,
                "added": self.count(JobStatus.ADDED),
                "pending": self.count(JobStatus.PENDING),
                "uploading": self.count(JobStatus.UPLOADING),
                "completed": self.count(JobStatus.COMPLETED),
                "failed": self.count(JobStatus.FAILED),
                "busy": self.is_busy(),
                "pending_ids": list(self._pending),
                "total_bytes": total,
                "total_bytes_formatted": format_bytes(total) if total is not None else None,
                "transferred_bytes": transferred,
                "transferred_bytes_formatted": (
                    format_bytes(transferred) if transferred is not None else None
                ),
                "speed_bytes_per_second": self.speed(average=False),
                "average_speed_bytes_per_second": self.speed(),
                "time_remaining_seconds": self.time_remaining(),
            }

    # -- scheduling internals -------------------------------------------

    def _begin(self, job: UploadJob) -> None:
        prior_status = job.status
        if prior_status is JobStatus.PENDING:
            self._pending.remove(job.job_id)
        job.status = JobStatus.UPLOADING
        job.progress = JobProgress.begin(self._clock())
        job.started_at = datetime.now(UTC)
        job.form_fields = dict(self.options.extra_form_fields)

        try:
            self.bus.publish(UploadEvent.BEFORE_UPLOAD, job.job_id, job.name, job.form_fields)
        except Exception:
            # A job without a transfer must not keep its upload slot
            if self._jobs.get(job.job_id) is job and job.status is JobStatus.UPLOADING:
                self._restore(job, prior_status)
            raise
        if self._jobs.get(job.job_id) is not job or job.status is not JobStatus.UPLOADING:
            return

        job_id = job.job_id
        job.transport_handle = self.transport.begin(
            job,
            on_progress=lambda sent, total: self._handle_progress(job_id, sent, total),
            on_complete=lambda response: self._handle_complete(job_id, response),
            on_fail=lambda reason: self._handle_fail(job_id, reason),
            on_abort=lambda: self._handle_abort(job_id),
        )

        self._log.info(
            "upload",
            "upload_started",
            f"Uploading {job.name}",
            {"job_id": job_id, "filename": job.name, "file_size": job.size_bytes},
        )
        self.bus.publish(UploadEvent.UPLOAD_STARTED, job_id, job.name)

    def _restore(self, job: UploadJob, status: JobStatus) -> None:
        job.status = status
        job.progress = None
        job.started_at = None
        job.form_fields = {}
        if status is JobStatus.PENDING:
            self._pending.insert(0, job.job_id)
        logger.warning(
            "Job %s returned to %s: before_upload handler raised", job.job_id, status.value
        )

    def _promote_next(self) -> None:
        if self._pending:
            self.start(self._pending[0])

    def _release_count(self, job: UploadJob) -> None:
        if job.counted:
            job.counted = False
            self._accepted_count = max(0, self._accepted_count - 1)

    def _release_transport(self, job: UploadJob) -> None:
        handle = job.transport_handle
        if handle is not None:
            job.transport_handle = None
            self.transport.release(handle)

    def _uploading_job(self, job_id: str) -> UploadJob | None:
        job = self._jobs.get(job_id)
        if job is None or job.status is not JobStatus.UPLOADING:
            return None
        return job

    # -- transport callbacks ---------------------------------------------

    def _handle_progress(self, job_id: str, bytes_sent: int, bytes_total: int | None) -> None:
        with self._lock:
            job = self._uploading_job(job_id)
            if job is None or job.progress is None:
                return
            job.progress.record(self._clock(), bytes_sent, bytes_total)
            self.bus.publish(UploadEvent.UPLOAD_PROGRESS, job_id, job.name, bytes_sent, bytes_total)

    def _handle_complete(self, job_id: str, response: Any) -> None:
        with self._lock:
            job = self._uploading_job(job_id)
            if job is None:
                logger.debug("Ignoring completion of inactive job %s", job_id)
                return

            outcome = self.bus.publish(UploadEvent.UPLOAD_COMPLETED, job_id, job.name, response)
            if self._uploading_job(job_id) is not job:
                return
            if outcome.failed:
                message = resolve_message(self.options, outcome.message, job.name, job.size_bytes)
                self._fail(job, message, reason=f"response rejected: {message}")
                return

            job.status = JobStatus.COMPLETED
            job.completed_at = datetime.now(UTC)
            if job.progress is not None and job.progress.end_time is None:
                job.progress.end_time = self._clock()
            self._release_transport(job)

            self._log.info(
                "upload",
                "upload_completed",
                f"Uploaded {job.name}",
                {"job_id": job_id, "filename": job.name, "file_size": job.size_bytes},
            )
            self._promote_next()

    def _handle_fail(self, job_id: str, reason: str) -> None:
        with self._lock:
            job = self._uploading_job(job_id)
            if job is None:
                logger.debug("Ignoring failure of inactive job %s: %s", job_id, reason)
                return
            message = resolve_message(
                self.options, self.options.messages["network_error"], job.name, job.size_bytes
            )
            self._fail(job, message, reason)

    def _fail(self, job: UploadJob, message: str, reason: str) -> None:
        job.status = JobStatus.FAILED
        job.error_message = message
        job.completed_at = datetime.now(UTC)

        self._log.error(
            "upload",
            "upload_failed",
            f"Failed to upload {job.name}: {reason}",
            {"job_id": job.job_id, "filename": job.name, "error": reason},
        )
        self.bus.publish(UploadEvent.UPLOAD_FAILED, job.job_id, job.name, message)
        self._release_count(job)
        self._release_transport(job)

        if self.options.remove_on_fail and self._jobs.get(job.job_id) is job:
            self.remove(job.job_id)
        self._promote_next()

    def _handle_abort(self, job_id: str) -> None:
        with self._lock:
            job = self._uploading_job(job_id)
            if job is None:
                logger.debug("Ignoring abort of inactive job %s", job_id)
                return
            job.status = JobStatus.FAILED
            job.error_message = ABORTED_MESSAGE
            job.completed_at = datetime.now(UTC)

            self._log.warning(
                "upload",
                "upload_aborted",
                f"Aborted {job.name}",
                {"job_id": job_id, "filename": job.name},
            )
            self.bus.publish(UploadEvent.UPLOAD_ABORTED, job_id, job.name)
            self._release_count(job)
            self._release_transport(job)

            if self._jobs.get(job_id) is job:
                self.remove(job_id)
            self._promote_next()
