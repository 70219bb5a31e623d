"""Transport strategies that move a job's bytes to the server.

Every transport runs its I/O on a thread pool. ``begin`` returns a handle
immediately and never calls back synchronously; callbacks are delivered from
worker threads. ``cancel`` is advisory and never waits for the worker.
"""

import io
import json
import logging
import mimetypes
import os
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING, Any, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.fields import RequestField
from urllib3.filepost import choose_boundary
from urllib3.util.retry import Retry

from uploader.config import UploaderOptions
from uploader.exceptions import ConfigurationError, TransferCancelled, UploaderError
from uploader.services import s3_service

if TYPE_CHECKING:
    from mypy_boto3_s3 import S3Client

    from uploader.services.upload_queue import UploadJob

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int, int | None], None]
CompleteCallback = Callable[[Any], None]
FailCallback = Callable[[str], None]
AbortCallback = Callable[[], None]


class Transport(Protocol):
    """Strategy that performs one upload and reports back through callbacks."""

    supports_progress: bool

    def begin(
        self,
        job: "UploadJob",
        on_progress: ProgressCallback,
        on_complete: CompleteCallback,
        on_fail: FailCallback,
        on_abort: AbortCallback,
    ) -> Any: ...

    def cancel(self, handle: Any) -> None: ...

    def release(self, handle: Any) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class TransportResponse:
    """The server's reply to an HTTP upload."""

    status_code: int
    text: str
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self) -> Any:
        return json.loads(self.text)

    @classmethod
    def from_requests(cls, response: requests.Response) -> "TransportResponse":
        return cls(
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
        )


@dataclass
class TransferHandle:
    """State of one in-flight transfer, shared with its worker thread.

    Once detached, the worker's outcome is discarded.
    """

    job_id: str
    on_progress: ProgressCallback = field(repr=False)
    on_complete: CompleteCallback = field(repr=False)
    on_fail: FailCallback = field(repr=False)
    on_abort: AbortCallback = field(repr=False)
    cancelled: threading.Event = field(default_factory=threading.Event, repr=False)
    future: Future[None] | None = field(default=None, repr=False)
    _detached: bool = field(default=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def detached(self) -> bool:
        return self._detached

    def detach(self) -> None:
        with self._lock:
            self._detached = True

    def _deliver(self, callback: Callable[..., None], *args: Any) -> None:
        with self._lock:
            if self._detached:
                return
        callback(*args)

    def progress(self, bytes_sent: int, bytes_total: int | None) -> None:
        self._deliver(self.on_progress, bytes_sent, bytes_total)

    def complete(self, response: Any) -> None:
        self._deliver(self.on_complete, response)

    def fail(self, reason: str) -> None:
        self._deliver(self.on_fail, reason)

    def abort(self) -> None:
        self._deliver(self.on_abort)


def _log_worker_error(future: Future[None]) -> None:
    error = future.exception() if not future.cancelled() else None
    if error is not None:
        logger.exception("Upload worker raised an unhandled error", exc_info=error)


def create_session() -> requests.Session:
    """Create an HTTP session that retries failed connection attempts only."""
    session = requests.Session()
    retries = Retry(total=2, connect=2, read=0, status=0, backoff_factor=0.5)
    session.mount("http://", HTTPAdapter(max_retries=retries))
    session.mount("https://", HTTPAdapter(max_retries=retries))
    return session


class ThreadedTransport:
    """Base class running each transfer on a worker thread."""

    supports_progress = True

    def __init__(self, options: UploaderOptions) -> None:
        self.options = options
        default_workers = min(32, (os.cpu_count() or 1) + 4)
        self._executor = ThreadPoolExecutor(
            max_workers=max(options.concurrency_limit, default_workers),
            thread_name_prefix=f"{type(self).__name__}-worker",
        )

    def begin(
        self,
        job: "UploadJob",
        on_progress: ProgressCallback,
        on_complete: CompleteCallback,
        on_fail: FailCallback,
        on_abort: AbortCallback,
    ) -> TransferHandle:
        handle = TransferHandle(
            job_id=job.job_id,
            on_progress=on_progress,
            on_complete=on_complete,
            on_fail=on_fail,
            on_abort=on_abort,
        )
        handle.future = self._executor.submit(self._run, job, handle)
        handle.future.add_done_callback(_log_worker_error)
        return handle

    def cancel(self, handle: TransferHandle) -> None:
        handle.cancelled.set()

    def release(self, handle: TransferHandle) -> None:
        handle.detach()

    def close(self) -> None:
        """Stop accepting transfers; running workers finish in the background."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _run(self, job: "UploadJob", handle: TransferHandle) -> None:
        if handle.cancelled.is_set():
            handle.abort()
            return
        try:
            response = self._transfer(job, handle)
        except Exception as e:
            if handle.cancelled.is_set():
                logger.debug("Transfer of %s cancelled", job.job_id)
                handle.abort()
            else:
                logger.warning("Transfer of %s failed: %s", job.job_id, e)
                handle.fail(str(e))
            return
        handle.complete(response)

    def _transfer(self, job: "UploadJob", handle: TransferHandle) -> Any:
        raise NotImplementedError


class _MultipartBody:
    """Iterable multipart/form-data body that streams the file in chunks.

    Defines ``__len__`` so requests sends a Content-Length header instead of
    chunked encoding.
    """

    def __init__(
        self,
        head: bytes,
        stream: IO[bytes],
        file_size: int,
        tail: bytes,
        handle: TransferHandle,
    ) -> None:
        self._head = head
        self._stream = stream
        self._file_size = file_size
        self._tail = tail
        self._handle = handle

    def __len__(self) -> int:
        return len(self._head) + self._file_size + len(self._tail)

    def __iter__(self) -> Iterator[bytes]:
        yield self._head
        sent = 0
        while True:
            if self._handle.cancelled.is_set():
                raise TransferCancelled(self._handle.job_id)
            chunk = self._stream.read(CHUNK_SIZE)
            if not chunk:
                break
            sent += len(chunk)
            yield chunk
            self._handle.progress(sent, self._file_size)
        yield self._tail


def encode_multipart_envelope(
    fields: dict[str, str], field_name: str, file_name: str, boundary: str
) -> tuple[bytes, bytes]:
    """Encode everything around the file content of a multipart body.

    Returns:
        Tuple of (bytes preceding the file content, bytes following it)
    """
    head = io.BytesIO()
    for name, value in fields.items():
        part = RequestField(name=name, data=value)
        part.make_multipart()
        head.write(f"--{boundary}\r\n".encode("latin-1"))
        head.write(part.render_headers().encode("latin-1"))
        head.write(str(value).encode("utf-8"))
        head.write(b"\r\n")

    content_type = mimetypes.guess_type(file_name)[0] or "application/octet-stream"
    file_part = RequestField(name=field_name, data=b"", filename=file_name)
    file_part.make_multipart(content_type=content_type)
    head.write(f"--{boundary}\r\n".encode("latin-1"))
    head.write(file_part.render_headers().encode("utf-8"))

    tail = f"\r\n--{boundary}--\r\n".encode("latin-1")
    return head.getvalue(), tail


class StreamingTransport(ThreadedTransport):
    """Streams a multipart/form-data request and reports per-chunk progress."""

    supports_progress = True

    def __init__(self, options: UploaderOptions, session: requests.Session | None = None) -> None:
        super().__init__(options)
        self._session = session or create_session()

    def _headers(self, boundary: str) -> dict[str, str]:
        return {
            "X-Requested-With": "XMLHttpRequest",
            **self.options.extra_headers,
            "Content-Type": f"multipart/form-data; boundary={boundary}",
        }

    def _transfer(self, job: "UploadJob", handle: TransferHandle) -> TransportResponse:
        options = self.options
        boundary = choose_boundary()
        head, tail = encode_multipart_envelope(
            job.form_fields, options.field_name, job.name, boundary
        )

        stream = job.source.open()
        try:
            file_size = job.size_bytes if job.size_bytes is not None else job.source.size
            if file_size is None:
                content = stream.read()
                stream.close()
                stream = io.BytesIO(content)
                file_size = len(content)

            body = _MultipartBody(head, stream, file_size, tail, handle)
            response = self._session.request(
                options.method,
                options.url,
                data=body,
                headers=self._headers(boundary),
                timeout=options.request_timeout,
            )
        finally:
            stream.close()

        return TransportResponse.from_requests(response)


class FormTransport(ThreadedTransport):
    """Plain form post without progress reporting.

    Cancelling reports the abort straight away; whatever the request
    eventually returns is discarded.
    """

    supports_progress = False

    def __init__(self, options: UploaderOptions, session: requests.Session | None = None) -> None:
        super().__init__(options)
        self._session = session or create_session()

    def cancel(self, handle: TransferHandle) -> None:
        handle.cancelled.set()
        handle.abort()
        handle.detach()

    def _transfer(self, job: "UploadJob", handle: TransferHandle) -> TransportResponse:
        options = self.options
        headers = {"X-Requested-With": "XMLHttpRequest", **options.extra_headers}
        with job.source.open() as stream:
            response = self._session.request(
                options.method,
                options.url,
                data=job.form_fields,
                files={options.field_name: (job.name, stream)},
                headers=headers,
                timeout=options.request_timeout,
            )
        return TransportResponse.from_requests(response)


class S3Transport(ThreadedTransport):
    """Uploads each job to ``s3://bucket/prefix/name`` with boto3."""

    supports_progress = True

    def __init__(self, options: UploaderOptions, client: "S3Client | None" = None) -> None:
        super().__init__(options)
        self._client = client
        self._client_lock = threading.Lock()

    def _get_client(self) -> "S3Client":
        with self._client_lock:
            if self._client is None:
                self._client = s3_service.create_s3_client(
                    self.options.aws_profile, self.options.aws_region
                )
            return self._client

    def _transfer(self, job: "UploadJob", handle: TransferHandle) -> dict[str, Any]:
        options = self.options
        key = s3_service.build_object_key(options.s3_prefix, job.name)

        def on_bytes(uploaded: int, total: int | None) -> None:
            if handle.cancelled.is_set():
                raise TransferCancelled(job.job_id)
            handle.progress(uploaded, total)

        with job.source.open() as stream:
            result = s3_service.upload_fileobj_with_progress(
                self._get_client(),
                stream,
                options.s3_bucket,
                key,
                size=job.size_bytes,
                callback=on_bytes,
            )

        if not result["success"]:
            raise UploaderError(result["error"])
        return result


def create_transport(options: UploaderOptions) -> ThreadedTransport:
    """Create the transport named by ``options.transport``."""
    if options.transport == "streaming":
        return StreamingTransport(options)
    if options.transport == "form":
        return FormTransport(options)
    if options.transport == "s3":
        return S3Transport(options)
    raise ConfigurationError(f"Unknown transport '{options.transport}'")
