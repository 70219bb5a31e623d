"""Upload API routes for the multi-file uploader"""

import json
import shutil
import tempfile
import threading
import time
from collections import deque
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

from flask import Blueprint, Response, jsonify, request

from uploader.exceptions import JobNotFoundError, UploaderError
from uploader.services.events import HandlerOutcome, UploadEvent
from uploader.services.transports import TransportResponse
from uploader.services.uploader import Uploader, get_uploader
from uploader.services.validator import Violation

upload_bp = Blueprint("upload", __name__)

# Argument names of each notification, in publish order
EVENT_FIELDS: dict[UploadEvent, tuple[str, ...]] = {
    UploadEvent.FILE_ADDED: ("job_id", "name"),
    UploadEvent.FILE_INVALID: ("name", "violations"),
    UploadEvent.TOO_MANY_FILES: ("name", "message"),
    UploadEvent.BEFORE_UPLOAD: ("job_id", "name", "form_fields"),
    UploadEvent.UPLOAD_STARTED: ("job_id", "name"),
    UploadEvent.UPLOAD_PROGRESS: ("job_id", "name", "bytes_sent", "bytes_total"),
    UploadEvent.UPLOAD_COMPLETED: ("job_id", "name", "response"),
    UploadEvent.UPLOAD_FAILED: ("job_id", "name", "message"),
    UploadEvent.UPLOAD_ABORTED: ("job_id", "name"),
    UploadEvent.JOB_REMOVED: ("job_id", "name"),
}

# Store for SSE clients
_sse_queues: list[deque[dict[str, Any]]] = []
_sse_lock = threading.Lock()

# Uploader the relay handlers are attached to, and files staged per job
_relay_uploader: Uploader | None = None
_staged_files: dict[str, Path] = {}
_relay_lock = threading.Lock()


def send_sse_event(data: dict[str, Any]) -> None:
    """Send an SSE event to all connected clients."""
    with _sse_lock:
        for q in _sse_queues:
            q.append(data)


def _to_json_value(value: Any) -> Any:
    if isinstance(value, list):
        return [_to_json_value(v) for v in value]
    if isinstance(value, Violation):
        return value.to_dict()
    if isinstance(value, TransportResponse):
        return {"status_code": value.status_code, "ok": value.ok}
    if isinstance(value, dict):
        return {k: _to_json_value(v) for k, v in value.items()}
    return value


def _make_relay(uploader: Uploader, event: UploadEvent) -> Callable[..., None]:
    """Create a handler forwarding one notification to SSE clients."""
    fields = EVENT_FIELDS[event]

    def relay(*args: Any) -> None:
        data: dict[str, Any] = {"type": event.value}
        data.update({name: _to_json_value(arg) for name, arg in zip(fields, args, strict=False)})
        job_id = data.get("job_id")
        if job_id:
            job = uploader.get_job(job_id)
            data["job"] = job.to_dict() if job else None
        send_sse_event(data)

    return relay


def reject_http_errors(job_id: str, name: str, response: Any) -> HandlerOutcome:
    """Treat an HTTP error status as a failed upload."""
    if isinstance(response, TransportResponse) and not response.ok:
        return HandlerOutcome.failure(
            f"The server rejected the file '{{{{fileName}}}}' (HTTP {response.status_code})."
        )
    return HandlerOutcome.normal()


def _remove_staged(path: Path) -> None:
    """Delete a staged file together with the temp directory holding it."""
    shutil.rmtree(path.parent, ignore_errors=True)


def _discard_staged_file(job_id: str, *_: Any) -> None:
    with _relay_lock:
        path = _staged_files.pop(job_id, None)
    if path is not None:
        _remove_staged(path)


def release_staged_files() -> None:
    """Delete every staged file still waiting on a job, e.g. after the uploader is rebuilt."""
    with _relay_lock:
        paths = list(_staged_files.values())
        _staged_files.clear()
    for path in paths:
        _remove_staged(path)


def _get_uploader() -> Uploader:
    """Get the global uploader with the SSE relay and staging cleanup attached."""
    global _relay_uploader
    uploader = get_uploader()
    with _relay_lock:
        if _relay_uploader is uploader:
            return uploader
        # Job ids restart with a new uploader; files staged for the old one are orphans
        orphans = list(_staged_files.values())
        _staged_files.clear()
        uploader.on(UploadEvent.UPLOAD_COMPLETED, reject_http_errors)
        for event in UploadEvent:
            uploader.on(event, _make_relay(uploader, event))
        uploader.on(UploadEvent.UPLOAD_COMPLETED, _discard_staged_file)
        uploader.on(UploadEvent.JOB_REMOVED, _discard_staged_file)
        _relay_uploader = uploader
    for path in orphans:
        _remove_staged(path)
    return uploader


def _stage_uploaded_files() -> list[Path]:
    """Save each multipart ``files`` entry into its own temp directory."""
    paths: list[Path] = []
    for uploaded_file in request.files.getlist("files"):
        if uploaded_file.filename:
            temp_dir = Path(tempfile.mkdtemp(prefix="uploader_"))
            temp_path = temp_dir / Path(uploaded_file.filename).name
            uploaded_file.save(temp_path)
            paths.append(temp_path)
    return paths


@upload_bp.route("/files", methods=["POST"])
def add_files() -> tuple[Response, int]:
    """Add files to the upload queue.

    Accepts multipart/form-data with ``files`` or JSON with ``file_paths``.
    With auto start enabled the uploads begin immediately; progress is sent
    via SSE on /api/upload/events.

    Returns:
        JSON response with the accepted jobs and the rejected file names
    """
    uploader = _get_uploader()

    staged = False
    file_paths: list[Path] = []
    missing: list[str] = []

    # Handle file uploads (multipart/form-data)
    if request.files:
        file_paths = _stage_uploaded_files()
        staged = True

    # Handle JSON with file paths read directly from their source
    elif request.is_json:
        data = request.get_json() or {}
        for raw_path in data.get("file_paths", []):
            path = Path(raw_path)
            if path.is_file():
                file_paths.append(path)
            else:
                missing.append(str(raw_path))

    if not file_paths and not missing:
        return jsonify({"error": "No files provided"}), 400

    jobs = []
    rejected = []
    for index, path in enumerate(file_paths):
        try:
            # Staged jobs start only once their file is registered for cleanup
            accepted = uploader.add(path, auto_start=False if staged else None)
        except UploaderError as e:
            if staged:
                for unused in file_paths[index:]:
                    _remove_staged(unused)
            return jsonify({"error": str(e)}), 409

        if not accepted:
            rejected.append(path.name)
            if staged:
                _remove_staged(path)
            continue

        job = accepted[0]
        jobs.append(job)
        if staged:
            with _relay_lock:
                _staged_files[job.job_id] = path
            if uploader.get_job(job.job_id) is not job:
                _discard_staged_file(job.job_id)
            elif uploader.options.auto_start:
                uploader.upload(job.job_id)

    return jsonify(
        {
            "jobs": [job.to_dict() for job in jobs],
            "rejected": rejected,
            "missing": missing,
        }
    ), 201 if jobs else 200


@upload_bp.route("/jobs", methods=["GET"])
def list_jobs() -> tuple[Response, int]:
    """List every job in the queue."""
    uploader = _get_uploader()
    return jsonify({"jobs": [job.to_dict() for job in uploader.jobs]}), 200


@upload_bp.route("/jobs/<job_id>", methods=["GET"])
def get_job(job_id: str) -> tuple[Response, int]:
    """Get current status of a job (non-streaming).

    Args:
        job_id: The job ID to check

    Returns:
        JSON response with job status
    """
    uploader = _get_uploader()

    job = uploader.get_job(job_id)
    if not job:
        return jsonify({"error": "Job not found"}), 404

    return jsonify(job.to_dict()), 200


@upload_bp.route("/jobs/<job_id>", methods=["DELETE"])
def remove_job(job_id: str) -> tuple[Response, int]:
    """Remove a job from the queue, whatever its state."""
    uploader = _get_uploader()
    try:
        uploader.remove(job_id)
    except JobNotFoundError:
        return jsonify({"error": "Job not found"}), 404
    return jsonify({"success": True, "job_id": job_id}), 200


@upload_bp.route("/start/<job_id>", methods=["POST"])
def start_upload(job_id: str) -> tuple[Response, int]:
    """Start uploading one job, or queue it if every slot is busy.

    Args:
        job_id: The job ID to start uploading

    Returns:
        JSON response with job status
    """
    uploader = _get_uploader()
    try:
        uploader.upload(job_id)
    except JobNotFoundError:
        return jsonify({"error": "Job not found"}), 404

    job = uploader.get_job(job_id)
    return jsonify({"job_id": job_id, "job": job.to_dict() if job else None}), 200


@upload_bp.route("/start-all", methods=["POST"])
def start_all() -> tuple[Response, int]:
    """Start every job that has not been started yet."""
    uploader = _get_uploader()
    uploader.upload_all()
    return jsonify(uploader.stats()), 200


@upload_bp.route("/abort/<job_id>", methods=["POST"])
def abort_upload(job_id: str) -> tuple[Response, int]:
    """Abort an upload in progress.

    Args:
        job_id: The job ID to abort

    Returns:
        JSON response with abort status
    """
    uploader = _get_uploader()

    if uploader.get_job(job_id) is None:
        return jsonify({"error": "Job not found"}), 404

    uploader.abort(job_id)
    return jsonify({"success": True, "job_id": job_id}), 200


@upload_bp.route("/abort-all", methods=["POST"])
def abort_all() -> tuple[Response, int]:
    """Abort every upload in progress."""
    uploader = _get_uploader()
    uploader.abort_all()
    return jsonify(uploader.stats()), 200


@upload_bp.route("/stats", methods=["GET"])
def get_stats() -> tuple[Response, int]:
    """Get aggregate queue statistics (counts, bytes, speed, time left)."""
    uploader = _get_uploader()
    return jsonify(uploader.stats()), 200


@upload_bp.route("/events", methods=["GET"])
def stream_events() -> Response:
    """Stream upload notifications via Server-Sent Events.

    Returns:
        SSE stream of notifications
    """
    uploader = _get_uploader()

    def generate() -> Generator[str, None, None]:
        # Create a queue for this client
        queue: deque[dict[str, Any]] = deque()
        with _sse_lock:
            _sse_queues.append(queue)

        try:
            # Send initial state
            yield f"data: {json.dumps({'type': 'snapshot', **uploader.stats()})}\n\n"

            while True:
                while queue:
                    data = queue.popleft()
                    yield f"data: {json.dumps(data, default=str)}\n\n"

                # Small delay to prevent busy waiting
                time.sleep(0.1)

                if uploader.destroyed:
                    yield 'data: {"type": "closed"}\n\n'
                    return

        finally:
            with _sse_lock:
                if queue in _sse_queues:
                    _sse_queues.remove(queue)

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
