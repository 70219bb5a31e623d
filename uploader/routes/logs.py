"""Audit log API routes for the multi-file uploader"""

from flask import Blueprint, Response, jsonify, request

from uploader.services.log_service import get_log_service

logs_bp = Blueprint("logs", __name__)


def _page_args() -> tuple[int, int]:
    """Offset and limit query params; unparseable values fall back to the defaults."""
    try:
        offset = max(0, int(request.args.get("offset", "0")))
        limit = max(1, min(1000, int(request.args.get("limit", "100"))))
    except ValueError:
        return 0, 100
    return offset, limit


@logs_bp.route("/entries", methods=["GET"])
def get_log_entries() -> tuple[Response, int]:
    """Query audit entries, newest first.

    Query params:
        job_id: Only entries about this upload job
        event: Only this event (e.g. upload_failed)
        level: INFO/WARNING/ERROR
        category: upload/settings/app
        offset, limit: Pagination (limit capped at 1000)
    """
    offset, limit = _page_args()
    result = get_log_service().query(
        job_id=request.args.get("job_id"),
        event=request.args.get("event"),
        level=request.args.get("level"),
        category=request.args.get("category"),
        offset=offset,
        limit=limit,
    )
    return jsonify(result), 200


@logs_bp.route("/jobs/<job_id>", methods=["GET"])
def get_job_history(job_id: str) -> tuple[Response, int]:
    """Audit history of one upload job, oldest event first."""
    result = get_log_service().query(job_id=job_id, limit=1000)
    entries = list(reversed(result["entries"]))
    if not entries:
        return jsonify({"error": "No log entries for job"}), 404
    return jsonify({"job_id": job_id, "entries": entries}), 200


@logs_bp.route("/stats", methods=["GET"])
def get_log_stats() -> tuple[Response, int]:
    """Upload outcome counts and bytes uploaded, from the audit trail."""
    return jsonify(get_log_service().upload_summary()), 200
