"""Audit trail of upload lifecycle events.

Each event is one JSON line in logs/json/year=YYYY/month=MM/day=DD/events.jsonl,
so the files can be read back here or queried with any hive-aware JSON reader.
"""

import json
import threading
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from uploader.config import get_settings
from uploader.services.utils import format_bytes

# Audit events written by the upload queue, in lifecycle order
UPLOAD_EVENTS = (
    "upload_job_added",
    "upload_job_invalid",
    "upload_too_many_files",
    "upload_started",
    "upload_completed",
    "upload_failed",
    "upload_aborted",
    "upload_job_removed",
)


class LogService:
    """JSONL log service with thread-safe file writes."""

    def __init__(self) -> None:
        """Initialize the log service."""
        self._write_lock = threading.Lock()

    def _get_log_dir(self) -> Path:
        """Get the configured log directory, creating it if needed."""
        settings = get_settings()
        log_dir = settings.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def _get_hive_dir(self, dt: datetime) -> Path:
        """Build a hive-partitioned directory path and create it.

        Returns:
            Path like logs/json/year=2026/month=02/day=08/
        """
        hive_dir = (
            self._get_log_dir()
            / "json"
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
        )
        hive_dir.mkdir(parents=True, exist_ok=True)
        return hive_dir

    def _get_current_log_file(self) -> Path:
        """Get the path to today's events log file (hive-partitioned)."""
        return self._get_hive_dir(datetime.now(UTC)) / "events.jsonl"

    def _event_files(self) -> list[Path]:
        json_dir = self._get_log_dir() / "json"
        if not json_dir.exists():
            return []
        return sorted(json_dir.rglob("events.jsonl"))

    def _iter_entries(self) -> Iterator[dict[str, Any]]:
        """Yield every parseable entry, oldest day first; corrupt lines are skipped."""
        for log_file in self._event_files():
            with open(log_file, encoding="utf-8") as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        yield json.loads(line)
                    except json.JSONDecodeError:
                        continue

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append a log entry to the current day's JSONL file.

        Args:
            level: Log level (INFO, WARNING, ERROR)
            category: Event category (upload, settings, app)
            event: Machine-readable event name (snake_case)
            message: Human-readable message
            metadata: Optional additional data
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": level.upper(),
            "category": category,
            "event": event,
            "message": message,
        }
        if metadata:
            entry["metadata"] = metadata

        line = json.dumps(entry, default=str)

        with self._write_lock:
            log_file = self._get_current_log_file()
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def info(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an INFO-level event."""
        self.log("INFO", category, event, message, metadata)

    def warning(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log a WARNING-level event."""
        self.log("WARNING", category, event, message, metadata)

    def error(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an ERROR-level event."""
        self.log("ERROR", category, event, message, metadata)

    def query(
        self,
        job_id: str | None = None,
        event: str | None = None,
        level: str | None = None,
        category: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> dict[str, Any]:
        """Newest-first page of entries matching every given filter.

        Args:
            job_id: Only entries whose metadata names this upload job
            event: Only entries with this event name
            level: Only entries at this level (case-insensitive)
            category: Only entries in this category
            offset: Number of matching entries to skip
            limit: Maximum entries to return

        Returns:
            Dict with entries, total matches, offset, limit
        """
        matches = [
            entry
            for entry in self._iter_entries()
            if (job_id is None or entry.get("metadata", {}).get("job_id") == job_id)
            and (event is None or entry.get("event") == event)
            and (level is None or entry.get("level", "") == level.upper())
            and (category is None or entry.get("category") == category)
        ]
        matches.reverse()

        return {
            "entries": matches[offset : offset + limit],
            "total": len(matches),
            "offset": offset,
            "limit": limit,
        }

    def upload_summary(self) -> dict[str, Any]:
        """Count upload outcomes recorded in the audit trail.

        Returns:
            Dict with a count per upload event, the number of bytes in
            completed uploads, the number of warnings and errors, and the
            number of daily files
        """
        outcomes = dict.fromkeys(UPLOAD_EVENTS, 0)
        uploaded_bytes = 0
        problems = {"WARNING": 0, "ERROR": 0}

        for entry in self._iter_entries():
            name = entry.get("event")
            if name in outcomes:
                outcomes[name] += 1
            if name == "upload_completed":
                uploaded_bytes += entry.get("metadata", {}).get("file_size") or 0
            if entry.get("level") in problems:
                problems[entry["level"]] += 1

        return {
            "events": outcomes,
            "uploaded_bytes": uploaded_bytes,
            "uploaded_bytes_formatted": format_bytes(uploaded_bytes),
            "warnings": problems["WARNING"],
            "errors": problems["ERROR"],
            "file_count": len(self._event_files()),
        }


# Module-level singleton accessor
_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
