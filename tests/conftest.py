"""Pytest configuration and fixtures for the uploader tests."""

from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from flask import Flask
from flask.testing import FlaskClient

from uploader import create_app
from uploader.config import Settings, UploaderOptions, get_settings
from uploader.services import uploader as uploader_module
from uploader.services.events import EventBus, UploadEvent
from uploader.services.upload_queue import FileSource, UploadJob, UploadQueue
from uploader.services.uploader import Uploader, reset_uploader


@dataclass
class FakeHandle:
    """Handle returned by FakeTransport; tests drive its callbacks directly."""

    job: UploadJob
    on_progress: Callable[[int, int | None], None]
    on_complete: Callable[[Any], None]
    on_fail: Callable[[str], None]
    on_abort: Callable[[], None]
    cancel_requested: bool = False

    def progress(self, bytes_sent: int, bytes_total: int | None = None) -> None:
        total = bytes_total if bytes_total is not None else self.job.size_bytes
        self.on_progress(bytes_sent, total)

    def complete(self, response: Any = None) -> None:
        self.on_complete(response)

    def fail(self, reason: str = "connection reset") -> None:
        self.on_fail(reason)

    def abort(self) -> None:
        self.on_abort()


class FakeTransport:
    """In-process transport that records calls and never moves any bytes."""

    def __init__(self, supports_progress: bool = True) -> None:
        self.supports_progress = supports_progress
        self.begun: list[FakeHandle] = []
        self.cancelled: list[str] = []
        self.released: list[str] = []
        self.closed = False

    def begin(
        self,
        job: UploadJob,
        on_progress: Callable[[int, int | None], None],
        on_complete: Callable[[Any], None],
        on_fail: Callable[[str], None],
        on_abort: Callable[[], None],
    ) -> FakeHandle:
        handle = FakeHandle(job, on_progress, on_complete, on_fail, on_abort)
        self.begun.append(handle)
        return handle

    def cancel(self, handle: FakeHandle) -> None:
        handle.cancel_requested = True
        self.cancelled.append(handle.job.job_id)

    def release(self, handle: FakeHandle) -> None:
        self.released.append(handle.job.job_id)

    def close(self) -> None:
        self.closed = True

    def handle_for(self, job_id: str) -> FakeHandle:
        for handle in reversed(self.begun):
            if handle.job.job_id == job_id:
                return handle
        raise AssertionError(f"No transfer was begun for {job_id}")

    @property
    def begun_ids(self) -> list[str]:
        return [handle.job.job_id for handle in self.begun]


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, milliseconds: float) -> None:
        self.now += milliseconds


@dataclass
class EventRecorder:
    """Collects every notification published on a bus."""

    events: list[tuple[UploadEvent, tuple[Any, ...]]] = field(default_factory=list)

    def attach(self, bus: EventBus) -> "EventRecorder":
        for event in UploadEvent:
            bus.on(event, self._recorder(event))
        return self

    def _recorder(self, event: UploadEvent) -> Callable[..., None]:
        def record(*args: Any) -> None:
            self.events.append((event, args))

        return record

    def of(self, event: UploadEvent) -> list[tuple[Any, ...]]:
        return [args for recorded, args in self.events if recorded is event]

    @property
    def names(self) -> list[UploadEvent]:
        return [event for event, _ in self.events]


@pytest.fixture(autouse=True)
def isolated_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[Settings, None, None]:
    """Keep settings changes in memory and send the JSONL log to tmp_path."""
    monkeypatch.setattr(Settings, "_save_settings", lambda self: None)
    settings = get_settings()
    original = settings.all()
    settings._settings["log_directory"] = str(tmp_path / "logs")

    yield settings

    reset_uploader()
    settings._settings = original


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def options() -> UploaderOptions:
    return UploaderOptions(url="http://uploads.test/upload")


@pytest.fixture
def make_queue(
    transport: FakeTransport, clock: FakeClock
) -> Callable[..., tuple[UploadQueue, EventRecorder]]:
    """Build a queue over the fake transport; keyword args override the options."""

    def factory(**overrides: Any) -> tuple[UploadQueue, EventRecorder]:
        overrides.setdefault("url", "http://uploads.test/upload")
        queue = UploadQueue(UploaderOptions(**overrides), transport, clock=clock)
        recorder = EventRecorder().attach(queue.bus)
        return queue, recorder

    return factory


@pytest.fixture
def make_source() -> Callable[..., FileSource]:
    def factory(name: str = "data.bin", size: int = 1000) -> FileSource:
        return FileSource.from_bytes(name, b"x" * size)

    return factory


@pytest.fixture
def temp_files(tmp_path: Path) -> list[Path]:
    """Create multiple temporary files for testing."""
    files: list[Path] = []
    for i in range(3):
        path = tmp_path / f"test_file_{i}.txt"
        path.write_bytes(b"line\n" * (100 * (i + 1)))
        files.append(path)
    return files


@pytest.fixture
def app_transport(monkeypatch: pytest.MonkeyPatch) -> FakeTransport:
    """Install a global uploader that uses the fake transport."""
    fake = FakeTransport()
    options = UploaderOptions(url="http://uploads.test/upload", concurrency_limit=1)
    monkeypatch.setattr(uploader_module, "_uploader", Uploader(options, transport=fake))
    return fake


@pytest.fixture
def app(app_transport: FakeTransport) -> Flask:
    """Create application for testing."""
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()
