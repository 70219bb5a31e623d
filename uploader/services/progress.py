"""Transfer progress sampling and speed/ETA estimates.

Times are milliseconds (as produced by the queue's clock), speeds are whole
bytes per second and time remaining is whole seconds.
"""

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class ProgressSample:
    """Bytes transferred as observed at a point in time."""

    time: float | None
    bytes: int


@dataclass
class JobProgress:
    """Progress state of one upload: start time plus the last two samples."""

    start_time: float
    end_time: float | None
    previous: ProgressSample
    current: ProgressSample

    @classmethod
    def begin(cls, now: float) -> "JobProgress":
        return cls(
            start_time=now,
            end_time=None,
            previous=ProgressSample(time=None, bytes=0),
            current=ProgressSample(time=now, bytes=0),
        )

    def record(self, now: float, bytes_transferred: int, bytes_total: int | None) -> None:
        """Shift the current sample into previous and store a new one."""
        self.previous = self.current
        self.current = ProgressSample(time=now, bytes=bytes_transferred)
        if bytes_total is not None and bytes_transferred == bytes_total:
            self.end_time = now


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def transfer_speed(
    progress: JobProgress | None, total: int | None, average: bool = True
) -> int | None:
    """Upload speed in bytes/sec for one job.

    Returns None when the total size is unknown, and 0 when nothing has been
    sent yet or everything has already been sent.
    """
    if total is None:
        return None
    if progress is None:
        return 0

    current = progress.current
    if not current.bytes or current.bytes == total or current.time is None:
        return 0

    if average:
        elapsed = current.time - progress.start_time
        sent = current.bytes
    else:
        previous = progress.previous
        if previous.time is None:
            return 0
        elapsed = current.time - previous.time
        sent = current.bytes - previous.bytes

    if elapsed <= 0:
        return 0
    return _round_half_up(sent / (elapsed / 1000))


def time_remaining(total: int | None, transferred: int, speed: int | None) -> int | None:
    """Seconds left for a transfer, never less than 1 while bytes remain.

    Returns None when the size is unknown or the speed cannot be estimated
    yet, and 0 when nothing remains.
    """
    if total is None:
        return None
    remaining = total - transferred
    if remaining <= 0:
        return 0
    if not speed:
        return None
    return max(math.ceil(remaining / speed), 1)
