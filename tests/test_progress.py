"""Tests for progress sampling and speed/ETA estimates."""

from uploader.services.progress import JobProgress, time_remaining, transfer_speed


def _progress(*samples: tuple[float, int], total: int | None = 1000) -> JobProgress:
    progress = JobProgress.begin(0)
    for time, sent in samples:
        progress.record(time, sent, total)
    return progress


class TestJobProgress:
    """Tests for JobProgress sample tracking."""

    def test_begin(self) -> None:
        progress = JobProgress.begin(250)
        assert progress.start_time == 250
        assert progress.current.bytes == 0
        assert progress.previous.time is None
        assert progress.end_time is None

    def test_record_shifts_samples(self) -> None:
        progress = _progress((1000, 100), (2000, 300))
        assert progress.previous.time == 1000
        assert progress.previous.bytes == 100
        assert progress.current.time == 2000
        assert progress.current.bytes == 300

    def test_end_time_set_when_complete(self) -> None:
        progress = _progress((1000, 500), (1800, 1000))
        assert progress.end_time == 1800


class TestTransferSpeed:
    """Tests for transfer_speed."""

    def test_average_speed(self) -> None:
        """Test 500 bytes in one second gives 500 bytes/sec."""
        progress = _progress((1000, 500))
        assert transfer_speed(progress, 1000) == 500

    def test_instantaneous_speed(self) -> None:
        progress = _progress((1000, 100), (1500, 400))
        assert transfer_speed(progress, 1000, average=False) == 600
        assert transfer_speed(progress, 1000, average=True) == 267

    def test_rounds_half_up(self) -> None:
        progress = _progress((2000, 1))
        assert transfer_speed(progress, 1000) == 1  # 0.5 bytes/sec

    def test_zero_before_any_bytes(self) -> None:
        assert transfer_speed(JobProgress.begin(0), 1000) == 0

    def test_zero_when_fully_transferred(self) -> None:
        assert transfer_speed(_progress((1000, 1000)), 1000) == 0

    def test_zero_for_zero_elapsed(self) -> None:
        assert transfer_speed(_progress((0, 10)), 1000) == 0

    def test_unknown_size(self) -> None:
        assert transfer_speed(_progress((1000, 10), total=None), None) is None

    def test_not_started(self) -> None:
        assert transfer_speed(None, 1000) == 0


class TestTimeRemaining:
    """Tests for time_remaining."""

    def test_example(self) -> None:
        """Test 500 of 1000 bytes at 500 bytes/sec leaves one second."""
        assert time_remaining(1000, 500, 500) == 1

    def test_rounds_up(self) -> None:
        assert time_remaining(1000, 0, 300) == 4

    def test_never_below_one_second(self) -> None:
        assert time_remaining(1000, 999, 10_000) == 1

    def test_nothing_remaining(self) -> None:
        assert time_remaining(1000, 1000, 0) == 0

    def test_unknown_speed(self) -> None:
        assert time_remaining(1000, 0, 0) is None

    def test_unknown_size(self) -> None:
        assert time_remaining(None, 0, 100) is None
