"""Tests for upload speed tracking."""

import pytest

from chunkup.client.upload.speed import SpeedTracker, format_eta, format_speed


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


class TestSpeedTracker:
    """Tests for SpeedTracker."""

    def test_first_update_anchors(self, clock: FakeClock) -> None:
        """The first update should only anchor the measurement."""
        tracker = SpeedTracker(clock=clock)
        tracker.start(total_bytes=1000)

        assert tracker.update(0) is False
        assert tracker.current == 0
        assert tracker.eta(0) is None

    def test_samples_at_interval(self, clock: FakeClock) -> None:
        """A sample should be taken once at least one interval passed."""
        tracker = SpeedTracker(clock=clock)
        tracker.start(total_bytes=10_000)
        tracker.update(0)

        clock.now += 0.5
        assert tracker.update(300) is False

        clock.now += 0.5
        assert tracker.update(1000) is True
        assert tracker.current == pytest.approx(1000.0)
        assert tracker.average == pytest.approx(1000.0)

    def test_average_peak_and_history(self, clock: FakeClock) -> None:
        """Average is cumulative bytes over time; peak is the highest sample."""
        tracker = SpeedTracker(clock=clock)
        tracker.start(total_bytes=10_000)
        tracker.update(0)

        clock.now += 1.0
        tracker.update(3000)
        clock.now += 1.0
        tracker.update(4000)

        assert tracker.history == [3000.0, 1000.0]
        assert tracker.current == pytest.approx(1000.0)
        assert tracker.peak == pytest.approx(3000.0)
        assert tracker.average == pytest.approx(2000.0)
        assert tracker.eta(4000) == pytest.approx(3.0)

    def test_history_bounded(self, clock: FakeClock) -> None:
        """History should keep only the most recent samples."""
        tracker = SpeedTracker(history_size=3, clock=clock)
        tracker.start(total_bytes=10**9)
        tracker.update(0)
        for i in range(1, 6):
            clock.now += 1.0
            tracker.update(i * 100)

        assert len(tracker.history) == 3

    def test_start_resets(self, clock: FakeClock) -> None:
        """Starting a new pass should clear previous figures."""
        tracker = SpeedTracker(clock=clock)
        tracker.start(total_bytes=1000)
        tracker.update(0)
        clock.now += 1.0
        tracker.update(500)
        tracker.record_chunk(500, 1.0)

        tracker.start(total_bytes=2000)

        assert tracker.total_bytes == 2000
        assert tracker.current == 0
        assert tracker.average == 0
        assert tracker.peak == 0
        assert tracker.history == []
        assert tracker.chunk_speeds == []

    def test_record_chunk(self) -> None:
        """Per-chunk throughput should be size over duration."""
        tracker = SpeedTracker()
        tracker.record_chunk(1000, 2.0)
        tracker.record_chunk(1000, 0.0)

        assert tracker.chunk_speeds == [500.0]

    def test_snapshot(self, clock: FakeClock) -> None:
        """snapshot() should copy the current figures."""
        tracker = SpeedTracker(clock=clock)
        tracker.start(total_bytes=1000)
        tracker.update(0)
        clock.now += 2.0
        tracker.update(1000)

        info = tracker.snapshot()

        assert info.current == pytest.approx(500.0)
        assert info.history == (500.0,)
        assert info.last_update == clock.now


class TestFormatting:
    """Tests for human-readable formatting helpers."""

    @pytest.mark.parametrize(
        ("speed", "expected"),
        [(0, "0 B/s"), (512, "512 B/s"), (2048, "2.00 KB/s"), (1.5 * 1024**2, "1.50 MB/s")],
    )
    def test_format_speed(self, speed: float, expected: str) -> None:
        """Speeds should be scaled to the largest fitting unit."""
        assert format_speed(speed) == expected

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(None, "unknown"), (42, "42s"), (125, "2m 05s"), (3 * 3600 + 120, "3h 02m")],
    )
    def test_format_eta(self, seconds: float | None, expected: str) -> None:
        """Remaining time should be shown in the largest units."""
        assert format_eta(seconds) == expected
