import time
from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True)
class MetricsSnapshot:
    total_events: int
    matching_posts: int
    events_per_second: float
    started_at: float
    last_update: float
    running_seconds: float

    def describe(self) -> str:
        return (
            "Firehose Progress:\n"
            f"  Total Events: {self.total_events}\n"
            f"  Events/second: {self.events_per_second:.0f}\n"
            f"  Matching Posts: {self.matching_posts}\n"
            f"  Running time: {self.running_seconds:.0f}s"
        )


class Metrics:
    """Running counters for the consumer loop.

    Only the loop writes to a Metrics instance; readers go through
    :meth:`snapshot`, which copies the counters into an immutable value.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._started_at = clock()
        self._last_update = self._started_at
        self._total_events = 0
        self._matching_posts = 0
        self._events_per_second = 0.0

    def record_event(self) -> None:
        self._total_events += 1
        now = self._clock()
        elapsed = now - self._started_at
        if elapsed > 0:
            self._events_per_second = self._total_events / elapsed
        self._last_update = now

    def record_match(self, count: int = 1) -> None:
        if count < 0:
            raise ValueError("match count cannot be negative")
        self._matching_posts += count

    def snapshot(self) -> MetricsSnapshot:
        return MetricsSnapshot(
            total_events=self._total_events,
            matching_posts=self._matching_posts,
            events_per_second=self._events_per_second,
            started_at=self._started_at,
            last_update=self._last_update,
            running_seconds=max(self._clock() - self._started_at, 0.0),
        )
