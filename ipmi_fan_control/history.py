"""Time-windowed record of temperature readings."""

import time
from collections import deque
from typing import Callable, NamedTuple

# Returned by queries before any reading has been pushed.
COLD_START_TEMPERATURE = 0


class Sample(NamedTuple):
    time: float
    temperature: int


class TemperatureHistory:
    """Rolling history of readings bounded by a retention window.

    Readings older than the window are evicted before every query. The most
    recent reading is also remembered separately and survives eviction, so a
    query over an empty window still has something to answer with.
    """

    def __init__(self, window: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._window = window
        self._clock = clock
        self._samples: deque[Sample] = deque()
        self._last: Sample | None = None

    @property
    def window(self) -> float:
        return self._window

    @property
    def last_sample(self) -> Sample | None:
        """Most recent reading, or None if nothing has been pushed yet."""
        return self._last

    def __len__(self) -> int:
        return len(self._samples)

    def push(self, timestamp: float, temperature: int) -> None:
        sample = Sample(timestamp, temperature)
        self._samples.append(sample)
        self._last = sample

    def recent_maximum(self, duration: float) -> int:
        """Highest temperature seen in the last `duration` seconds."""
        return max(s.temperature for s in self._recent(duration))

    def recent_percent_over_threshold(self, duration: float, threshold: int) -> float:
        """Fraction (0-1) of readings in the last `duration` seconds strictly above threshold."""
        samples = self._recent(duration)
        return sum(1 for s in samples if s.temperature > threshold) / len(samples)

    def _evict(self, now: float) -> None:
        cutoff = now - self._window
        while self._samples and self._samples[0].time < cutoff:
            self._samples.popleft()

    def _recent(self, duration: float) -> list[Sample]:
        now = self._clock()
        self._evict(now)

        samples = [s for s in self._samples if now - s.time <= duration]
        if not samples:
            samples.append(self._last or Sample(now, COLD_START_TEMPERATURE))
        return samples
