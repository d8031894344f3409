"""
Sample Buffer Module

Bounded, time-ordered store of the most recent pointer samples for one
capture session. Oldest samples are evicted first once the buffer is full,
and samples that arrive too soon after the last accepted one are dropped.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterator, List, Optional


@dataclass(frozen=True)
class Sample:
    """A single pointer position. `t` is a monotonic timestamp in milliseconds."""
    x: float
    y: float
    t: float


class SampleBuffer:
    """
    FIFO buffer of pointer samples with a fixed capacity and a minimum
    inter-sample interval.
    """

    def __init__(self, capacity: int = 300, min_interval_ms: float = 10.0):
        """
        Args:
            capacity: Maximum number of samples kept.
            min_interval_ms: Samples arriving sooner than this after the last
                             accepted sample are rejected.
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self.min_interval_ms = min_interval_ms
        self._samples: Deque[Sample] = deque(maxlen=capacity)

    def add(self, sample: Sample) -> bool:
        """
        Append a sample, evicting the oldest one if the buffer is full.

        Returns:
            True if the sample was accepted, False if it was rate-limited.
        """
        last = self.last
        if last is not None and sample.t - last.t < self.min_interval_ms:
            return False
        # deque(maxlen=...) drops from the left on overflow
        self._samples.append(sample)
        return True

    @property
    def last(self) -> Optional[Sample]:
        return self._samples[-1] if self._samples else None

    def snapshot(self) -> List[Sample]:
        """Return a copy of the buffered samples, oldest first."""
        return list(self._samples)

    def clear(self) -> None:
        self._samples.clear()

    def __len__(self) -> int:
        return len(self._samples)

    def __iter__(self) -> Iterator[Sample]:
        return iter(self._samples)
