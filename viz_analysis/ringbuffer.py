"""
Fixed-capacity FIFO ring buffer for per-frame analysis histories.

Every rolling history in the analysis core (beat timestamps, energies,
peak indices, BPM estimates, frame rates) is one of these. Storage is a
pre-allocated numpy array so appending in the frame loop never allocates.

Usage:
    history = BoundedHistory(capacity=20)
    history.append(timestamp)      # oldest value evicted once full
    recent = history.to_array()    # oldest -> newest copy
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

import numpy as np


@dataclass
class HistoryStats:
    """Statistics for history operations."""
    appends: int = 0
    evictions: int = 0     # Values dropped because the buffer was full
    capacity: int = 0
    current_fill: int = 0

    def reset(self):
        """Reset all counters."""
        self.appends = 0
        self.evictions = 0


class BoundedHistory:
    """
    Bounded FIFO sequence of scalars backed by a circular numpy array.

    The buffer never holds more than ``capacity`` values; appending to a
    full buffer overwrites the oldest value.

    Attributes:
        capacity: Maximum number of values retained
    """

    def __init__(self, capacity: int, dtype=np.float64):
        """
        Initialize the history.

        Args:
            capacity: Maximum number of values retained (must be >= 1)
            dtype: numpy dtype of the backing store
        """
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got: {capacity}")

        self.capacity = int(capacity)
        self._data = np.zeros(self.capacity, dtype=dtype)
        self._start = 0   # Index of the oldest value
        self._count = 0   # Number of valid values

        self._stats = HistoryStats(capacity=self.capacity)

    def append(self, value) -> None:
        """Append a value, evicting the oldest one when full."""
        if self._count < self.capacity:
            self._data[(self._start + self._count) % self.capacity] = value
            self._count += 1
        else:
            # Overwrite oldest slot and advance the start
            self._data[self._start] = value
            self._start = (self._start + 1) % self.capacity
            self._stats.evictions += 1
        self._stats.appends += 1

    def extend(self, values: Iterable) -> None:
        """Append each value in order."""
        for value in values:
            self.append(value)

    def clear(self) -> None:
        """Drop all values (capacity and stats are kept)."""
        self._start = 0
        self._count = 0

    def to_array(self) -> np.ndarray:
        """Copy of the contents, oldest first."""
        if self._count == 0:
            return self._data[:0].copy()
        idx = (self._start + np.arange(self._count)) % self.capacity
        return self._data[idx]

    def mean(self) -> Optional[float]:
        """Arithmetic mean, or None when empty."""
        if self._count == 0:
            return None
        return float(np.mean(self.to_array()))

    def median(self) -> Optional[float]:
        """Median (even lengths average the two middle values), or None when empty."""
        if self._count == 0:
            return None
        return float(np.median(self.to_array()))

    def max(self) -> Optional[float]:
        """Largest value, or None when empty."""
        if self._count == 0:
            return None
        return float(np.max(self.to_array()))

    @property
    def last(self) -> Optional[float]:
        """Most recently appended value, or None when empty."""
        if self._count == 0:
            return None
        return self._data[(self._start + self._count - 1) % self.capacity].item()

    @property
    def is_empty(self) -> bool:
        return self._count == 0

    @property
    def is_full(self) -> bool:
        return self._count == self.capacity

    @property
    def stats(self) -> HistoryStats:
        """Get history statistics."""
        self._stats.current_fill = self._count
        return self._stats

    def reset_stats(self):
        """Reset statistics counters."""
        self._stats.reset()

    def __len__(self) -> int:
        return self._count

    def __iter__(self) -> Iterator:
        return iter(self.to_array().tolist())

    def __repr__(self) -> str:
        return f"BoundedHistory(capacity={self.capacity}, values={self.to_array().tolist()!r})"
