"""
Data types passed into and out of the analysis pipeline.

SampleFrame is produced once per tick by an external capture layer;
FeatureFrame and PipelineResult are immutable snapshots handed to the
renderer. Array fields of snapshots are copied and flagged read-only, so a
renderer running behind the analysis loop always sees a consistent frame.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np


def _frozen_copy(values) -> np.ndarray:
    """Copy values into a read-only float array."""
    arr = np.array(values, dtype=np.float64, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class SampleFrame:
    """One tick of raw analyser output."""

    # Magnitudes 0-255, fixed length N. None marks a malformed frame.
    frequency_bins: Optional[np.ndarray]

    # Time-domain samples 0-255 (128 = silence)
    time_bins: Optional[np.ndarray]

    # Capture timestamp in seconds
    timestamp: float

    @classmethod
    def from_sequences(
        cls,
        frequency_bins: Optional[Sequence[float]],
        time_bins: Optional[Sequence[float]] = None,
        timestamp: float = 0.0,
    ) -> "SampleFrame":
        """Build a frame from any numeric sequences, clipped to 0-255."""
        freq = None
        if frequency_bins is not None:
            freq = _frozen_copy(np.clip(np.asarray(frequency_bins, dtype=np.float64), 0, 255))
        times = None
        if time_bins is not None:
            times = _frozen_copy(np.clip(np.asarray(time_bins, dtype=np.float64), 0, 255))
        return cls(frequency_bins=freq, time_bins=times, timestamp=float(timestamp))

    @property
    def is_valid(self) -> bool:
        """Whether the frame carries a frequency spectrum."""
        return self.frequency_bins is not None


@dataclass(frozen=True)
class BeatEvent:
    """A detected beat, delivered to beat observers."""

    timestamp: float  # Seconds
    volume: float  # Average volume at detection (0-1)
    bpm: float  # Reported tempo when the beat fired


@dataclass(frozen=True, eq=False)
class FeatureFrame:
    """Per-frame features consumed by the renderer."""

    raw_frequency_bins: np.ndarray
    raw_time_bins: np.ndarray
    smoothed_spectrum: np.ndarray
    average_volume: float
    current_bpm: float
    last_beat_event: Optional[BeatEvent] = None
    timestamp: float = 0.0
    frame_index: int = 0

    def __post_init__(self):
        # Copy-on-produce: the snapshot never aliases pipeline state
        object.__setattr__(self, "raw_frequency_bins", _frozen_copy(self.raw_frequency_bins))
        object.__setattr__(self, "raw_time_bins", _frozen_copy(self.raw_time_bins))
        object.__setattr__(self, "smoothed_spectrum", _frozen_copy(self.smoothed_spectrum))

    @property
    def is_beat(self) -> bool:
        """True if a beat fired on this frame."""
        return self.last_beat_event is not None

    def to_dict(self) -> dict:
        """Plain-Python representation (lists instead of arrays)."""
        beat = self.last_beat_event
        return {
            "frame_index": self.frame_index,
            "timestamp": self.timestamp,
            "average_volume": self.average_volume,
            "current_bpm": self.current_bpm,
            "beat": None if beat is None else {
                "timestamp": beat.timestamp,
                "volume": beat.volume,
                "bpm": beat.bpm,
            },
            "smoothed_spectrum": self.smoothed_spectrum.tolist(),
        }


@dataclass(frozen=True)
class PipelineResult:
    """Output of one pipeline tick."""

    feature_frame: FeatureFrame
    complexity: float = field(default=1.0)
