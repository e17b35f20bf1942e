"""
Spectral smoothing and loudness.

SpectralSmoother keeps a per-bin exponential moving average of the byte
spectrum (0-255) normalized to 0-1. average_volume is the stateless
loudness measure shared by beat detection and telemetry.
"""

import logging
from typing import Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


def average_volume(frequency_bins: Optional[Sequence[float]]) -> float:
    """
    Average volume of a byte spectrum.

    Sum of bin magnitudes divided by (N * 255). Empty or missing buffers
    return 0.0.
    """
    if frequency_bins is None:
        return 0.0
    bins = np.asarray(frequency_bins, dtype=np.float64)
    if bins.size == 0:
        return 0.0
    return float(np.sum(bins) / (bins.size * 255.0))


class SpectralSmoother:
    """
    Exponential smoothing of per-bin magnitudes across frames.

    For each bin: smoothed = smoothed * alpha + (value / 255) * (1 - alpha).
    The smoothed spectrum starts at zero and is only reset when the owning
    pipeline is reinitialized.
    """

    def __init__(self, bin_count: int, smoothing: float = 0.8):
        """
        Args:
            bin_count: Number of frequency bins (fixed for the lifetime)
            smoothing: Weight of the previous value (0-1, higher = smoother)
        """
        if bin_count < 1:
            raise ValueError(f"bin_count must be positive, got: {bin_count}")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got: {smoothing}")

        self.bin_count = int(bin_count)
        self.smoothing = float(smoothing)
        self._spectrum = np.zeros(self.bin_count, dtype=np.float64)
        self._frames = 0

    def smooth(self, frequency_bins: Sequence[float]) -> None:
        """
        Fold one frame of byte magnitudes into the smoothed spectrum.

        Short buffers update only the leading bins; bins beyond bin_count
        are ignored.
        """
        current = np.asarray(frequency_bins, dtype=np.float64)
        n = min(current.size, self.bin_count)
        if current.size != self.bin_count and self._frames == 0:
            logger.debug(f"Spectrum length {current.size} != bin_count {self.bin_count}")
        if n == 0:
            return

        normalized = np.clip(current[:n], 0.0, 255.0) / 255.0
        alpha = self.smoothing
        head = self._spectrum[:n]
        head *= alpha
        head += normalized * (1.0 - alpha)
        self._frames += 1

    @property
    def spectrum(self) -> np.ndarray:
        """Live smoothed spectrum (mutated in place by smooth())."""
        return self._spectrum

    @property
    def frames(self) -> int:
        """Number of frames folded in since the last reset."""
        return self._frames

    def snapshot(self) -> np.ndarray:
        """Read-only copy of the smoothed spectrum."""
        copy = self._spectrum.copy()
        copy.setflags(write=False)
        return copy

    def reset(self):
        """Zero the smoothed spectrum."""
        self._spectrum[:] = 0.0
        self._frames = 0
