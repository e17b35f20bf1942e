"""
Tempo (BPM) estimation from smoothed spectral energy.

Lightweight heuristic, not a pitch tracker: per-frame spectral energy is
kept in a rolling window, local energy peaks are collected, the average
spacing between collected peaks is converted to BPM and the median of the
last accepted estimates is reported.

Algorithm:
1. energy = mean(smoothed_spectrum ** 2)
2. append energy to the rolling energy window
3. peaks over the whole window: strict local maxima above
   peak_ratio * max(window), endpoints excluded; append their indices to
   the (bounded) peak history
4. with more than min_peaks collected peaks: average consecutive peak
   differences and convert, bpm = 60 / (avg_interval / sample_rate)
5. accept estimates inside [min_bpm, max_bpm] into the BPM history and
   report its median
6. otherwise keep reporting the previous stable value (default 120)

Cost per update is O(window size).
"""

import logging
from typing import Optional, Sequence

import numpy as np

from viz_analysis.ringbuffer import BoundedHistory

logger = logging.getLogger(__name__)


def spectral_energy(spectrum: Sequence[float]) -> float:
    """Mean of squared values; 0.0 for an empty spectrum."""
    values = np.asarray(spectrum, dtype=np.float64)
    if values.size == 0:
        return 0.0
    return float(np.mean(values * values))


def detect_peaks(energies: np.ndarray, ratio: float = 0.7) -> np.ndarray:
    """
    Indices of strict local maxima above ratio * max(energies).

    The first and last samples are never peaks.
    """
    energies = np.asarray(energies, dtype=np.float64)
    if energies.size < 3:
        return np.zeros(0, dtype=np.int64)

    threshold = float(np.max(energies)) * ratio
    middle = energies[1:-1]
    mask = (middle > threshold) & (middle > energies[:-2]) & (middle > energies[2:])
    return np.nonzero(mask)[0] + 1


def intervals_to_bpm(peak_indices: Sequence[float], sample_rate: float) -> Optional[float]:
    """
    Convert peak positions to BPM via the mean consecutive difference.

    Returns None when fewer than two peaks are given or the mean interval
    is not a positive finite number.
    """
    peaks = np.asarray(peak_indices, dtype=np.float64)
    if peaks.size < 2:
        return None

    avg_interval = float(np.mean(np.diff(peaks)))
    if not np.isfinite(avg_interval) or avg_interval <= 0:
        return None

    seconds_per_beat = avg_interval / sample_rate
    return 60.0 / seconds_per_beat


def estimate_instant_bpm(
    time_bins: Optional[Sequence[float]],
    sample_rate: float,
    threshold: float = 0.7,
    min_bpm: float = 60.0,
    max_bpm: float = 200.0,
) -> float:
    """
    One-shot tempo guess from a single time-domain buffer.

    Counts strict local maxima of the normalized waveform (value / 255)
    above threshold, treats them as peaks per second over the buffer
    duration and clamps the result into [min_bpm, max_bpm].
    """
    if time_bins is None:
        return min_bpm
    samples = np.asarray(time_bins, dtype=np.float64) / 255.0
    if samples.size < 3 or sample_rate <= 0:
        return min_bpm

    middle = samples[1:-1]
    mask = (middle > threshold) & (middle > samples[:-2]) & (middle > samples[2:])
    peaks = int(np.count_nonzero(mask))

    duration = samples.size / sample_rate
    estimated = (peaks / duration) * 60.0
    return float(min(max_bpm, max(min_bpm, estimated)))


class TempoEstimator:
    """
    Rolling-median BPM estimator over spectral energy peaks.

    Bookkeeping (energy window, peak history) and estimation are separate
    steps so a caller can keep accumulating while estimation is gated.
    """

    def __init__(
        self,
        sample_rate: float = 44100,
        window_size: int = 4096,
        min_bpm: float = 60.0,
        max_bpm: float = 200.0,
        default_bpm: float = 120.0,
        peak_ratio: float = 0.7,
        min_peaks: int = 10,
        peak_history_size: int = 256,
        bpm_history_size: int = 10,
    ):
        """
        Initialize tempo estimator.

        Args:
            sample_rate: Rate used to convert peak spacing to seconds
            window_size: Energy samples kept for peak detection
            min_bpm: Lowest accepted tempo
            max_bpm: Highest accepted tempo
            default_bpm: Reported tempo until an estimate is accepted
            peak_ratio: Fraction of the window maximum a peak must exceed
            min_peaks: Collected peaks required before estimating (exclusive)
            peak_history_size: Capacity of the peak index history
            bpm_history_size: Number of accepted estimates in the median
        """
        if min_bpm >= max_bpm:
            raise ValueError(f"min_bpm ({min_bpm}) must be below max_bpm ({max_bpm})")

        self.sample_rate = sample_rate
        self.min_bpm = min_bpm
        self.max_bpm = max_bpm
        self.default_bpm = default_bpm
        self.peak_ratio = peak_ratio
        self.min_peaks = min_peaks

        self._energy_history = BoundedHistory(window_size)
        # Bounded on purpose: peak indices would otherwise grow forever
        self._peak_history = BoundedHistory(peak_history_size, dtype=np.int64)
        self._bpm_history = BoundedHistory(bpm_history_size)

        self._current_bpm = float(default_bpm)
        self._last_raw_bpm: Optional[float] = None

    def accumulate(self, smoothed_spectrum: Sequence[float]) -> float:
        """
        Record one frame's energy and collect peaks over the energy window.

        Returns:
            The frame's energy
        """
        energy = spectral_energy(smoothed_spectrum)
        self._energy_history.append(energy)

        peaks = detect_peaks(self._energy_history.to_array(), self.peak_ratio)
        if peaks.size:
            self._peak_history.extend(peaks.tolist())
        return energy

    def estimate(self) -> float:
        """
        Turn collected peaks into a stable BPM.

        Returns:
            The reported BPM (unchanged if no new estimate qualifies)
        """
        if len(self._peak_history) <= self.min_peaks:
            return self._current_bpm

        bpm = intervals_to_bpm(self._peak_history.to_array(), self.sample_rate)
        self._last_raw_bpm = bpm
        if bpm is None or not (self.min_bpm <= bpm <= self.max_bpm):
            return self._current_bpm

        self._bpm_history.append(bpm)
        stable = self._bpm_history.median()
        if stable != self._current_bpm:
            logger.debug(f"Tempo {self._current_bpm:.1f} -> {stable:.1f} BPM (raw {bpm:.1f})")
        self._current_bpm = stable
        return self._current_bpm

    def update(self, smoothed_spectrum: Sequence[float]) -> float:
        """Accumulate one frame and return the current stable estimate."""
        self.accumulate(smoothed_spectrum)
        return self.estimate()

    def set_bpm(self, bpm: float) -> float:
        """
        Override the reported tempo (clamped to the accepted range).

        Returns:
            The tempo actually installed
        """
        if not np.isfinite(bpm):
            return self._current_bpm
        self._current_bpm = float(min(self.max_bpm, max(self.min_bpm, bpm)))
        return self._current_bpm

    def reset(self):
        """Clear all histories and return to the default tempo."""
        self._energy_history.clear()
        self._peak_history.clear()
        self._bpm_history.clear()
        self._current_bpm = float(self.default_bpm)
        self._last_raw_bpm = None

    @property
    def current_bpm(self) -> float:
        return self._current_bpm

    @property
    def last_raw_bpm(self) -> Optional[float]:
        """Most recent unfiltered estimate (may lie outside the range)."""
        return self._last_raw_bpm

    @property
    def energy_history(self) -> BoundedHistory:
        return self._energy_history

    @property
    def peak_history(self) -> BoundedHistory:
        return self._peak_history

    @property
    def bpm_history(self) -> BoundedHistory:
        return self._bpm_history
