"""
Per-frame analysis pipeline.

Single entry point for the rendering/control layer. Each call to process():

    frame -> SpectralSmoother + average_volume
          -> BeatDetector (may emit a BeatEvent)
          -> TempoEstimator (energy bookkeeping every frame, estimate only
             once the beat history holds enough beats)
          -> ComplexityController (fed by the measured frame rate)
          -> PipelineResult(FeatureFrame, complexity)

The pipeline is cooperative and single-threaded: it never blocks, and it
expects one call per rendering tick from an external driver loop.
"""

import logging
import time
from typing import Optional

import numpy as np

from viz_analysis.beat_detector import BeatDetector, BeatObserver
from viz_analysis.complexity import ComplexityController
from viz_analysis.config import AnalysisConfig
from viz_analysis.models import BeatEvent, FeatureFrame, PipelineResult, SampleFrame
from viz_analysis.spectral import SpectralSmoother, average_volume
from viz_analysis.tempo import TempoEstimator, estimate_instant_bpm

logger = logging.getLogger(__name__)

_EMPTY = np.zeros(0, dtype=np.float64)


class AnalysisPipeline:
    """
    Orchestrates smoothing, beat detection, tempo and complexity per frame.

    Usage:
        pipeline = AnalysisPipeline(AnalysisConfig(bin_count=1024))
        pipeline.subscribe(on_beat)
        result = pipeline.process(frame)
        renderer.draw(result.feature_frame, result.complexity)
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()
        cfg = self.config

        self.smoother = SpectralSmoother(cfg.bin_count, cfg.smoothing)
        self.beat_detector = BeatDetector(
            threshold=cfg.beat_threshold,
            refractory=cfg.beat_refractory,
            history_size=cfg.beat_history_size,
        )
        self.tempo = TempoEstimator(
            sample_rate=cfg.sample_rate,
            window_size=cfg.tempo_window_size,
            min_bpm=cfg.min_bpm,
            max_bpm=cfg.max_bpm,
            default_bpm=cfg.default_bpm,
            peak_ratio=cfg.peak_ratio,
            min_peaks=cfg.min_peaks,
            peak_history_size=cfg.peak_history_size,
            bpm_history_size=cfg.bpm_history_size,
        )
        self.complexity = ComplexityController(
            window_size=cfg.performance_window,
            min_complexity=cfg.min_complexity,
            max_complexity=cfg.max_complexity,
            backoff_factor=cfg.backoff_factor,
            recovery_factor=cfg.recovery_factor,
            backoff_ratio=cfg.backoff_ratio,
            recovery_ratio=cfg.recovery_ratio,
        )

        self.adaptive_rendering = cfg.adaptive_rendering
        self._reset_frame_state()

    def _reset_frame_state(self):
        self._frame_count = 0
        self._beat_count = 0
        self._last_timestamp: Optional[float] = None
        self._last_frame_rate: Optional[float] = None
        self._last_volume = 0.0
        self._last_frame: Optional[SampleFrame] = None

    # ------------------------------------------------------------------
    # Frame processing
    # ------------------------------------------------------------------

    def process(
        self,
        frame: Optional[SampleFrame],
        previous_timestamp: Optional[float] = None,
    ) -> PipelineResult:
        """
        Analyse one frame.

        Args:
            frame: Raw analyser output for this tick. None, or a frame
                without a frequency spectrum, is processed as a no-op frame.
            previous_timestamp: Timestamp of the previous tick in seconds;
                defaults to the last frame seen by this pipeline.

        Returns:
            PipelineResult with an immutable FeatureFrame and the complexity
        """
        if previous_timestamp is None:
            previous_timestamp = self._last_timestamp

        if frame is None or not frame.is_valid:
            return self._process_missing(frame, previous_timestamp)

        timestamp = frame.timestamp
        frequency_bins = frame.frequency_bins

        # (a) smoothing + loudness
        self.smoother.smooth(frequency_bins)
        volume = average_volume(frequency_bins)

        # (b) beat detection against the currently reported tempo
        event = self.beat_detector.evaluate(
            timestamp, volume, self.config.beat_threshold, self.tempo.current_bpm
        )
        if event is not None:
            self._beat_count += 1

        # (c) tempo: always accumulate, estimate only with enough beats
        self.tempo.accumulate(self.smoother.spectrum)
        if len(self.beat_detector.history) > self.config.tempo_gate_beats:
            self.tempo.estimate()

        # (d) frame timing -> complexity
        complexity = self._update_performance(timestamp, previous_timestamp)

        self._last_timestamp = timestamp
        self._last_volume = volume
        self._last_frame = frame

        # (e) snapshot
        feature_frame = FeatureFrame(
            raw_frequency_bins=frequency_bins,
            raw_time_bins=frame.time_bins if frame.time_bins is not None else _EMPTY,
            smoothed_spectrum=self.smoother.spectrum,
            average_volume=volume,
            current_bpm=self.tempo.current_bpm,
            last_beat_event=event,
            timestamp=timestamp,
            frame_index=self._frame_count,
        )
        self._frame_count += 1
        self._log_levels(frequency_bins, volume)

        return PipelineResult(feature_frame=feature_frame, complexity=complexity)

    def _process_missing(
        self, frame: Optional[SampleFrame], previous_timestamp: Optional[float]
    ) -> PipelineResult:
        """No-op frame: keep features, advance performance bookkeeping at the last cadence."""
        complexity = self._tick_complexity(self._cadence())
        if frame is not None:
            timestamp = frame.timestamp
            self._last_timestamp = timestamp
        elif previous_timestamp is not None:
            timestamp = previous_timestamp
        else:
            timestamp = 0.0

        logger.debug(f"Frame {self._frame_count}: missing spectrum, treated as no-op")
        feature_frame = FeatureFrame(
            raw_frequency_bins=_EMPTY,
            raw_time_bins=_EMPTY,
            smoothed_spectrum=self.smoother.spectrum,
            average_volume=0.0,
            current_bpm=self.tempo.current_bpm,
            last_beat_event=None,
            timestamp=timestamp,
            frame_index=self._frame_count,
        )
        self._frame_count += 1
        return PipelineResult(feature_frame=feature_frame, complexity=complexity)

    def _cadence(self) -> float:
        """Last observed frame rate, or the target before any measurement."""
        if self._last_frame_rate is not None:
            return self._last_frame_rate
        return self.config.target_fps

    def _update_performance(self, timestamp: float, previous_timestamp: Optional[float]) -> float:
        """Derive the instantaneous frame rate and feed the controller."""
        frame_rate = self._cadence()
        if previous_timestamp is not None:
            elapsed = timestamp - previous_timestamp
            if elapsed > 0:
                # A long gap is just one slow frame
                frame_rate = 1.0 / elapsed
                self._last_frame_rate = frame_rate
        return self._tick_complexity(frame_rate)

    def _tick_complexity(self, frame_rate: float) -> float:
        if self.adaptive_rendering:
            return self.complexity.tick(frame_rate, self.config.target_fps)
        self.complexity.record(frame_rate)
        return self.complexity.complexity

    def _log_levels(self, frequency_bins: np.ndarray, volume: float):
        interval = self.config.log_interval_frames
        if not interval or self._frame_count % interval != 0:
            return
        if not logger.isEnabledFor(logging.DEBUG):
            return
        max_freq = float(np.max(frequency_bins)) if len(frequency_bins) else 0.0
        fps = self.complexity.current_fps or 0.0
        logger.debug(
            f"Audio levels - Avg: {volume * 100:.1f}%, Max freq: {max_freq:.0f}, FPS: {fps:.1f}",
            extra={"frame_index": self._frame_count, "fps": fps, "bpm": self.tempo.current_bpm},
        )

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def subscribe(self, observer: BeatObserver) -> BeatObserver:
        """Register a beat observer."""
        return self.beat_detector.subscribe(observer)

    def unsubscribe(self, observer: BeatObserver) -> None:
        """Remove a beat observer."""
        self.beat_detector.unsubscribe(observer)

    def reset_complexity(self):
        """Force rendering complexity back to maximum."""
        self.complexity.reset()

    def set_adaptive_rendering(self, enabled: bool):
        """Enable or disable complexity adjustment (frame rate is still tracked)."""
        self.adaptive_rendering = bool(enabled)
        logger.info(f"Adaptive rendering {'enabled' if enabled else 'disabled'}")

    def detect_instant_bpm(self) -> float:
        """
        Guess the tempo from the last frame's waveform and install it.

        Returns:
            The tempo now reported (unchanged if no frame has been seen)
        """
        frame = self._last_frame
        if frame is None or frame.time_bins is None:
            return self.tempo.current_bpm

        bpm = estimate_instant_bpm(
            frame.time_bins,
            self.config.sample_rate,
            threshold=self.config.instant_bpm_threshold,
            min_bpm=self.config.min_bpm,
            max_bpm=self.config.max_bpm,
        )
        installed = self.tempo.set_bpm(bpm)
        logger.info(f"BPM detected: {installed:.1f}")
        return installed

    def reset(self):
        """Reinitialize all analysis state (observers are kept)."""
        self.smoother.reset()
        self.beat_detector.reset()
        self.tempo.reset()
        self.complexity.reset()
        self._reset_frame_state()

    def close(self):
        """Drop all beat observers."""
        self.beat_detector.clear_observers()
        logger.debug("Analysis pipeline closed")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def get_metadata(self) -> dict:
        """Snapshot of playback metadata for external telemetry."""
        return {
            "bpm": self.tempo.current_bpm,
            "volume": self._last_volume,
            "fps": self.complexity.current_fps,
            "complexity": self.complexity.complexity,
            "adaptive_rendering": self.adaptive_rendering,
            "frame_count": self._frame_count,
            "beat_count": self._beat_count,
            "timestamp": time.time(),
        }

    @property
    def current_bpm(self) -> float:
        return self.tempo.current_bpm

    @property
    def current_complexity(self) -> float:
        return self.complexity.complexity

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def last_beat_event(self) -> Optional[BeatEvent]:
        return self.beat_detector.last_event
