"""
Integration tests for the per-frame analysis pipeline.

Frames carry explicit timestamps, so frame timing is fully simulated.
Run with: python -m pytest viz_analysis/tests/test_pipeline.py -v
"""

import logging

import numpy as np
import pytest

from viz_analysis.config import AnalysisConfig
from viz_analysis.models import FeatureFrame, PipelineResult, SampleFrame
from viz_analysis.pipeline import AnalysisPipeline
from viz_analysis.tests.conftest import make_frame

FRAME = 1.0 / 60.0


class TestProcess:
    def test_returns_feature_frame_and_complexity(self, pipeline):
        result = pipeline.process(make_frame(100, 0.0))
        assert isinstance(result, PipelineResult)
        assert isinstance(result.feature_frame, FeatureFrame)
        assert result.complexity == 1.0

        frame = result.feature_frame
        assert frame.raw_frequency_bins.shape == (64,)
        assert frame.raw_time_bins.shape == (128,)
        assert frame.average_volume == pytest.approx(100 / 255)
        assert frame.current_bpm == 120.0
        assert frame.frame_index == 0

    def test_smoothing_accumulates(self, pipeline):
        for i in range(10):
            result = pipeline.process(make_frame(255, i * FRAME))
        np.testing.assert_allclose(result.feature_frame.smoothed_spectrum, 1.0 - 0.8 ** 10)

    def test_feature_frame_is_immutable_snapshot(self, pipeline):
        first = pipeline.process(make_frame(255, 0.0)).feature_frame
        snapshot = first.smoothed_spectrum.copy()
        pipeline.process(make_frame(255, FRAME))

        np.testing.assert_array_equal(first.smoothed_spectrum, snapshot)
        with pytest.raises(ValueError):
            first.smoothed_spectrum[0] = 0.0
        with pytest.raises(ValueError):
            first.raw_frequency_bins[0] = 0.0

    def test_loud_frames_emit_beats_with_refractory(self, pipeline):
        received = []
        pipeline.subscribe(received.append)

        # 60 fps for one second at full scale: a beat every 7th frame (> 100ms)
        for i in range(60):
            pipeline.process(make_frame(255, i * FRAME))

        timestamps = [event.timestamp for event in received]
        assert len(timestamps) >= 8
        assert np.all(np.diff(timestamps) > 0.1)

    def test_quiet_frames_emit_no_beats(self, pipeline):
        received = []
        pipeline.subscribe(received.append)
        for i in range(30):
            result = pipeline.process(make_frame(50, i * FRAME))
            assert result.feature_frame.last_beat_event is None
        assert received == []

    def test_beat_event_on_feature_frame(self, pipeline):
        result = pipeline.process(make_frame(255, 0.0))
        assert result.feature_frame.is_beat
        assert result.feature_frame.last_beat_event.bpm == 120.0

    def test_unsubscribe(self, pipeline):
        received = []
        pipeline.subscribe(received.append)
        pipeline.unsubscribe(received.append)
        pipeline.process(make_frame(255, 0.0))
        assert received == []


class TestTempoGate:
    def test_energy_accumulates_before_gate(self, pipeline):
        """Energy bookkeeping runs every frame, even with no beats at all."""
        for i in range(20):
            pipeline.process(make_frame(10, i * FRAME))
        assert len(pipeline.tempo.energy_history) == 20
        assert len(pipeline.beat_detector.history) == 0

    def test_estimate_gated_on_beat_history(self, small_config):
        pipeline = AnalysisPipeline(small_config.replace(sample_rate=60.0))
        # Enough evenly spaced peaks for a 150 BPM estimate
        pipeline.tempo.peak_history.extend(range(0, 24 * 12, 24))

        # Five beats: gate still closed
        t = 0.0
        for _ in range(5):
            pipeline.process(make_frame(255, t))
            t += 0.2
        assert pipeline.current_bpm == 120.0

        # Sixth beat opens the gate
        pipeline.process(make_frame(255, t))
        assert len(pipeline.beat_detector.history) == 6
        assert pipeline.current_bpm != 120.0
        assert 60.0 <= pipeline.current_bpm <= 200.0

    def test_reported_bpm_stays_in_range(self, pipeline):
        rng = np.random.default_rng(5)
        for i in range(600):
            level = 255 if i % 9 == 0 else float(rng.uniform(0, 120))
            result = pipeline.process(make_frame(level, i * FRAME))
            assert 60.0 <= result.feature_frame.current_bpm <= 200.0


class TestPerformance:
    def test_slow_frames_reduce_complexity(self, pipeline):
        # 30 fps against a 60 fps target
        values = [pipeline.process(make_frame(0, i / 30.0)).complexity for i in range(200)]
        assert values[-1] == pytest.approx(0.3)
        assert all(0.3 <= v <= 1.0 for v in values)

    def test_on_target_frames_keep_complexity(self, pipeline):
        for i in range(120):
            result = pipeline.process(make_frame(0, i * FRAME))
        assert result.complexity == 1.0
        assert pipeline.complexity.current_fps == pytest.approx(60.0)

    def test_long_gap_is_one_slow_frame(self, pipeline):
        pipeline.process(make_frame(0, 0.0))
        result = pipeline.process(make_frame(0, 3600.0))
        assert result.complexity == pytest.approx(0.95)
        assert pipeline.complexity.fps_history.last == pytest.approx(1.0 / 3600.0)

    def test_explicit_previous_timestamp(self, pipeline):
        pipeline.process(make_frame(0, 10.0), previous_timestamp=9.9)
        assert pipeline.complexity.fps_history.last == pytest.approx(10.0)

    def test_duplicate_timestamp_reuses_cadence(self, pipeline):
        pipeline.process(make_frame(0, 0.0))
        pipeline.process(make_frame(0, 0.05))
        pipeline.process(make_frame(0, 0.05))
        assert pipeline.complexity.fps_history.last == pytest.approx(20.0)

    def test_adaptive_rendering_disabled(self, small_config):
        pipeline = AnalysisPipeline(small_config.replace(adaptive_rendering=False))
        for i in range(100):
            result = pipeline.process(make_frame(0, i / 10.0))
        assert result.complexity == 1.0
        assert pipeline.complexity.current_fps == pytest.approx(10.0)

        pipeline.set_adaptive_rendering(True)
        assert pipeline.process(make_frame(0, 10.0)).complexity < 1.0

    def test_reset_complexity(self, pipeline):
        for i in range(50):
            pipeline.process(make_frame(0, i / 20.0))
        pipeline.reset_complexity()
        assert pipeline.current_complexity == 1.0


class TestMissingFrames:
    def test_none_frame_is_noop(self, pipeline):
        pipeline.process(make_frame(255, 0.0))
        before = pipeline.smoother.snapshot()
        beats = len(pipeline.beat_detector.history)

        result = pipeline.process(None)

        assert result.feature_frame.average_volume == 0.0
        assert result.feature_frame.last_beat_event is None
        assert result.feature_frame.raw_frequency_bins.size == 0
        np.testing.assert_array_equal(result.feature_frame.smoothed_spectrum, before)
        assert len(pipeline.beat_detector.history) == beats

    def test_missing_spectrum_advances_performance(self, pipeline):
        pipeline.process(make_frame(0, 0.0))
        pipeline.process(make_frame(0, 1.0 / 20.0))
        window = len(pipeline.complexity.fps_history)

        malformed = SampleFrame(frequency_bins=None, time_bins=None, timestamp=0.1)
        pipeline.process(malformed)

        assert len(pipeline.complexity.fps_history) == window + 1
        assert pipeline.complexity.fps_history.last == pytest.approx(20.0)

    def test_missing_frame_keeps_bpm(self, pipeline):
        pipeline.tempo.set_bpm(140.0)
        result = pipeline.process(None)
        assert result.feature_frame.current_bpm == 140.0

    def test_frame_index_advances(self, pipeline):
        pipeline.process(make_frame(0, 0.0))
        result = pipeline.process(None)
        assert result.feature_frame.frame_index == 1
        assert pipeline.frame_count == 2


class TestControls:
    def test_observer_failure_does_not_break_frame(self, pipeline, caplog):
        def broken(event):
            raise ValueError("observer failed")

        pipeline.subscribe(broken)
        with caplog.at_level(logging.ERROR):
            result = pipeline.process(make_frame(255, 0.0))
        assert result.feature_frame.is_beat
        assert "observer failed" in caplog.text

    def test_detect_instant_bpm(self, small_config):
        pipeline = AnalysisPipeline(small_config.replace(sample_rate=128.0))
        waveform = np.full(128, 128.0)
        waveform[[20, 60, 100]] = 250.0
        frame = SampleFrame.from_sequences(np.zeros(64), waveform, timestamp=0.0)
        pipeline.process(frame)

        # 3 peaks in one second -> 180 BPM
        assert pipeline.detect_instant_bpm() == pytest.approx(180.0)
        assert pipeline.current_bpm == pytest.approx(180.0)

    def test_instant_bpm_threshold_independent_of_peak_ratio(self, small_config):
        config = small_config.replace(sample_rate=128.0, peak_ratio=0.6)
        waveform = np.full(128, 128.0)
        waveform[[20, 60, 100]] = 166.0  # ~0.65 normalized
        frame = SampleFrame.from_sequences(np.zeros(64), waveform, timestamp=0.0)

        pipeline = AnalysisPipeline(config)
        pipeline.process(frame)
        assert pipeline.detect_instant_bpm() == pytest.approx(60.0)

        lowered = AnalysisPipeline(config.replace(instant_bpm_threshold=0.6))
        lowered.process(frame)
        assert lowered.detect_instant_bpm() == pytest.approx(180.0)

    def test_detect_instant_bpm_without_frames(self, pipeline):
        assert pipeline.detect_instant_bpm() == 120.0

    def test_metadata(self, pipeline):
        pipeline.process(make_frame(255, 0.0))
        pipeline.process(make_frame(255, FRAME))
        metadata = pipeline.get_metadata()
        assert metadata["bpm"] == 120.0
        assert metadata["volume"] == pytest.approx(1.0)
        assert metadata["complexity"] == 1.0
        assert metadata["frame_count"] == 2
        assert metadata["beat_count"] == 1
        assert metadata["adaptive_rendering"] is True
        assert metadata["fps"] == pytest.approx(60.0)

    def test_reset(self, pipeline):
        received = []
        pipeline.subscribe(received.append)
        for i in range(30):
            pipeline.process(make_frame(255, i * FRAME))
        pipeline.reset()

        assert np.all(pipeline.smoother.spectrum == 0.0)
        assert len(pipeline.beat_detector.history) == 0
        assert len(pipeline.tempo.energy_history) == 0
        assert pipeline.frame_count == 0
        assert pipeline.current_complexity == 1.0

        # Observers survive a reset
        pipeline.process(make_frame(255, 100.0))
        assert received[-1].timestamp == 100.0

    def test_close_drops_observers(self, pipeline):
        received = []
        pipeline.subscribe(received.append)
        pipeline.close()
        pipeline.process(make_frame(255, 0.0))
        assert received == []

    def test_level_logging(self, small_config, caplog):
        pipeline = AnalysisPipeline(small_config.replace(log_interval_frames=10))
        with caplog.at_level(logging.DEBUG, logger="viz_analysis.pipeline"):
            for i in range(21):
                pipeline.process(make_frame(128, i * FRAME))
        lines = [r for r in caplog.records if "Audio levels" in r.getMessage()]
        assert len(lines) == 2


def test_default_config_pipeline():
    """Default configuration runs with 1024-bin frames."""
    pipeline = AnalysisPipeline(AnalysisConfig(log_interval_frames=0))
    result = pipeline.process(make_frame(200, 0.0, bins=1024))
    assert result.feature_frame.smoothed_spectrum.shape == (1024,)
