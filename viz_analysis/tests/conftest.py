"""Shared fixtures for the analysis test suite.

Frames are built with explicit timestamps so no test depends on wall-clock
time.
"""

import numpy as np
import pytest

from viz_analysis.config import AnalysisConfig
from viz_analysis.models import SampleFrame
from viz_analysis.pipeline import AnalysisPipeline


def make_frame(level: float, timestamp: float, bins: int = 64, time_bins: int = 128) -> SampleFrame:
    """Frame with every frequency bin at ``level`` (0-255) and a flat waveform."""
    return SampleFrame.from_sequences(
        frequency_bins=np.full(bins, level),
        time_bins=np.full(time_bins, 128.0),
        timestamp=timestamp,
    )


@pytest.fixture
def frame_factory():
    """Factory for uniform-level sample frames."""
    return make_frame


@pytest.fixture
def small_config():
    """64-bin configuration with level logging disabled."""
    return AnalysisConfig(bin_count=64, log_interval_frames=0)


@pytest.fixture
def pipeline(small_config):
    """Pipeline over 64 bins."""
    return AnalysisPipeline(small_config)
