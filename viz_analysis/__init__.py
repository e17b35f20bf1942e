"""
AudioViz Analysis
Per-frame audio feature extraction and adaptive complexity control for visualizers.
"""

from .beat_detector import BeatDetector, BeatState
from .complexity import ComplexityController
from .config import AnalysisConfig, get_preset
from .models import BeatEvent, FeatureFrame, PipelineResult, SampleFrame
from .pipeline import AnalysisPipeline
from .ringbuffer import BoundedHistory
from .spectral import SpectralSmoother, average_volume
from .tempo import TempoEstimator, estimate_instant_bpm

__all__ = [
    'AnalysisConfig',
    'AnalysisPipeline',
    'BeatDetector',
    'BeatEvent',
    'BeatState',
    'BoundedHistory',
    'ComplexityController',
    'FeatureFrame',
    'PipelineResult',
    'SampleFrame',
    'SpectralSmoother',
    'TempoEstimator',
    'average_volume',
    'estimate_instant_bpm',
    'get_preset',
]
