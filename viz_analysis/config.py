"""
Analysis configuration.

Provides:
- A type-safe configuration dataclass, static for a pipeline's lifetime
- Pre-tuned presets
- Loading/saving from JSON and overrides from environment
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class AnalysisConfig:
    """Analysis pipeline configuration."""

    # Spectrum
    bin_count: int = 1024  # fftSize / 2
    smoothing: float = 0.8  # Weight of previous smoothed value (alpha)

    # Beat detection
    beat_threshold: float = 0.7  # Average volume that counts as a beat
    beat_refractory: float = 0.100  # Seconds between accepted beats
    beat_history_size: int = 20
    tempo_gate_beats: int = 5  # Beats required (exclusive) before tempo estimates

    # Tempo estimation
    tempo_window_size: int = 4096  # Energy samples kept
    peak_ratio: float = 0.7  # Peak threshold relative to window max
    min_peaks: int = 10  # Peaks required (exclusive) before estimating
    peak_history_size: int = 256
    bpm_history_size: int = 10
    sample_rate: float = 44100.0
    min_bpm: float = 60.0
    max_bpm: float = 200.0
    default_bpm: float = 120.0
    instant_bpm_threshold: float = 0.7  # Waveform level (0-1) a peak must exceed

    # Adaptive rendering
    target_fps: float = 60.0
    performance_window: int = 60
    min_complexity: float = 0.3
    max_complexity: float = 1.0
    backoff_factor: float = 0.95
    recovery_factor: float = 1.02
    backoff_ratio: float = 0.8
    recovery_ratio: float = 0.95
    adaptive_rendering: bool = True

    # Diagnostics
    log_interval_frames: int = 60  # Frames between level log lines (0 = off)

    def __post_init__(self):
        for name in (
            "bin_count",
            "beat_history_size",
            "tempo_window_size",
            "peak_history_size",
            "bpm_history_size",
            "performance_window",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be positive, got: {getattr(self, name)}")

        if not 0.0 <= self.smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got: {self.smoothing}")
        if self.beat_refractory < 0:
            raise ValueError(f"beat_refractory must be >= 0, got: {self.beat_refractory}")
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got: {self.sample_rate}")
        if self.min_bpm >= self.max_bpm:
            raise ValueError(f"min_bpm ({self.min_bpm}) must be below max_bpm ({self.max_bpm})")
        if not self.min_bpm <= self.default_bpm <= self.max_bpm:
            raise ValueError(f"default_bpm {self.default_bpm} outside [{self.min_bpm}, {self.max_bpm}]")
        if not 0.0 <= self.instant_bpm_threshold <= 1.0:
            raise ValueError(
                f"instant_bpm_threshold must be in [0, 1], got: {self.instant_bpm_threshold}"
            )
        if self.target_fps <= 0:
            raise ValueError(f"target_fps must be positive, got: {self.target_fps}")
        if not 0.0 < self.min_complexity <= self.max_complexity <= 1.0:
            raise ValueError(
                f"Complexity bounds must satisfy 0 < min <= max <= 1, "
                f"got: [{self.min_complexity}, {self.max_complexity}]"
            )
        if self.log_interval_frames < 0:
            raise ValueError(f"log_interval_frames must be >= 0, got: {self.log_interval_frames}")

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AnalysisConfig":
        """Create from dictionary (unknown keys are ignored)."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def replace(self, **changes) -> "AnalysisConfig":
        """Copy with some fields changed."""
        data = self.to_dict()
        data.update(changes)
        return AnalysisConfig.from_dict(data)

    @classmethod
    def from_env(cls, prefix: str = "AUDIOVIZ_", base: Optional["AnalysisConfig"] = None) -> "AnalysisConfig":
        """
        Load overrides from environment variables.

        Each field maps to PREFIX + FIELD_NAME in upper case, e.g.
        AUDIOVIZ_BEAT_THRESHOLD=0.6.
        """
        data = (base or cls()).to_dict()
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            current = data[f.name]
            if isinstance(current, bool):
                data[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(current, int):
                data[f.name] = int(raw)
            else:
                data[f.name] = float(raw)
        return cls.from_dict(data)


# Pre-tuned presets for different hosts and material
PRESETS: Dict[str, AnalysisConfig] = {
    "default": AnalysisConfig(),
    "sensitive": AnalysisConfig(
        beat_threshold=0.5,  # Quieter material still triggers beats
        smoothing=0.7,  # Faster spectral response
        peak_ratio=0.6,
    ),
    "relaxed": AnalysisConfig(
        beat_threshold=0.8,  # Only loud hits count
        beat_refractory=0.25,
        smoothing=0.9,
    ),
    "low_power": AnalysisConfig(
        bin_count=256,
        tempo_window_size=1024,
        target_fps=30.0,
        min_complexity=0.2,
    ),
}


def get_preset(name: str) -> AnalysisConfig:
    """Get a preset by name, returns 'default' if not found."""
    return PRESETS.get(name.lower(), PRESETS["default"])


def list_presets() -> List[str]:
    """List available preset names."""
    return list(PRESETS.keys())


# Default config file location
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "audioviz" / "analysis.json"


def load_config(path: Optional[Path] = None) -> AnalysisConfig:
    """Load configuration from file or return defaults."""
    if path is None:
        path = DEFAULT_CONFIG_PATH
    path = Path(path)
    if not path.exists():
        return AnalysisConfig()

    with open(path) as f:
        data = json.load(f)

    # Support a nested {"analysis": {...}} layout as well as a flat one
    if isinstance(data.get("analysis"), dict):
        data = data["analysis"]
    logger.debug(f"Loaded analysis config from {path}")
    return AnalysisConfig.from_dict(data)


def save_config(config: AnalysisConfig, path: Optional[Path] = None) -> None:
    """Save configuration to file."""
    if path is None:
        path = DEFAULT_CONFIG_PATH
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump({"analysis": config.to_dict()}, f, indent=2)
