"""
Offline frame source: float PCM -> SampleFrames.

Mirrors what a browser analyser node hands a visualizer each tick: a byte
spectrum (Blackman window, FFT magnitude with temporal smoothing, mapped
from [min_db, max_db] onto 0-255) and a byte waveform (128 = silence).
Used by the CLI and tests to drive the pipeline from audio files; it does
not talk to audio devices.
"""

import logging
from pathlib import Path
from typing import Iterator, Optional, Tuple, Union

import numpy as np
from scipy.fft import rfft
from scipy.io import wavfile
from scipy.signal import get_window

from viz_analysis.models import SampleFrame

logger = logging.getLogger(__name__)


def byte_time_domain_data(samples: np.ndarray) -> np.ndarray:
    """Map float samples (-1..1) to bytes, 128 * (1 + x) clipped to 0-255."""
    samples = np.asarray(samples, dtype=np.float64)
    return np.clip(np.floor(128.0 * (1.0 + samples)), 0, 255)


class ByteAnalyser:
    """
    Stateful byte-spectrum analyser.

    Keeps the smoothed magnitude spectrum between calls, so successive
    frames behave like consecutive reads from a live analyser.
    """

    def __init__(
        self,
        fft_size: int = 2048,
        smoothing_time_constant: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ):
        """
        Args:
            fft_size: FFT length (power of two); yields fft_size / 2 bins
            smoothing_time_constant: Weight of the previous magnitude (0-1)
            min_db: Level mapped to byte 0
            max_db: Level mapped to byte 255
        """
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got: {fft_size}")
        if min_db >= max_db:
            raise ValueError(f"min_db ({min_db}) must be below max_db ({max_db})")

        self.fft_size = fft_size
        self.bin_count = fft_size // 2
        self.smoothing_time_constant = smoothing_time_constant
        self.min_db = min_db
        self.max_db = max_db

        self._window = get_window("blackman", fft_size)
        self._magnitudes = np.zeros(self.bin_count, dtype=np.float64)

    def frequency_data(self, samples: np.ndarray) -> np.ndarray:
        """
        Byte spectrum of the most recent fft_size samples.

        Shorter input is zero-padded at the front.
        """
        block = np.zeros(self.fft_size, dtype=np.float64)
        samples = np.asarray(samples, dtype=np.float64)[-self.fft_size:]
        if samples.size:
            block[-samples.size:] = samples

        spectrum = np.abs(rfft(block * self._window))[: self.bin_count] / self.fft_size
        tau = self.smoothing_time_constant
        self._magnitudes = tau * self._magnitudes + (1.0 - tau) * spectrum

        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(self._magnitudes)
        scaled = (db - self.min_db) * (255.0 / (self.max_db - self.min_db))
        return np.clip(np.floor(np.nan_to_num(scaled, neginf=0.0)), 0, 255)

    def reset(self):
        """Forget the smoothed magnitudes."""
        self._magnitudes[:] = 0.0


def iter_sample_frames(
    audio: np.ndarray,
    sample_rate: int,
    fps: float = 60.0,
    fft_size: int = 2048,
    analyser: Optional[ByteAnalyser] = None,
) -> Iterator[SampleFrame]:
    """
    Yield one SampleFrame per video frame of a mono signal.

    Frame k covers the fft_size samples ending at k / fps seconds and is
    stamped with that time.
    """
    if fps <= 0:
        raise ValueError(f"fps must be positive, got: {fps}")
    if analyser is None:
        analyser = ByteAnalyser(fft_size=fft_size)

    audio = np.asarray(audio, dtype=np.float64)
    duration = audio.size / float(sample_rate)
    n_frames = int(duration * fps)

    for k in range(1, n_frames + 1):
        timestamp = k / fps
        end = min(audio.size, int(round(timestamp * sample_rate)))
        start = max(0, end - analyser.fft_size)
        window = audio[start:end]

        yield SampleFrame.from_sequences(
            frequency_bins=analyser.frequency_data(window),
            time_bins=byte_time_domain_data(window[-analyser.fft_size:]),
            timestamp=timestamp,
        )


def load_wav(path: Union[str, Path]) -> Tuple[np.ndarray, int]:
    """
    Read a WAV file as mono float64 in -1..1.

    Returns:
        (audio, sample_rate)
    """
    sample_rate, data = wavfile.read(str(path))

    if np.issubdtype(data.dtype, np.integer):
        info = np.iinfo(data.dtype)
        if info.min == 0:
            # Unsigned 8-bit PCM is offset by 128
            audio = (data.astype(np.float64) - (info.max + 1) / 2) / ((info.max + 1) / 2)
        else:
            audio = data.astype(np.float64) / float(-info.min)
    else:
        audio = data.astype(np.float64)

    # Convert stereo to mono by averaging channels
    if audio.ndim > 1:
        audio = audio.mean(axis=1)

    logger.debug(f"Loaded {path}: {audio.size} samples @ {sample_rate}Hz")
    return audio, int(sample_rate)
