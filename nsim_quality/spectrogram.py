"""
Gammatone Spectrogram Module
============================

Converts a mono signal into a perceptually banded time-frequency grid.

Features:
- Center frequencies equally spaced on the ERB-rate scale
- 4th-order gammatone impulse responses applied by FFT convolution
- Hann-windowed frame energy per band (power, non-negative)
- dB conversion and noise-floor normalization for comparison

The gammatone impulse response follows Patterson et al.:

    g(t) = t^(n-1) * exp(-2*pi*1.019*ERB(cf)*t) * cos(2*pi*cf*t)
"""

import logging
from dataclasses import dataclass
from typing import Tuple

import librosa
import numpy as np
from scipy.signal import fftconvolve

from .audio import AudioSignal
from .config import AnalysisParams
from .errors import InvalidSignalError

logger = logging.getLogger(__name__)

FILTER_ORDER = 4
POWER_FLOOR = 1e-20


def erb_bandwidth(cf):
    """Equivalent Rectangular Bandwidth [Glasberg & Moore, 1990]

    ERB(f) = 24.7 * (4.37 * f/1000 + 1)
    """
    return 24.7 * (4.37 * cf / 1000.0 + 1.0)


def erb_space(low_freq: float, high_freq: float, num_channels: int) -> np.ndarray:
    """Center frequencies equally spaced on the ERB-rate scale.

    Args:
        low_freq: Lowest center frequency (Hz).
        high_freq: Highest center frequency (Hz).
        num_channels: Number of channels.

    Returns:
        Array of center frequencies (Hz), sorted low to high.
    """
    erb_low = 9.265 * np.log(1 + low_freq / (24.7 * 9.265))
    erb_high = 9.265 * np.log(1 + high_freq / (24.7 * 9.265))

    erb_points = np.linspace(erb_low, erb_high, num_channels)
    return 24.7 * 9.265 * (np.exp(erb_points / 9.265) - 1)


def gammatone_impulse_response(cf: float, fs: int, duration: float = 0.1,
                               order: int = FILTER_ORDER) -> np.ndarray:
    """Impulse response of a single gammatone filter, normalized to unit energy."""
    t = np.arange(0, duration, 1.0 / fs)
    b = 2 * np.pi * 1.019 * erb_bandwidth(cf)
    response = (t ** (order - 1)) * np.exp(-b * t) * np.cos(2 * np.pi * cf * t)
    norm = np.sqrt(np.sum(response ** 2))
    return response / norm if norm > 0 else response


@dataclass(frozen=True, eq=False)
class Spectrogram:
    """
    Immutable (band x frame) grid of non-negative values.

    ``in_db`` is False for raw band power and True once the grid has been
    normalized to dB above the comparison noise floor.
    """
    data: np.ndarray
    center_freqs: np.ndarray
    sample_rate: int
    window_length: int
    hop_length: int
    in_db: bool = False

    def __post_init__(self):
        data = np.array(self.data, dtype=np.float64)
        data.flags.writeable = False
        freqs = np.array(self.center_freqs, dtype=np.float64)
        freqs.flags.writeable = False
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "center_freqs", freqs)

    @property
    def num_bands(self) -> int:
        return self.data.shape[0]

    @property
    def num_frames(self) -> int:
        return self.data.shape[1]

    def frame_time(self, frame: int) -> float:
        """Start time of a frame in seconds"""
        return frame * self.hop_length / self.sample_rate

    def frame_energy_db(self) -> np.ndarray:
        """Total energy per frame in dB (power spectrograms only)"""
        if self.in_db:
            raise ValueError("frame_energy_db requires a power spectrogram")
        return 10 * np.log10(np.maximum(self.data.sum(axis=0), POWER_FLOOR))

    def to_db(self) -> "Spectrogram":
        if self.in_db:
            return self
        return Spectrogram(
            data=10 * np.log10(np.maximum(self.data, POWER_FLOOR)),
            center_freqs=self.center_freqs,
            sample_rate=self.sample_rate,
            window_length=self.window_length,
            hop_length=self.hop_length,
            in_db=True,
        )


class GammatoneFilterbank:
    """
    ERB-spaced gammatone filterbank.

    Usage:
        gfb = GammatoneFilterbank(32, 50, 15000, 48000)
        bands = gfb.filter(signal)  # shape: (num_channels, num_samples)
    """

    def __init__(self, num_channels: int, freq_low: float, freq_high: float,
                 sample_rate: int, filter_duration: float = 0.1,
                 filter_order: int = FILTER_ORDER):
        self.num_channels = num_channels
        self.sample_rate = sample_rate
        self.freq_low = freq_low
        self.freq_high = min(freq_high, sample_rate / 2.0)
        self.filter_order = filter_order

        if self.freq_low >= self.freq_high:
            raise ValueError(
                f"Filterbank range {freq_low}-{self.freq_high} Hz is empty at {sample_rate} Hz"
            )

        self.center_freqs = erb_space(self.freq_low, self.freq_high, self.num_channels)
        self.impulse_responses = [
            gammatone_impulse_response(cf, self.sample_rate, duration=filter_duration,
                                       order=self.filter_order)
            for cf in self.center_freqs
        ]

    def filter(self, signal: np.ndarray) -> np.ndarray:
        """Apply the filterbank; row i is the output of channel i."""
        num_samples = len(signal)
        output = np.zeros((self.num_channels, num_samples))
        for i, ir in enumerate(self.impulse_responses):
            output[i, :] = fftconvolve(signal, ir, mode='full')[:num_samples]
        return output


class SpectrogramBuilder:
    """
    Build gammatone spectrograms for one analysis mode.

    The filterbank is computed once and reused for every signal at the
    configured sample rate.
    """

    def __init__(self, params: AnalysisParams, sample_rate: int):
        self.params = params
        self.sample_rate = sample_rate
        self.window_length = params.window_length(sample_rate)
        self.hop_length = params.hop_length(sample_rate)
        self.window = np.hanning(self.window_length)
        self.filterbank = GammatoneFilterbank(
            num_channels=params.num_bands,
            freq_low=params.min_freq,
            freq_high=params.max_freq,
            sample_rate=sample_rate,
            filter_duration=params.filter_duration,
        )
        logger.debug(
            f"SpectrogramBuilder({params.name}): {params.num_bands} bands, "
            f"window={self.window_length}, hop={self.hop_length}"
        )

    @property
    def center_freqs(self) -> np.ndarray:
        return self.filterbank.center_freqs

    def validate(self, signal: AudioSignal, label: str = "Signal"):
        """
        Raises:
            InvalidSignalError: empty signal or shorter than one window
        """
        if len(signal) == 0:
            raise InvalidSignalError(f"{label} is empty.")
        if len(signal) < self.window_length:
            raise InvalidSignalError(
                f"{label} has {len(signal)} samples, shorter than one analysis "
                f"window ({self.window_length} samples)."
            )

    def build(self, signal: AudioSignal, label: str = "Signal") -> Spectrogram:
        """
        Compute band power per frame.

        Raises:
            InvalidSignalError: empty signal or shorter than one window
        """
        self.validate(signal, label)

        filtered = self.filterbank.filter(signal.samples)
        num_frames = 1 + (len(signal) - self.window_length) // self.hop_length
        power = np.zeros((self.filterbank.num_channels, num_frames))

        for band in range(self.filterbank.num_channels):
            frames = librosa.util.frame(
                np.ascontiguousarray(filtered[band]),
                frame_length=self.window_length,
                hop_length=self.hop_length,
            )[:, :num_frames]
            power[band] = np.mean((frames * self.window[:, None]) ** 2, axis=0)

        return Spectrogram(
            data=power,
            center_freqs=self.center_freqs,
            sample_rate=self.sample_rate,
            window_length=self.window_length,
            hop_length=self.hop_length,
        )


def prepare_for_comparison(reference: Spectrogram, degraded: Spectrogram,
                           noise_floor_db: float) -> Tuple[Spectrogram, Spectrogram]:
    """
    Convert both spectrograms to dB above a shared noise floor.

    The floor sits ``noise_floor_db`` below the reference peak; values under
    it are raised to it and the floor is shifted to 0, so both grids are
    non-negative and the reference maximum equals ``noise_floor_db``.
    """
    ref_db = reference.to_db()
    deg_db = degraded.to_db()

    floor = float(np.max(ref_db.data)) - noise_floor_db

    def _normalize(spec: Spectrogram) -> Spectrogram:
        return Spectrogram(
            data=np.maximum(spec.data, floor) - floor,
            center_freqs=spec.center_freqs,
            sample_rate=spec.sample_rate,
            window_length=spec.window_length,
            hop_length=spec.hop_length,
            in_db=True,
        )

    return _normalize(ref_db), _normalize(deg_db)
