"""
Audio Signal Module
===================

Mono signal container handed to the engine, plus level utilities.

Features:
- AudioSignal: float64 samples + sample rate, validated on construction
- Sound pressure level computation
- Level matching of the degraded signal to the reference
"""

import logging
from dataclasses import dataclass
from typing import Union

import numpy as np

from .errors import InvalidSignalError

logger = logging.getLogger(__name__)

# Reference pressure for SPL (20 micropascal)
SPL_REFERENCE = 20e-6


@dataclass(frozen=True, eq=False)
class AudioSignal:
    """Mono PCM signal"""
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        samples = np.asarray(self.samples, dtype=np.float64)
        if samples.ndim == 2 and 1 in samples.shape:
            samples = samples.reshape(-1)
        if samples.ndim != 1:
            raise InvalidSignalError(
                f"Signal must be mono (1-D), got array of shape {samples.shape}. "
                "Downmix before measuring."
            )
        if not np.all(np.isfinite(samples)):
            raise InvalidSignalError("Signal contains NaN or infinite samples.")
        if self.sample_rate is None or self.sample_rate <= 0:
            raise InvalidSignalError(f"Invalid sample rate: {self.sample_rate!r}")

        samples = samples.copy()
        samples.flags.writeable = False
        object.__setattr__(self, "samples", samples)
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def with_samples(self, samples: np.ndarray) -> "AudioSignal":
        return AudioSignal(samples, self.sample_rate)


SignalLike = Union[AudioSignal, np.ndarray, list]


def as_signal(value: SignalLike, sample_rate: int) -> AudioSignal:
    """
    Wrap raw samples at the engine rate, or check an AudioSignal's rate.

    Raises:
        InvalidSignalError: rate mismatch or malformed samples
    """
    if isinstance(value, AudioSignal):
        if value.sample_rate != sample_rate:
            raise InvalidSignalError(
                f"Signal sample rate {value.sample_rate} Hz does not match the "
                f"configured rate {sample_rate} Hz. Resample before measuring."
            )
        return value
    return AudioSignal(np.asarray(value), sample_rate)


def compute_spl(samples: np.ndarray) -> float:
    """
    Sound pressure level in dB re 20 uPa.

    Returns:
        SPL, or -inf for a silent signal
    """
    rms = np.sqrt(np.mean(np.square(samples))) if len(samples) else 0.0
    if rms <= 0:
        return -np.inf
    return float(20 * np.log10(rms / SPL_REFERENCE))


def scale_to_match_spl(reference: AudioSignal, degraded: AudioSignal) -> AudioSignal:
    """
    Scale the degraded signal so its SPL equals the reference SPL.

    Silent signals are returned unchanged.
    """
    ref_spl = compute_spl(reference.samples)
    deg_spl = compute_spl(degraded.samples)

    if not np.isfinite(ref_spl) or not np.isfinite(deg_spl):
        logger.warning("Silent signal, skipping level matching")
        return degraded

    scale_factor = 10 ** ((ref_spl - deg_spl) / 20)
    logger.debug(f"Level matching: ref={ref_spl:.2f} dB, deg={deg_spl:.2f} dB, gain={scale_factor:.4f}")
    return degraded.with_samples(degraded.samples * scale_factor)
