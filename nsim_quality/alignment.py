"""
Alignment Module
================

Reference-degraded alignment at two scales.

Features:
- Global alignment: cross-correlation lag between whole signals, capped
- Patch alignment: bounded local search for the best-matching degraded
  patch around each reference patch's nominal position
- Smallest-offset tie-break, so equal matches never drift

The patch search window is bounded, not global: it compensates for codec
latency without matching repeated structures elsewhere in the signal.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Tuple

import numpy as np
from scipy import signal

from .audio import AudioSignal
from .errors import AlignmentError
from .patches import Patch, PatchExtractor
from .similarity import patch_similarity
from .spectrogram import Spectrogram

logger = logging.getLogger(__name__)


# ============================================================================
# GLOBAL ALIGNMENT
# ============================================================================

def cross_correlate(reference: np.ndarray,
                    degraded: np.ndarray,
                    max_shift_samples: int) -> Tuple[int, float]:
    """
    Find the time shift of ``degraded`` relative to ``reference``.

    Args:
        reference: Reference audio array
        degraded: Degraded audio array
        max_shift_samples: Maximum allowed shift magnitude

    Returns:
        Tuple of (shift_samples, correlation_score); positive shift means
        the degraded signal is delayed
    """
    if len(reference) == 0 or len(degraded) == 0:
        return 0, 0.0

    correlation = signal.correlate(degraded, reference, mode='full')
    peak_idx = int(np.argmax(correlation))
    shift = peak_idx - len(reference) + 1

    norm_factor = np.sqrt(np.sum(reference ** 2) * np.sum(degraded ** 2))
    corr_score = float(correlation[peak_idx] / norm_factor) if norm_factor > 0 else 0.0

    if abs(shift) > max_shift_samples:
        logger.warning(f"Shift {shift} exceeds max {max_shift_samples}, capping")
        shift = max(min(shift, max_shift_samples), -max_shift_samples)

    logger.debug(f"Cross-correlation: shift={shift} samples, score={corr_score:.4f}")
    return shift, corr_score


def apply_shift(degraded: np.ndarray, shift: int) -> np.ndarray:
    """
    Undo a measured delay.

    Positive shift drops the leading samples of the degraded signal,
    negative shift pads it with zeros.
    """
    if shift > 0:
        return degraded[shift:]
    if shift < 0:
        return np.pad(degraded, (-shift, 0), mode='constant')
    return degraded


def globally_align(reference: AudioSignal, degraded: AudioSignal,
                   max_lag_seconds: float) -> Tuple[AudioSignal, int]:
    """
    Align the degraded signal to the reference by its cross-correlation lag.

    Returns:
        Tuple of (aligned_degraded, shift_samples)
    """
    max_shift = int(max_lag_seconds * reference.sample_rate)
    shift, _ = cross_correlate(reference.samples, degraded.samples, max_shift)
    if shift == 0:
        return degraded, 0
    return degraded.with_samples(apply_shift(degraded.samples, shift)), shift


# ============================================================================
# PATCH ALIGNMENT
# ============================================================================

@dataclass(frozen=True)
class AlignmentResult:
    """Best degraded match for one reference patch"""
    reference: Patch
    degraded: Patch
    offset: int             # frames relative to the nominal position
    score: float            # pre-score of the chosen candidate

    def to_dict(self) -> Dict:
        return {
            "reference_start_frame": self.reference.start,
            "degraded_start_frame": self.degraded.start,
            "offset_frames": self.offset,
            "score": self.score,
        }


class PatchAligner:
    """
    Bounded local search for each reference patch.

    Candidates at offsets in [-radius, radius] around the reference patch's
    start are scored with the NSIM pre-score; the maximum wins, ties going
    to the smallest absolute offset.
    """

    def __init__(self, extractor: PatchExtractor, search_window_radius: int,
                 intensity_range: float):
        self.extractor = extractor
        self.radius = search_window_radius
        self.intensity_range = intensity_range

    def pre_score(self, reference: Patch, candidate: Patch) -> float:
        return float(np.mean(patch_similarity(reference, candidate, self.intensity_range)))

    def align(self, reference: Patch, degraded: Spectrogram) -> AlignmentResult:
        """
        Raises:
            AlignmentError: no candidate patch inside the degraded spectrogram
        """
        best = None
        for offset, candidate in self.extractor.degraded_candidates(
                degraded, reference.start, self.radius):
            score = self.pre_score(reference, candidate)
            # candidates arrive in tie-break order: only a strictly better score wins
            if best is None or score > best.score:
                best = AlignmentResult(reference, candidate, offset, score)

        if best is None:
            raise AlignmentError(
                f"Degraded spectrogram ({degraded.num_frames} frames) does not cover "
                f"the search window of the reference patch at frame {reference.start}."
            )

        logger.debug(f"Patch @{reference.start}: offset={best.offset}, score={best.score:.4f}")
        return best
