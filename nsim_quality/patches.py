"""
Patch Extraction Module
=======================

Slices spectrograms into fixed-width time patches.

Features:
- Non-overlapping reference patches spanning the signal
- Lazy, restartable patch sequences (views, no copies)
- Degraded candidate patches within a bounded search window
- Voice-activity patch selection for speech mode
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Iterator, List, Optional

import numpy as np

from .errors import InsufficientDataError
from .spectrogram import Spectrogram

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Patch:
    """View of ``parent`` over frames [start, start + width)"""
    parent: Spectrogram
    start: int
    width: int

    @property
    def end(self) -> int:
        return self.start + self.width

    @property
    def data(self) -> np.ndarray:
        return self.parent.data[:, self.start:self.end]

    @property
    def start_time(self) -> float:
        return self.parent.frame_time(self.start)

    @property
    def end_time(self) -> float:
        return self.parent.frame_time(self.end)


class PatchSequence(Sequence):
    """
    Finite, restartable sequence of patches over one spectrogram.

    Patches are created on access; iterating twice yields equal patches.
    """

    def __init__(self, spectrogram: Spectrogram, starts: Sequence[int], width: int):
        self.spectrogram = spectrogram
        self.starts = [int(s) for s in starts]
        self.width = width

    def __len__(self) -> int:
        return len(self.starts)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return PatchSequence(self.spectrogram, self.starts[index], self.width)
        return Patch(self.spectrogram, self.starts[index], self.width)

    def __iter__(self) -> Iterator[Patch]:
        for start in self.starts:
            yield Patch(self.spectrogram, start, self.width)

    def __repr__(self) -> str:
        return f"PatchSequence(n={len(self)}, width={self.width}, starts={self.starts})"


class PatchExtractor:
    """
    Reference patch layout and degraded candidate search.

    Args:
        patch_size: Patch width in frames
        stride: Frames between consecutive reference patches
            (defaults to ``patch_size``, i.e. non-overlapping)
    """

    def __init__(self, patch_size: int, stride: Optional[int] = None):
        if patch_size < 1:
            raise ValueError(f"patch_size must be >= 1, got {patch_size}")
        self.patch_size = patch_size
        self.stride = stride or patch_size

    def check_coverage(self, spectrogram: Spectrogram, label: str = "Spectrogram"):
        if spectrogram.num_frames < self.patch_size:
            raise InsufficientDataError(
                f"{label} has {spectrogram.num_frames} frames, fewer than one "
                f"patch ({self.patch_size} frames)."
            )

    def reference_starts(self, num_frames: int) -> List[int]:
        """
        Patch start frames: first at half a patch, then every stride,
        stopping before the last full patch; a single patch at 0 if none fit.
        """
        starts = list(range(self.patch_size // 2, num_frames - self.patch_size, self.stride))
        if not starts:
            starts = [0]
        return starts

    def extract_reference(self, spectrogram: Spectrogram) -> PatchSequence:
        """
        Raises:
            InsufficientDataError: fewer frames than one patch
        """
        self.check_coverage(spectrogram, "Reference spectrogram")
        starts = self.reference_starts(spectrogram.num_frames)
        logger.debug(f"Extracted {len(starts)} reference patches of {self.patch_size} frames")
        return PatchSequence(spectrogram, starts, self.patch_size)

    def candidate_offsets(self, nominal: int, radius: int, num_frames: int) -> List[int]:
        """
        Offsets in [-radius, radius] whose patch lies inside ``num_frames``,
        ordered by (|offset|, offset): the alignment tie-break order.
        """
        last_start = num_frames - self.patch_size
        offsets = [
            d for d in range(-radius, radius + 1)
            if 0 <= nominal + d <= last_start
        ]
        return sorted(offsets, key=lambda d: (abs(d), d))

    def degraded_candidates(self, degraded: Spectrogram, nominal: int,
                            radius: int) -> Iterator[tuple]:
        """Yield (offset, patch) pairs in tie-break order."""
        for offset in self.candidate_offsets(nominal, radius, degraded.num_frames):
            yield offset, Patch(degraded, nominal + offset, self.patch_size)


def select_active_patches(patches: PatchSequence, power: Spectrogram,
                          relative_db: float = 40.0,
                          min_active_ratio: float = 0.3) -> PatchSequence:
    """
    Keep patches in which enough frames carry voice activity.

    A frame is active when its total energy is within ``relative_db`` of the
    loudest frame. When no patch qualifies, all patches are kept.

    Args:
        patches: Reference patches
        power: Reference power spectrogram (same frame grid)
        relative_db: Activity threshold below the loudest frame
        min_active_ratio: Fraction of active frames needed to keep a patch
    """
    frame_db = power.frame_energy_db()
    active = frame_db >= (np.max(frame_db) - relative_db)

    kept = [
        patch.start for patch in patches
        if np.mean(active[patch.start:patch.end]) >= min_active_ratio
    ]

    if not kept:
        logger.warning("No voice activity detected in any patch, keeping all patches")
        return patches

    if len(kept) < len(patches):
        logger.debug(f"VAD kept {len(kept)}/{len(patches)} reference patches")

    return PatchSequence(patches.spectrogram, kept, patches.width)
