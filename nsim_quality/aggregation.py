"""
Similarity Aggregation Module
=============================

Reduces per-patch, per-band NSIM values to the file-level similarity.

    fvnsim[b] = mean over valid patches of clip(nsim[p, b], 0, 1)
    vnsim     = mean over bands of fvnsim

Both reductions are unweighted arithmetic means. Results are ordered by
reference position before reduction, so the outcome does not depend on the
order in which patches finished.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import numpy as np

from .alignment import AlignmentResult
from .errors import AlignmentError


@dataclass(frozen=True, eq=False)
class PatchSimilarity:
    """Similarity of one aligned reference/degraded patch pair"""
    band_similarity: np.ndarray     # NSIM per band, in [-1, 1]
    deg_band_energy: np.ndarray     # mean degraded energy per band
    alignment: AlignmentResult

    @property
    def similarity(self) -> float:
        return float(np.mean(self.band_similarity))

    @property
    def ref_start_frame(self) -> int:
        return self.alignment.reference.start

    def to_dict(self) -> Dict:
        ref = self.alignment.reference
        deg = self.alignment.degraded
        return {
            "similarity": self.similarity,
            "ref_patch_start_time": ref.start_time,
            "ref_patch_end_time": ref.end_time,
            "deg_patch_start_time": deg.start_time,
            "deg_patch_end_time": deg.end_time,
            "offset_frames": self.alignment.offset,
            "band_similarity": self.band_similarity.tolist(),
        }


@dataclass(frozen=True, eq=False)
class SimilarityMatrix:
    """(patch, band) NSIM values of all valid patches, in reference order"""
    values: np.ndarray
    deg_energy: np.ndarray
    patches: List[PatchSimilarity] = field(default_factory=list)

    @classmethod
    def from_patches(cls, patch_sims: Sequence[PatchSimilarity]) -> "SimilarityMatrix":
        if not patch_sims:
            raise AlignmentError("No valid patches to aggregate.")
        ordered = sorted(patch_sims, key=lambda p: p.ref_start_frame)
        return cls(
            values=np.vstack([p.band_similarity for p in ordered]),
            deg_energy=np.vstack([p.deg_band_energy for p in ordered]),
            patches=list(ordered),
        )

    @property
    def num_patches(self) -> int:
        return self.values.shape[0]

    @property
    def num_bands(self) -> int:
        return self.values.shape[1]


@dataclass(frozen=True, eq=False)
class AggregateSimilarity:
    """File-level similarity"""
    vnsim: float
    fvnsim: np.ndarray
    fstdnsim: np.ndarray
    fvdegenergy: np.ndarray
    num_patches: int

    def to_dict(self) -> Dict:
        return {
            "vnsim": self.vnsim,
            "fvnsim": self.fvnsim.tolist(),
            "fstdnsim": self.fstdnsim.tolist(),
            "fvdegenergy": self.fvdegenergy.tolist(),
            "num_patches": self.num_patches,
        }


def aggregate(matrix: SimilarityMatrix) -> AggregateSimilarity:
    """Mean-reduce a similarity matrix across patches, then across bands"""
    clipped = np.clip(matrix.values, 0.0, 1.0)
    fvnsim = np.mean(clipped, axis=0)
    return AggregateSimilarity(
        vnsim=float(np.mean(fvnsim)),
        fvnsim=fvnsim,
        fstdnsim=np.std(clipped, axis=0),
        fvdegenergy=np.mean(matrix.deg_energy, axis=0),
        num_patches=matrix.num_patches,
    )
