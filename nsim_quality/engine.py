"""
Quality Engine
==============

Pipeline controller: validates configuration, owns the regression model,
and runs the similarity pipeline for each measure call.

States:
    UNCONFIGURED --create()--> READY --close()--> CLOSED

``measure`` is only valid in READY and may be called any number of times,
including concurrently; each call owns its spectrograms and patches.

Usage:
    engine = create({"sample_rate": 48000})
    score = engine.measure(reference_samples, degraded_samples)
    print(score.moslqo, score.vnsim)
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Dict, List, Optional

import numpy as np

from .aggregation import (
    AggregateSimilarity, PatchSimilarity, SimilarityMatrix, aggregate,
)
from .alignment import PatchAligner, globally_align
from .audio import SignalLike, as_signal, scale_to_match_spl
from .config import (
    ConfigLike, EngineConfig, ModeBundle, as_config, resolve_mode, validate_config,
)
from .errors import AlignmentError, EngineStateError, InvalidConfigError
from .patches import Patch, PatchExtractor, select_active_patches
from .quality import QualityMapper, build_mapper
from .similarity import patch_similarity
from .spectrogram import Spectrogram, SpectrogramBuilder, prepare_for_comparison

logger = logging.getLogger(__name__)


class EngineState(Enum):
    UNCONFIGURED = "unconfigured"
    READY = "ready"
    CLOSED = "closed"


@dataclass(frozen=True, eq=False)
class QualityScore:
    """Result of one measure call"""
    moslqo: float
    similarity: AggregateSimilarity
    center_freqs: np.ndarray
    mode: str
    skipped_patches: int = 0
    global_shift_samples: int = 0
    patch_similarities: List[PatchSimilarity] = field(default_factory=list)

    @property
    def vnsim(self) -> float:
        return self.similarity.vnsim

    @property
    def fvnsim(self) -> np.ndarray:
        return self.similarity.fvnsim

    @property
    def fstdnsim(self) -> np.ndarray:
        return self.similarity.fstdnsim

    @property
    def fvdegenergy(self) -> np.ndarray:
        return self.similarity.fvdegenergy

    def to_dict(self, include_patches: bool = False) -> Dict:
        result = {
            "moslqo": self.moslqo,
            "mode": self.mode,
            "skipped_patches": self.skipped_patches,
            "global_shift_samples": self.global_shift_samples,
            "center_freq_bands": self.center_freqs.tolist(),
        }
        result.update(self.similarity.to_dict())
        if include_patches:
            result["patch_sims"] = [p.to_dict() for p in self.patch_similarities]
        return result


class QualityEngine:
    """
    Reusable quality engine.

    Create through ``QualityEngine().create(config)`` or the module-level
    ``create(config)``; use as a context manager to release the model.
    """

    def __init__(self):
        self.state = EngineState.UNCONFIGURED
        self.config: Optional[EngineConfig] = None
        self.mode: Optional[ModeBundle] = None
        self._mapper: Optional[QualityMapper] = None
        self._builder: Optional[SpectrogramBuilder] = None
        self._extractor: Optional[PatchExtractor] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def create(self, config: ConfigLike) -> "QualityEngine":
        """
        Validate the configuration and load the model.

        Raises:
            MissingSampleRateError, UnsupportedSampleRateError,
            InvalidConfigError, ModelLoadError: engine stays UNCONFIGURED
            EngineStateError: engine already created or closed
        """
        if self.state is not EngineState.UNCONFIGURED:
            raise EngineStateError(f"Engine cannot be created from state '{self.state.value}'.")

        config = as_config(config)
        validate_config(config)
        mode = resolve_mode(config)
        mapper = build_mapper(mode)

        try:
            builder = SpectrogramBuilder(mode.params, config.sample_rate)
        except ValueError as e:
            raise InvalidConfigError(str(e)) from e

        self.config = config
        self.mode = mode
        self._mapper = mapper
        self._builder = builder
        self._extractor = PatchExtractor(mode.params.patch_size)
        self.state = EngineState.READY

        logger.info(
            f"QualityEngine ready: mode={mode.label}, sample_rate={config.sample_rate}, "
            f"bands={mode.params.num_bands}, config={config.config_hash}"
        )
        return self

    def close(self):
        """Release the model. The engine cannot be reused afterwards."""
        self._mapper = None
        self._builder = None
        self._extractor = None
        self.state = EngineState.CLOSED

    def __enter__(self) -> "QualityEngine":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    @property
    def num_bands(self) -> int:
        self._require_ready()
        return self.mode.params.num_bands

    def _require_ready(self):
        if self.state is not EngineState.READY:
            raise EngineStateError(
                f"Engine must be READY to measure, current state is '{self.state.value}'."
            )

    # =========================================================================
    # MEASUREMENT
    # =========================================================================

    def measure(self, reference: SignalLike, degraded: SignalLike) -> QualityScore:
        """
        Score a degraded signal against its reference.

        Args:
            reference: AudioSignal or 1-D samples at the configured rate
            degraded: AudioSignal or 1-D samples at the configured rate

        Returns:
            QualityScore

        Raises:
            InvalidSignalError: malformed, mismatched-rate or too-short signal
            InsufficientDataError: fewer frames than one patch
            AlignmentError: no reference patch could be aligned
        """
        self._require_ready()
        config = self.config
        params = self.mode.params

        ref = as_signal(reference, config.sample_rate)
        deg = as_signal(degraded, config.sample_rate)
        self._builder.validate(ref, "Reference signal")
        self._builder.validate(deg, "Degraded signal")

        shift = 0
        if config.use_global_alignment:
            deg, shift = globally_align(ref, deg, config.max_global_lag_seconds)
        deg = scale_to_match_spl(ref, deg)

        with ThreadPoolExecutor(max_workers=config.n_workers) as pool:
            ref_future = pool.submit(self._builder.build, ref, "Reference signal")
            deg_future = pool.submit(self._builder.build, deg, "Degraded signal")
            ref_power = ref_future.result()
            deg_power = deg_future.result()

            ref_spec, deg_spec = prepare_for_comparison(ref_power, deg_power, params.noise_floor_db)

            patches = self._extractor.extract_reference(ref_spec)
            self._extractor.check_coverage(deg_spec, "Degraded spectrogram")
            if params.use_vad:
                patches = select_active_patches(
                    patches, ref_power, params.vad_relative_db, params.vad_min_active_ratio
                )

            intensity_range = float(np.max(ref_spec.data))
            aligner = PatchAligner(self._extractor, config.search_window_radius, intensity_range)
            score_patch = partial(_score_patch, aligner=aligner, degraded=deg_spec,
                                  intensity_range=intensity_range)
            # map() is the barrier: every patch finishes before aggregation
            results = list(pool.map(score_patch, patches))

        valid = [r for r in results if r is not None]
        skipped = len(results) - len(valid)
        if not valid:
            raise AlignmentError(f"All {len(results)} reference patches failed alignment.")
        if skipped:
            logger.warning(f"Skipped {skipped}/{len(results)} patches that could not be aligned")

        similarity = aggregate(SimilarityMatrix.from_patches(valid))
        moslqo = self._mapper.predict_quality(similarity)

        logger.debug(
            f"Measured: moslqo={moslqo:.4f}, vnsim={similarity.vnsim:.4f}, "
            f"patches={len(valid)}, skipped={skipped}, shift={shift}"
        )

        return QualityScore(
            moslqo=moslqo,
            similarity=similarity,
            center_freqs=ref_spec.center_freqs,
            mode=self.mode.label,
            skipped_patches=skipped,
            global_shift_samples=shift,
            patch_similarities=sorted(valid, key=lambda p: p.ref_start_frame),
        )


def _score_patch(patch: Patch, aligner: PatchAligner, degraded: Spectrogram,
                 intensity_range: float) -> Optional[PatchSimilarity]:
    """Align and score one reference patch; None when it cannot be aligned."""
    try:
        alignment = aligner.align(patch, degraded)
    except AlignmentError as e:
        logger.debug(f"Patch at frame {patch.start} skipped: {e.message}")
        return None

    return PatchSimilarity(
        band_similarity=patch_similarity(alignment.reference, alignment.degraded, intensity_range),
        deg_band_energy=np.mean(alignment.degraded.data, axis=1),
        alignment=alignment,
    )


# ============================================================================
# ENTRY POINTS
# ============================================================================

def create(config: ConfigLike) -> QualityEngine:
    """Create a READY engine or raise a ConfigError."""
    return QualityEngine().create(config)


def measure(engine: QualityEngine, reference: SignalLike, degraded: SignalLike) -> QualityScore:
    """Run one measurement on a READY engine."""
    return engine.measure(reference, degraded)
