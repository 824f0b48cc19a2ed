"""
NSIM Quality - Perceptual Audio Quality Assessment
==================================================

Objective MOS-LQO estimation from a reference/degraded signal pair using
gammatone spectrograms, patch alignment and per-band NSIM similarity.

Modules:
- errors: Error taxonomy with stable error-kind prefixes
- config: Frozen analysis parameters and engine settings
- audio: Mono signal container and level matching
- spectrogram: ERB-spaced gammatone spectrograms
- patches: Reference patch extraction and voice activity selection
- alignment: Global lag removal and per-patch alignment search
- similarity: NSIM between spectrogram patches
- aggregation: Per-band and overall similarity
- regression: Pre-trained regression models
- quality: Similarity to MOS-LQO mapping
- engine: Quality engine (create / measure / close)
- preprocessing: Audio file loading
- orchestrator: Multiprocessing batch scorer
- reporting: Batch plots and summary report
- cli: Command-line runner
"""

from .audio import AudioSignal
from .config import EngineConfig
from .engine import QualityEngine, QualityScore, create, measure
from .errors import (
    AlignmentError,
    ConfigError,
    EngineStateError,
    InsufficientDataError,
    InvalidSignalError,
    MeasureError,
    ModelLoadError,
    QualityError,
)

__version__ = "1.0.0"

__all__ = [
    "AudioSignal",
    "EngineConfig",
    "QualityEngine",
    "QualityScore",
    "create",
    "measure",
    "QualityError",
    "ConfigError",
    "MeasureError",
    "ModelLoadError",
    "InvalidSignalError",
    "InsufficientDataError",
    "AlignmentError",
    "EngineStateError",
]
