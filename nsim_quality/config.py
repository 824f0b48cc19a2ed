"""
Engine Configuration Module
===========================

FROZEN analysis parameters and engine settings.

Calibration constants (band counts, window sizes, noise floor, mapping fit)
are tunables sourced from the bundled model artifacts. Changing them shifts
absolute scores; do not modify without re-calibrating the model.

All settings are deterministic for reproducibility.
"""

import hashlib
import json
import numbers
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .errors import (
    InvalidConfigError,
    MissingSampleRateError,
    UnsupportedSampleRateError,
)

# ============================================================================
# FROZEN CONSTANTS - DO NOT MODIFY
# ============================================================================

SUPPORTED_SAMPLE_RATE = 48000

MIN_MOS = 1.0
MAX_MOS = 5.0

MODEL_DIR = Path(__file__).resolve().parent / "model"
DEFAULT_AUDIO_MODEL = str(MODEL_DIR / "libsvm_nu_svr_model.txt")

# Exponential fit of vnsim to MOS used in speech mode
SPEECH_FIT_A = 1.15595
SPEECH_FIT_B = 4.68378
SPEECH_FIT_X0 = 0.76761

CONFIG_VERSION = "1.0.0"


@dataclass(frozen=True)
class AnalysisParams:
    """
    Frozen spectral analysis parameters for one scoring mode.

    Speech favors finer time resolution over a narrower band range.
    """
    name: str
    num_bands: int
    min_freq: float
    max_freq: float
    window_duration: float          # seconds
    overlap: float                  # fraction of window
    patch_size: int                 # frames per patch
    noise_floor_db: float = 45.0    # floor relative to reference peak
    filter_duration: float = 0.1    # gammatone impulse response length (s)

    # Voice activity selection (speech only)
    use_vad: bool = False
    vad_relative_db: float = 40.0
    vad_min_active_ratio: float = 0.3

    def window_length(self, sample_rate: int) -> int:
        return int(round(self.window_duration * sample_rate))

    def hop_length(self, sample_rate: int) -> int:
        return max(1, int(round(self.window_length(sample_rate) * (1.0 - self.overlap))))


AUDIO_PARAMS = AnalysisParams(
    name="audio",
    num_bands=32,
    min_freq=50.0,
    max_freq=15000.0,
    window_duration=0.08,
    overlap=0.5,
    patch_size=30,
)

SPEECH_PARAMS = AnalysisParams(
    name="speech",
    num_bands=24,
    min_freq=50.0,
    max_freq=8000.0,
    window_duration=0.04,
    overlap=0.5,
    patch_size=20,
    use_vad=True,
)


@dataclass(frozen=True)
class EngineConfig:
    """
    Runtime configuration supplied by the caller.

    Validated once when the engine is created; immutable afterwards.
    Use ``dataclasses.replace`` (or ``with_options``) to derive variants.
    """
    sample_rate: Optional[int] = None
    use_speech_scoring: bool = False
    use_unscaled_speech_mos_mapping: bool = False
    svr_model_path: Optional[str] = None
    allow_unsupported_sample_rates: bool = False

    search_window_radius: int = 60        # frames either side of nominal
    use_global_alignment: bool = True
    max_global_lag_seconds: float = 1.0
    n_workers: int = 4                    # intra-measure thread pool

    def __post_init__(self):
        # numpy scalars become plain Python numbers so the config stays JSON serializable
        for name in ("sample_rate", "search_window_radius", "n_workers"):
            value = getattr(self, name)
            if isinstance(value, numbers.Integral) and not isinstance(value, bool):
                object.__setattr__(self, name, int(value))
        lag = self.max_global_lag_seconds
        if isinstance(lag, numbers.Real) and not isinstance(lag, bool):
            object.__setattr__(self, "max_global_lag_seconds", float(lag))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        """Build from a flat mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def with_options(self, **changes) -> "EngineConfig":
        return replace(self, **changes)

    @property
    def config_hash(self) -> str:
        """Deterministic hash of all settings"""
        config_str = json.dumps(asdict(self), sort_keys=True)
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    def to_dict(self) -> Dict:
        """Export configuration as dictionary"""
        return {
            "engine": asdict(self),
            "meta": {
                "config_hash": self.config_hash,
                "version": CONFIG_VERSION,
            },
        }

    def save(self, path: str):
        """Save configuration to JSON file"""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> "EngineConfig":
        """Load configuration from JSON file"""
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data.get("engine", data))


ConfigLike = Union[EngineConfig, Mapping[str, Any]]


def as_config(config: ConfigLike) -> EngineConfig:
    if isinstance(config, EngineConfig):
        return config
    if isinstance(config, Mapping):
        return EngineConfig.from_dict(config)
    raise InvalidConfigError(f"Unsupported config type: {type(config).__name__}")


# ============================================================================
# MODE RESOLUTION
# ============================================================================

@dataclass(frozen=True)
class ModeBundle:
    """Everything mode-dependent, resolved once at engine creation."""
    params: AnalysisParams
    sample_rate: int
    mapping: str                  # 'svr' or 'speech_fit'
    model_path: Optional[str]
    scale_to_max_mos: bool

    @property
    def is_speech(self) -> bool:
        return self.mapping == "speech_fit"

    @property
    def label(self) -> str:
        if not self.is_speech:
            return "audio"
        return "speech-scaled" if self.scale_to_max_mos else "speech-unscaled"


def validate_config(config: EngineConfig) -> None:
    """
    Validate caller configuration.

    Raises:
        MissingSampleRateError: no sample rate supplied
        UnsupportedSampleRateError: audio mode at a rate other than 48k
            without the override
        InvalidConfigError: out-of-range tunables
    """
    if not config.sample_rate:
        raise MissingSampleRateError()

    if (isinstance(config.sample_rate, bool) or not isinstance(config.sample_rate, numbers.Integral)
            or config.sample_rate < 0):
        raise InvalidConfigError(f"Sample rate must be a positive integer, got {config.sample_rate!r}")

    if (not config.use_speech_scoring
            and config.sample_rate != SUPPORTED_SAMPLE_RATE
            and not config.allow_unsupported_sample_rates):
        raise UnsupportedSampleRateError(config.sample_rate)

    for name in ("search_window_radius", "n_workers"):
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, numbers.Integral):
            raise InvalidConfigError(f"{name} must be an integer, got {value!r}")
    lag = config.max_global_lag_seconds
    if isinstance(lag, bool) or not isinstance(lag, numbers.Real):
        raise InvalidConfigError(f"max_global_lag_seconds must be a number, got {lag!r}")

    if config.search_window_radius < 0:
        raise InvalidConfigError(
            f"search_window_radius must be >= 0, got {config.search_window_radius}"
        )
    if config.n_workers < 1:
        raise InvalidConfigError(f"n_workers must be >= 1, got {config.n_workers}")
    if config.max_global_lag_seconds < 0:
        raise InvalidConfigError(
            f"max_global_lag_seconds must be >= 0, got {config.max_global_lag_seconds}"
        )


def resolve_mode(config: EngineConfig) -> ModeBundle:
    """
    Select the parameter bundle for a validated config.

    The unscaled-mapping flag only applies in speech mode; with speech
    scoring disabled, audio mode is used regardless.
    """
    if config.use_speech_scoring:
        return ModeBundle(
            params=SPEECH_PARAMS,
            sample_rate=config.sample_rate,
            mapping="speech_fit",
            model_path=None,
            scale_to_max_mos=not config.use_unscaled_speech_mos_mapping,
        )

    return ModeBundle(
        params=AUDIO_PARAMS,
        sample_rate=config.sample_rate,
        mapping="svr",
        model_path=config.svr_model_path or DEFAULT_AUDIO_MODEL,
        scale_to_max_mos=False,
    )
