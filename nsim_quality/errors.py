"""
Error Taxonomy
==============

Every failure surfaced by the engine carries a stable error-kind prefix
followed by a human-readable description:

    INVALID_ARGUMENT: Audio info must be supplied for config.

Callers branch on the exception class (or ``kind``), never on message text.

Hierarchy:
- ConfigError: fatal to engine creation
- MeasureError: scoped to a single measure call
- EngineStateError: operation not valid in the engine's current state
"""

from typing import Optional


class QualityError(Exception):
    """Base class for all engine errors."""

    kind: str = "UNKNOWN"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigError(QualityError):
    kind = "INVALID_ARGUMENT"


class MissingSampleRateError(ConfigError):
    def __init__(self):
        super().__init__("Audio info must be supplied for config.")


class UnsupportedSampleRateError(ConfigError):
    def __init__(self, sample_rate: Optional[int] = None):
        super().__init__(
            "Currently, 48k is the only sample rate supported by ViSQOL Audio. "
            "See README for details of overriding."
        )
        self.sample_rate = sample_rate


class InvalidConfigError(ConfigError):
    pass


class ModelLoadError(ConfigError):
    """Regression model could not be loaded."""

    def __init__(self, message: str, path: str):
        super().__init__(message)
        self.path = path


class ModelNotFoundError(ModelLoadError):
    def __init__(self, path: str):
        super().__init__(f"Failed to load the SVR model file: {path}", path)


class ModelParseError(ModelLoadError):
    def __init__(self, path: str, detail: str):
        super().__init__(f"Failed to parse the SVR model file: {path} ({detail})", path)
        self.detail = detail


# ============================================================================
# MEASUREMENT ERRORS
# ============================================================================

class MeasureError(QualityError):
    pass


class InvalidSignalError(MeasureError):
    kind = "INVALID_ARGUMENT"


class InsufficientDataError(MeasureError):
    kind = "OUT_OF_RANGE"


class AlignmentError(MeasureError):
    kind = "FAILED_PRECONDITION"


# ============================================================================
# STATE ERRORS
# ============================================================================

class EngineStateError(QualityError):
    kind = "FAILED_PRECONDITION"
