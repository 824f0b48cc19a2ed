"""
Quality Mapping Module
======================

Maps aggregate similarity to MOS-LQO.

Variants:
- Audio: regression model over the per-band vector (fvnsim)
- Speech, scaled: exponential fit over vnsim, normalized so a perfect
  match scores exactly the maximum MOS
- Speech, unscaled: the raw exponential fit (a perfect match scores ~4.13)

All outputs are clamped to [MIN_MOS, MAX_MOS].
"""

import logging
from abc import ABC, abstractmethod

import numpy as np

from .aggregation import AggregateSimilarity
from .config import (
    MAX_MOS, MIN_MOS, SPEECH_FIT_A, SPEECH_FIT_B, SPEECH_FIT_X0, ModeBundle,
)
from .errors import ModelParseError
from .regression import (
    ExponentialFitRegressor, Regressor, SklearnRegressor, load_regressor,
)

logger = logging.getLogger(__name__)


def clamp_mos(score: float) -> float:
    return float(min(max(score, MIN_MOS), MAX_MOS))


class QualityMapper(ABC):
    """AggregateSimilarity -> MOS-LQO"""

    def __init__(self, regressor: Regressor):
        self.regressor = regressor

    @abstractmethod
    def features(self, similarity: AggregateSimilarity) -> np.ndarray:
        raise NotImplementedError

    def predict_quality(self, similarity: AggregateSimilarity) -> float:
        raw = self.regressor.predict(self.features(similarity))
        score = clamp_mos(raw)
        logger.debug(f"{type(self).__name__}: raw={raw:.5f}, moslqo={score:.5f}")
        return score


class SvrQualityMapper(QualityMapper):
    """Audio mode: regression over fvnsim"""

    def features(self, similarity: AggregateSimilarity) -> np.ndarray:
        return similarity.fvnsim


class SpeechQualityMapper(QualityMapper):
    """Speech mode: exponential fit over vnsim"""

    def __init__(self, scale_to_max_mos: bool = True):
        fit = ExponentialFitRegressor(SPEECH_FIT_A, SPEECH_FIT_B, SPEECH_FIT_X0)
        if scale_to_max_mos:
            fit.scale = MAX_MOS / fit.raw(1.0)
        super().__init__(fit)
        self.scale_to_max_mos = scale_to_max_mos

    def features(self, similarity: AggregateSimilarity) -> np.ndarray:
        return np.array([similarity.vnsim])


def build_mapper(mode: ModeBundle) -> QualityMapper:
    """
    Construct the mapper for a resolved mode, loading any model now.

    Raises:
        ModelLoadError: model missing, unparsable, or wider than the band count
    """
    if mode.is_speech:
        return SpeechQualityMapper(scale_to_max_mos=mode.scale_to_max_mos)

    regressor = load_regressor(mode.model_path)
    expected = regressor.n_features
    bands = mode.params.num_bands
    # sparse libsvm models may use fewer features; dense estimators need all
    if expected is not None:
        dense = isinstance(regressor, SklearnRegressor)
        if expected > bands or (dense and expected != bands):
            raise ModelParseError(
                mode.model_path,
                f"model expects {expected} features but the analysis has {bands} bands",
            )
    return SvrQualityMapper(regressor)
