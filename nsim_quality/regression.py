"""
Regression Model Store
======================

Pre-trained regressors mapping similarity features to a quality score.

The engine depends only on the ``Regressor.predict(features) -> float``
capability; concrete techniques vary behind it:

- LibsvmRegressor: libsvm text models (epsilon-SVR / nu-SVR)
- SklearnRegressor: pickled scikit-learn estimators
- ExponentialFitRegressor: closed-form exponential fit (speech mode)

``load_regressor`` distinguishes a missing model file (ModelNotFoundError)
from an unreadable one (ModelParseError).
"""

import logging
import math
import pickle
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import numpy as np

from .errors import ModelNotFoundError, ModelParseError

logger = logging.getLogger(__name__)

PICKLE_SUFFIXES = (".pkl", ".pickle")


class Regressor(ABC):
    """Feature vector -> scalar score"""

    @property
    def n_features(self) -> Optional[int]:
        """Number of features the model was trained on, if known"""
        return None

    @abstractmethod
    def predict(self, features: Sequence[float]) -> float:
        raise NotImplementedError


# ============================================================================
# LIBSVM TEXT MODELS
# ============================================================================

class LibsvmRegressor(Regressor):
    """
    Support vector regression model in libsvm's text format.

        f(x) = sum_i coef_i * K(sv_i, x) - rho
    """

    SUPPORTED_SVM_TYPES = ("epsilon_svr", "nu_svr")
    SUPPORTED_KERNELS = ("linear", "polynomial", "rbf", "sigmoid")

    def __init__(self, support_vectors: np.ndarray, coefs: np.ndarray, rho: float,
                 kernel_type: str = "rbf", gamma: float = 0.0, coef0: float = 0.0,
                 degree: int = 3, svm_type: str = "nu_svr"):
        if kernel_type not in self.SUPPORTED_KERNELS:
            raise ValueError(f"Unsupported kernel_type: {kernel_type}")
        self.support_vectors = np.asarray(support_vectors, dtype=np.float64)
        self.coefs = np.asarray(coefs, dtype=np.float64)
        self.rho = float(rho)
        self.kernel_type = kernel_type
        self.gamma = float(gamma)
        self.coef0 = float(coef0)
        self.degree = int(degree)
        self.svm_type = svm_type

    @property
    def n_features(self) -> int:
        return self.support_vectors.shape[1]

    @property
    def n_support(self) -> int:
        return self.support_vectors.shape[0]

    def _kernel(self, x: np.ndarray, svs: np.ndarray) -> np.ndarray:
        if self.kernel_type == "linear":
            return svs @ x
        if self.kernel_type == "polynomial":
            return (self.gamma * (svs @ x) + self.coef0) ** self.degree
        if self.kernel_type == "rbf":
            return np.exp(-self.gamma * np.sum((svs - x) ** 2, axis=1))
        return np.tanh(self.gamma * (svs @ x) + self.coef0)

    def predict(self, features: Sequence[float]) -> float:
        x = np.asarray(features, dtype=np.float64).reshape(-1)
        svs = self.support_vectors
        # libsvm vectors are sparse: absent features are zero
        width = max(len(x), svs.shape[1])
        if len(x) < width:
            x = np.pad(x, (0, width - len(x)))
        if svs.shape[1] < width:
            svs = np.pad(svs, ((0, 0), (0, width - svs.shape[1])))
        return float(np.dot(self.coefs, self._kernel(x, svs)) - self.rho)

    @classmethod
    def parse(cls, text: str) -> "LibsvmRegressor":
        """
        Parse libsvm model text.

        Raises:
            ValueError: malformed or unsupported model
        """
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        header: Dict[str, List[str]] = {}
        body_start = None

        for i, line in enumerate(lines):
            if line == "SV":
                body_start = i + 1
                break
            key, *values = line.split()
            header[key] = values

        if body_start is None:
            raise ValueError("missing 'SV' section")

        svm_type = _single(header, "svm_type")
        if svm_type not in cls.SUPPORTED_SVM_TYPES:
            raise ValueError(f"unsupported svm_type '{svm_type}'")
        kernel_type = _single(header, "kernel_type")
        if kernel_type not in cls.SUPPORTED_KERNELS:
            raise ValueError(f"unsupported kernel_type '{kernel_type}'")

        rho = float(_single(header, "rho"))
        gamma = float(header.get("gamma", ["0"])[0])
        coef0 = float(header.get("coef0", ["0"])[0])
        degree = int(header.get("degree", ["3"])[0])

        coefs = []
        rows = []
        for line in lines[body_start:]:
            coef, *pairs = line.split()
            coefs.append(float(coef))
            row = {}
            for pair in pairs:
                index, value = pair.split(":")
                index = int(index)
                if index < 1:
                    raise ValueError(f"feature index must be >= 1, got {index}")
                row[index] = float(value)
            rows.append(row)

        if not rows:
            raise ValueError("model has no support vectors")
        if "total_sv" in header and int(_single(header, "total_sv")) != len(rows):
            raise ValueError(
                f"total_sv is {_single(header, 'total_sv')} but {len(rows)} vectors found"
            )

        n_features = max((max(row) for row in rows if row), default=0)
        support_vectors = np.zeros((len(rows), n_features))
        for i, row in enumerate(rows):
            for index, value in row.items():
                support_vectors[i, index - 1] = value

        return cls(support_vectors, np.array(coefs), rho, kernel_type=kernel_type,
                   gamma=gamma, coef0=coef0, degree=degree, svm_type=svm_type)


def _single(header: Dict[str, List[str]], key: str) -> str:
    if key not in header or not header[key]:
        raise ValueError(f"missing '{key}'")
    return header[key][0]


# ============================================================================
# SCIKIT-LEARN ESTIMATORS
# ============================================================================

class SklearnRegressor(Regressor):
    """Wraps any fitted estimator exposing ``predict(X)``"""

    def __init__(self, estimator):
        if not hasattr(estimator, "predict"):
            raise TypeError(f"{type(estimator).__name__} has no predict()")
        self.estimator = estimator

    @property
    def n_features(self) -> Optional[int]:
        return getattr(self.estimator, "n_features_in_", None)

    def predict(self, features: Sequence[float]) -> float:
        x = np.asarray(features, dtype=np.float64).reshape(1, -1)
        return float(np.ravel(self.estimator.predict(x))[0])


# ============================================================================
# CLOSED-FORM FIT
# ============================================================================

class ExponentialFitRegressor(Regressor):
    """
    score = scale * (a + exp(b * (x - x0)))

    Uses only the first feature.
    """

    def __init__(self, a: float, b: float, x0: float, scale: float = 1.0):
        self.a = a
        self.b = b
        self.x0 = x0
        self.scale = scale

    @property
    def n_features(self) -> int:
        return 1

    def raw(self, x: float) -> float:
        return self.a + math.exp(self.b * (x - self.x0))

    def predict(self, features: Sequence[float]) -> float:
        return self.scale * self.raw(float(np.asarray(features, dtype=np.float64).reshape(-1)[0]))


# ============================================================================
# MODEL STORE
# ============================================================================

def load_regressor(path: str) -> Regressor:
    """
    Load a regressor from disk.

    ``.pkl``/``.pickle`` files are unpickled scikit-learn estimators (only
    load files you trust); anything else is parsed as a libsvm text model.

    Raises:
        ModelNotFoundError: path does not exist or is not a file
        ModelParseError: file exists but cannot be read or is not a usable model
    """
    model_path = Path(path)
    if not model_path.is_file():
        raise ModelNotFoundError(str(path))

    if model_path.suffix.lower() in PICKLE_SUFFIXES:
        try:
            with open(model_path, "rb") as f:
                estimator = pickle.load(f)
            regressor = SklearnRegressor(estimator)
        except (OSError, pickle.UnpicklingError, EOFError, AttributeError,
                ImportError, IndexError, TypeError, ValueError) as e:
            raise ModelParseError(str(path), str(e)) from e
    else:
        try:
            text = model_path.read_text()
            regressor = LibsvmRegressor.parse(text)
        except (OSError, UnicodeDecodeError, ValueError) as e:
            raise ModelParseError(str(path), str(e)) from e

    logger.info(f"Loaded {type(regressor).__name__} from {path}")
    return regressor
