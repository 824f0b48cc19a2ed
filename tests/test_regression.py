"""
Unit tests for the regression model store.
"""

import pickle
from pathlib import Path

import numpy as np
import pytest
from sklearn.linear_model import LinearRegression

from nsim_quality.config import DEFAULT_AUDIO_MODEL
from nsim_quality.engine import create
from nsim_quality.errors import ModelLoadError, ModelNotFoundError, ModelParseError
from nsim_quality.regression import (
    ExponentialFitRegressor,
    LibsvmRegressor,
    SklearnRegressor,
    load_regressor,
)

RBF_MODEL = """svm_type epsilon_svr
kernel_type rbf
gamma 0.5
nr_class 2
total_sv 2
rho -1
SV
2 1:1 2:0
-1 1:0 2:1
"""


class TestLibsvm:
    def test_parse_header(self):
        model = LibsvmRegressor.parse(RBF_MODEL)
        assert model.kernel_type == "rbf"
        assert model.svm_type == "epsilon_svr"
        assert model.n_support == 2
        assert model.n_features == 2
        assert model.gamma == 0.5

    def test_rbf_prediction(self):
        model = LibsvmRegressor.parse(RBF_MODEL)
        x = np.array([1.0, 0.0])
        expected = 2 * 1.0 - 1 * np.exp(-0.5 * 2.0) + 1
        assert model.predict(x) == pytest.approx(expected)

    def test_sparse_features_padded(self):
        model = LibsvmRegressor.parse(
            "svm_type nu_svr\nkernel_type linear\nrho 0\nSV\n1 2:3\n"
        )
        assert model.n_features == 2
        assert model.predict([5.0, 2.0, 7.0]) == pytest.approx(6.0)

    @pytest.mark.parametrize("text,detail", [
        ("svm_type nu_svr\nkernel_type linear\nrho 0\n", "missing 'SV'"),
        ("svm_type c_svc\nkernel_type linear\nrho 0\nSV\n1 1:1\n", "unsupported svm_type"),
        ("svm_type nu_svr\nkernel_type precomputed\nrho 0\nSV\n1 1:1\n", "unsupported kernel_type"),
        ("svm_type nu_svr\nkernel_type linear\nSV\n1 1:1\n", "missing 'rho'"),
        ("svm_type nu_svr\nkernel_type linear\nrho 0\nSV\n", "no support vectors"),
        ("svm_type nu_svr\nkernel_type linear\nrho 0\ntotal_sv 3\nSV\n1 1:1\n", "total_sv"),
    ])
    def test_malformed(self, text, detail):
        with pytest.raises(ValueError, match=detail):
            LibsvmRegressor.parse(text)

    def test_bundled_model(self):
        model = load_regressor(DEFAULT_AUDIO_MODEL)
        assert isinstance(model, LibsvmRegressor)
        assert model.n_features == 32
        assert model.predict(np.ones(32)) == pytest.approx(4.7)
        assert model.predict(np.zeros(32)) == pytest.approx(1.1)


class TestSklearn:
    @pytest.fixture
    def pickled_model(self, tmp_path):
        rng = np.random.default_rng(0)
        X = rng.uniform(0, 1, (50, 32))
        y = 1.0 + 4.0 * X.mean(axis=1)
        estimator = LinearRegression().fit(X, y)
        path = tmp_path / "model.pkl"
        with open(path, "wb") as f:
            pickle.dump(estimator, f)
        return path

    def test_load_pickled_estimator(self, pickled_model):
        model = load_regressor(str(pickled_model))
        assert isinstance(model, SklearnRegressor)
        assert model.n_features == 32
        assert model.predict(np.ones(32)) == pytest.approx(5.0, abs=1e-6)

    def test_object_without_predict(self, tmp_path):
        path = tmp_path / "bad.pkl"
        with open(path, "wb") as f:
            pickle.dump({"not": "a model"}, f)
        with pytest.raises(ModelParseError):
            load_regressor(str(path))

    def test_corrupt_pickle(self, tmp_path):
        path = tmp_path / "corrupt.pkl"
        path.write_bytes(pickle.dumps({"weights": list(range(100))})[:12])
        with pytest.raises(ModelParseError):
            load_regressor(str(path))


class TestModelStore:
    def test_missing_file(self):
        with pytest.raises(ModelNotFoundError) as excinfo:
            load_regressor("non_existant.txt")
        assert str(excinfo.value) == (
            "INVALID_ARGUMENT: Failed to load the SVR model file: non_existant.txt"
        )

    def test_directory_is_not_a_model(self, tmp_path):
        with pytest.raises(ModelNotFoundError):
            load_regressor(str(tmp_path))

    def test_garbage_text(self, tmp_path):
        path = tmp_path / "model.txt"
        path.write_text("hello world\n")
        with pytest.raises(ModelParseError) as excinfo:
            load_regressor(str(path))
        assert str(excinfo.value).startswith(
            f"INVALID_ARGUMENT: Failed to parse the SVR model file: {path}"
        )

    def test_unreadable_text_model(self, tmp_path, monkeypatch):
        path = tmp_path / "model.txt"
        path.write_text(Path(DEFAULT_AUDIO_MODEL).read_text())

        def fail_read(self, *args, **kwargs):
            raise PermissionError(13, "Permission denied", str(self))

        monkeypatch.setattr(Path, "read_text", fail_read)
        with pytest.raises(ModelParseError, match="Permission denied"):
            load_regressor(str(path))

    def test_unreadable_pickled_model(self, tmp_path, monkeypatch):
        path = tmp_path / "model.pkl"
        path.write_bytes(b"")

        def fail_open(*args, **kwargs):
            raise OSError(5, "Input/output error")

        monkeypatch.setattr("nsim_quality.regression.open", fail_open, raising=False)
        with pytest.raises(ModelParseError, match="Input/output error"):
            load_regressor(str(path))

    def test_unreadable_model_fails_engine_creation(self, tmp_path, monkeypatch):
        path = tmp_path / "model.txt"
        path.write_text("")

        def fail_read(self, *args, **kwargs):
            raise OSError(5, "Input/output error")

        monkeypatch.setattr(Path, "read_text", fail_read)
        with pytest.raises(ModelLoadError):
            create({"sample_rate": 48000, "svr_model_path": str(path)})

    def test_binary_text_model(self, tmp_path):
        path = tmp_path / "model.txt"
        path.write_bytes(b"\xff\xfe\x00\x81")
        with pytest.raises(ModelParseError):
            load_regressor(str(path))


class TestExponentialFit:
    def test_formula(self):
        fit = ExponentialFitRegressor(1.0, 2.0, 0.5)
        assert fit.raw(0.5) == pytest.approx(2.0)
        assert fit.predict([1.0]) == pytest.approx(1.0 + np.exp(1.0))

    def test_scale(self):
        fit = ExponentialFitRegressor(1.0, 2.0, 0.5, scale=2.0)
        assert fit.predict([0.5]) == pytest.approx(4.0)
        assert fit.n_features == 1
