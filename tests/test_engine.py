"""
Tests for the quality engine: lifecycle, API behaviour and scoring properties.
"""

from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from conftest import add_noise, make_test_signal
from nsim_quality import (
    AudioSignal,
    EngineConfig,
    QualityEngine,
    create,
    measure,
)
from nsim_quality.engine import EngineState
from nsim_quality.errors import (
    AlignmentError,
    EngineStateError,
    InsufficientDataError,
    InvalidConfigError,
    InvalidSignalError,
    MissingSampleRateError,
    ModelNotFoundError,
    UnsupportedSampleRateError,
)
from nsim_quality.regression import ExponentialFitRegressor


class TestCreate:
    def test_missing_sample_rate(self):
        with pytest.raises(MissingSampleRateError) as excinfo:
            create({})
        assert str(excinfo.value) == "INVALID_ARGUMENT: Audio info must be supplied for config."

    def test_unsupported_sample_rate(self):
        with pytest.raises(UnsupportedSampleRateError) as excinfo:
            create({"sample_rate": 44100})
        assert str(excinfo.value) == (
            "INVALID_ARGUMENT: Currently, 48k is the only sample rate supported by "
            "ViSQOL Audio. See README for details of overriding."
        )

    def test_override_allows_44100(self):
        with create({"sample_rate": 44100, "allow_unsupported_sample_rates": True}) as engine:
            assert engine.state is EngineState.READY
            assert engine.mode.label == "audio"

    def test_numpy_sample_rate(self):
        with create({"sample_rate": np.int64(48000)}) as engine:
            assert engine.state is EngineState.READY
            assert type(engine.config.sample_rate) is int

    def test_non_numeric_worker_count(self):
        with pytest.raises(InvalidConfigError):
            create({"sample_rate": 48000, "n_workers": "4"})

    def test_nonexistent_model(self):
        with pytest.raises(ModelNotFoundError) as excinfo:
            create({"sample_rate": 48000, "svr_model_path": "non_existant.txt"})
        assert str(excinfo.value) == (
            "INVALID_ARGUMENT: Failed to load the SVR model file: non_existant.txt"
        )

    def test_speech_mode_at_16k(self):
        with create(EngineConfig(sample_rate=16000, use_speech_scoring=True)) as engine:
            assert engine.mode.label == "speech-scaled"
            assert engine.num_bands == 24
            assert isinstance(engine._mapper.regressor, ExponentialFitRegressor)

    def test_failed_create_leaves_engine_unconfigured(self):
        engine = QualityEngine()
        with pytest.raises(MissingSampleRateError):
            engine.create({})
        assert engine.state is EngineState.UNCONFIGURED
        engine.create({"sample_rate": 48000})
        assert engine.state is EngineState.READY
        engine.close()


class TestLifecycle:
    def test_measure_before_create(self, audio_signal):
        with pytest.raises(EngineStateError):
            QualityEngine().measure(audio_signal, audio_signal)

    def test_measure_after_close(self, audio_signal):
        engine = create({"sample_rate": 48000})
        engine.close()
        assert engine.state is EngineState.CLOSED
        with pytest.raises(EngineStateError):
            engine.measure(audio_signal, audio_signal)

    def test_create_twice(self):
        engine = create({"sample_rate": 48000})
        with pytest.raises(EngineStateError):
            engine.create({"sample_rate": 48000})
        engine.close()

    def test_context_manager_closes(self):
        with create({"sample_rate": 48000}) as engine:
            pass
        assert engine.state is EngineState.CLOSED


class TestMeasureErrors:
    def test_rate_mismatch(self, audio_engine):
        sig = AudioSignal(make_test_signal(4.0, 44100), 44100)
        with pytest.raises(InvalidSignalError):
            audio_engine.measure(sig, sig)

    def test_empty_signal(self, audio_engine, audio_signal):
        with pytest.raises(InvalidSignalError, match="Degraded signal is empty"):
            audio_engine.measure(audio_signal, np.zeros(0))

    def test_shorter_than_window(self, audio_engine, audio_signal):
        with pytest.raises(InvalidSignalError, match="Reference signal"):
            audio_engine.measure(np.zeros(1000), audio_signal)

    def test_stereo_rejected(self, audio_engine, audio_signal):
        stereo = np.stack([audio_signal, audio_signal], axis=1)
        with pytest.raises(InvalidSignalError, match="mono"):
            audio_engine.measure(stereo, audio_signal)

    def test_fewer_frames_than_patch(self, audio_engine):
        short = make_test_signal(0.5, 48000)
        with pytest.raises(InsufficientDataError) as excinfo:
            audio_engine.measure(short, short)
        assert str(excinfo.value).startswith("OUT_OF_RANGE: ")

    def test_engine_usable_after_measure_error(self, audio_engine, audio_signal):
        with pytest.raises(InvalidSignalError):
            audio_engine.measure(audio_signal, np.zeros(0))
        assert audio_engine.measure(audio_signal, audio_signal).vnsim == pytest.approx(1.0)


class TestPatchSkipping:
    @pytest.fixture(scope="class")
    def strict_engine(self):
        engine = create({"sample_rate": 48000, "search_window_radius": 0,
                         "use_global_alignment": False})
        yield engine
        engine.close()

    def test_uncovered_patches_skipped(self, strict_engine, audio_signal):
        degraded = audio_signal[:96000]
        score = strict_engine.measure(audio_signal, degraded)
        assert score.skipped_patches == 1
        assert score.similarity.num_patches == 1

    def test_all_patches_fail(self, strict_engine, audio_signal):
        degraded = audio_signal[:67200]
        with pytest.raises(AlignmentError, match="All 2 reference patches failed"):
            strict_engine.measure(audio_signal, degraded)


class TestAudioScoring:
    def test_identical_signals(self, audio_engine, audio_signal):
        score = audio_engine.measure(audio_signal, audio_signal)
        assert score.vnsim == pytest.approx(1.0, abs=1e-6)
        np.testing.assert_allclose(score.fvnsim, 1.0, atol=1e-6)
        assert len(score.fvnsim) == 32
        assert score.moslqo == pytest.approx(4.7, abs=1e-5)
        assert score.skipped_patches == 0
        assert score.global_shift_samples == 0
        assert all(p.alignment.offset == 0 for p in score.patch_similarities)

    def test_noise_lowers_score(self, audio_engine, audio_signal):
        clean = audio_engine.measure(audio_signal, audio_signal)
        mild = audio_engine.measure(audio_signal, add_noise(audio_signal, 20.0))
        severe = audio_engine.measure(audio_signal, add_noise(audio_signal, 0.0))
        assert clean.moslqo > mild.moslqo > severe.moslqo
        assert clean.vnsim > mild.vnsim > severe.vnsim
        assert 0.0 <= severe.vnsim <= 1.0
        assert 1.0 <= severe.moslqo <= 5.0

    def test_gain_is_compensated(self, audio_engine, audio_signal):
        score = audio_engine.measure(audio_signal, 0.5 * audio_signal)
        assert score.vnsim == pytest.approx(1.0, abs=1e-6)

    def test_delay_is_compensated(self, audio_engine, audio_signal):
        delayed = np.concatenate([np.zeros(4800), audio_signal])
        score = audio_engine.measure(audio_signal, delayed)
        assert score.global_shift_samples == 4800
        assert score.vnsim == pytest.approx(1.0, abs=1e-6)

    def test_measure_is_idempotent(self, audio_engine, audio_signal):
        degraded = add_noise(audio_signal, 10.0)
        first = audio_engine.measure(audio_signal, degraded)
        second = audio_engine.measure(audio_signal, degraded)
        assert first.moslqo == second.moslqo
        assert first.vnsim == second.vnsim
        np.testing.assert_array_equal(first.fvnsim, second.fvnsim)

    def test_concurrent_measures(self, audio_engine, audio_signal):
        degraded = add_noise(audio_signal, 10.0)
        expected = audio_engine.measure(audio_signal, degraded).moslqo
        with ThreadPoolExecutor(max_workers=3) as pool:
            scores = list(pool.map(lambda _: measure(audio_engine, audio_signal, degraded), range(3)))
        assert all(s.moslqo == expected for s in scores)

    def test_single_worker_matches_pool(self, audio_engine, audio_signal):
        degraded = add_noise(audio_signal, 10.0)
        with create({"sample_rate": 48000, "n_workers": 1}) as serial:
            assert serial.measure(audio_signal, degraded).moslqo == (
                audio_engine.measure(audio_signal, degraded).moslqo
            )

    def test_unscaled_flag_without_speech_is_audio_mode(self, audio_engine, audio_signal):
        degraded = add_noise(audio_signal, 10.0)
        with create({"sample_rate": 48000, "use_unscaled_speech_mos_mapping": True}) as flagged:
            assert flagged.mode.label == "audio"
            assert flagged.measure(audio_signal, degraded).moslqo == (
                audio_engine.measure(audio_signal, degraded).moslqo
            )

    def test_to_dict(self, audio_engine, audio_signal):
        score = audio_engine.measure(audio_signal, audio_signal)
        info = score.to_dict(include_patches=True)
        assert info["mode"] == "audio"
        assert len(info["center_freq_bands"]) == 32
        assert len(info["patch_sims"]) == score.similarity.num_patches
        starts = [p["ref_patch_start_time"] for p in info["patch_sims"]]
        assert starts == sorted(starts)
        assert "patch_sims" not in score.to_dict()


class TestSpeechScoring:
    def test_identical_scaled_is_max(self, speech_engine, speech_signal):
        score = speech_engine.measure(speech_signal, speech_signal)
        assert score.vnsim == pytest.approx(1.0, abs=1e-6)
        assert score.moslqo == pytest.approx(5.0, abs=1e-4)
        assert len(score.fvnsim) == 24

    def test_identical_unscaled_is_constant_below_max(self, speech_signal):
        config = {"sample_rate": 16000, "use_speech_scoring": True,
                  "use_unscaled_speech_mos_mapping": True}
        with create(config) as engine:
            first = engine.measure(speech_signal, speech_signal).moslqo
            second = engine.measure(speech_signal, speech_signal).moslqo
        expected = 1.15595 + np.exp(4.68378 * (1.0 - 0.76761))
        assert first == second
        assert first == pytest.approx(expected, abs=1e-4)
        assert first < 5.0

    def test_noise_lowers_speech_score(self, speech_engine, speech_signal):
        noisy = speech_engine.measure(speech_signal, add_noise(speech_signal, 5.0))
        assert noisy.moslqo < 5.0
        assert noisy.vnsim < 1.0

    def test_silent_tail_is_not_scored(self, speech_engine, speech_signal):
        padded = np.concatenate([speech_signal, np.zeros(32000)])
        score = speech_engine.measure(padded, padded)
        hop = 320
        starts = [p.alignment.reference.start for p in score.patch_similarities]
        assert starts
        assert all(start * hop < len(speech_signal) for start in starts)
