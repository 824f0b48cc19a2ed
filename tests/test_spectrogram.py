"""
Unit tests for the gammatone filterbank and spectrogram builder.
"""

import numpy as np
import pytest

from nsim_quality.audio import AudioSignal
from nsim_quality.config import AUDIO_PARAMS, SPEECH_PARAMS
from nsim_quality.errors import InvalidSignalError
from nsim_quality.spectrogram import (
    GammatoneFilterbank,
    Spectrogram,
    SpectrogramBuilder,
    erb_bandwidth,
    erb_space,
    gammatone_impulse_response,
    prepare_for_comparison,
)


class TestErbScale:
    def test_erb_space_endpoints_inclusive(self):
        cfs = erb_space(50, 15000, 32)
        assert len(cfs) == 32
        assert cfs[0] == pytest.approx(50)
        assert cfs[-1] == pytest.approx(15000)

    def test_erb_space_increasing_and_denser_at_low_freq(self):
        cfs = erb_space(50, 8000, 24)
        steps = np.diff(cfs)
        assert np.all(steps > 0)
        assert steps[0] < steps[-1]

    def test_erb_bandwidth_at_1khz(self):
        assert erb_bandwidth(1000.0) == pytest.approx(132.639)

    def test_impulse_response_unit_energy(self):
        ir = gammatone_impulse_response(1000.0, 16000)
        assert np.sum(ir ** 2) == pytest.approx(1.0, rel=1e-6)


class TestGammatoneFilterbank:
    def test_output_shape(self):
        gfb = GammatoneFilterbank(8, 100, 4000, 16000)
        out = gfb.filter(np.random.default_rng(0).standard_normal(1600))
        assert out.shape == (8, 1600)

    def test_upper_frequency_capped_at_nyquist(self):
        gfb = GammatoneFilterbank(24, 50, 15000, 16000)
        assert gfb.freq_high == 8000
        assert gfb.center_freqs[-1] == pytest.approx(8000)

    def test_empty_range_rejected(self):
        with pytest.raises(ValueError):
            GammatoneFilterbank(8, 5000, 15000, 8000)


class TestSpectrogramBuilder:
    @pytest.fixture(scope="class")
    def builder(self):
        return SpectrogramBuilder(AUDIO_PARAMS, 48000)

    def test_shape(self, builder):
        n = 48000
        spec = builder.build(AudioSignal(np.random.default_rng(0).standard_normal(n), 48000))
        assert spec.num_bands == 32
        assert spec.num_frames == 1 + (n - 3840) // 1920
        assert np.all(spec.data >= 0)
        assert not spec.in_db

    def test_tone_peaks_in_nearest_band(self, builder):
        t = np.arange(48000) / 48000
        spec = builder.build(AudioSignal(np.sin(2 * np.pi * 1000 * t), 48000))
        peak_band = int(np.argmax(spec.data.mean(axis=1)))
        assert abs(spec.center_freqs[peak_band] - 1000) < erb_bandwidth(1000)

    def test_empty_signal(self, builder):
        with pytest.raises(InvalidSignalError, match="empty"):
            builder.build(AudioSignal(np.zeros(0), 48000))

    def test_shorter_than_window(self, builder):
        with pytest.raises(InvalidSignalError, match="shorter than one analysis window"):
            builder.build(AudioSignal(np.zeros(1000), 48000), "Degraded signal")

    def test_error_names_the_signal(self, builder):
        with pytest.raises(InvalidSignalError, match="Reference signal has 10 samples"):
            builder.validate(AudioSignal(np.zeros(10), 48000), "Reference signal")

    def test_speech_geometry(self):
        builder = SpectrogramBuilder(SPEECH_PARAMS, 16000)
        spec = builder.build(AudioSignal(np.ones(16000), 16000))
        assert spec.num_bands == 24
        assert spec.num_frames == 1 + (16000 - 640) // 320
        assert spec.frame_time(10) == pytest.approx(0.2)

    def test_data_is_immutable(self, builder):
        spec = builder.build(AudioSignal(np.ones(4800), 48000))
        with pytest.raises(ValueError):
            spec.data[0, 0] = 1.0


class TestPrepareForComparison:
    def test_floor_relative_to_reference_peak(self):
        rng = np.random.default_rng(0)
        ref = Spectrogram(rng.uniform(1e-8, 1.0, (4, 20)), np.arange(4), 16000, 640, 320)
        deg = Spectrogram(rng.uniform(1e-8, 1.0, (4, 20)), np.arange(4), 16000, 640, 320)

        ref_db, deg_db = prepare_for_comparison(ref, deg, 45.0)

        assert ref_db.in_db and deg_db.in_db
        assert np.max(ref_db.data) == pytest.approx(45.0)
        assert np.min(ref_db.data) >= 0
        assert np.min(deg_db.data) >= 0

    def test_frame_energy_requires_power(self):
        spec = Spectrogram(np.ones((2, 3)), np.arange(2), 16000, 640, 320)
        np.testing.assert_allclose(spec.frame_energy_db(), 10 * np.log10(2.0))
        with pytest.raises(ValueError):
            spec.to_db().frame_energy_db()
