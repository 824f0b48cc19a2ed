"""
Shared fixtures: synthetic signals and ready engines.
"""

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pytest
import soundfile as sf

from nsim_quality.engine import create


def make_test_signal(duration: float, sample_rate: int, seed: int = 0) -> np.ndarray:
    """Amplitude-modulated tones plus noise: broadband, with time structure."""
    rng = np.random.default_rng(seed)
    n = int(duration * sample_rate)
    t = np.arange(n) / sample_rate
    envelope = 0.5 * (1 + np.sin(2 * np.pi * 1.5 * t))
    tones = sum(np.sin(2 * np.pi * f * t) for f in (220.0, 440.0, 1250.0, 3100.0))
    noise = rng.standard_normal(n)
    return 0.1 * (tones * envelope + 0.3 * noise * envelope ** 2)


def add_noise(samples: np.ndarray, snr_db: float, seed: int = 1) -> np.ndarray:
    rng = np.random.default_rng(seed)
    noise = rng.standard_normal(len(samples))
    signal_power = np.mean(samples ** 2)
    noise_power = signal_power / (10 ** (snr_db / 10))
    return samples + noise * np.sqrt(noise_power)


@pytest.fixture(scope="session")
def audio_signal():
    """4 s at 48 kHz (two audio-mode patches)"""
    return make_test_signal(4.0, 48000)


@pytest.fixture(scope="session")
def speech_signal():
    """4 s at 16 kHz"""
    return make_test_signal(4.0, 16000, seed=3)


@pytest.fixture(scope="session")
def audio_engine():
    engine = create({"sample_rate": 48000})
    yield engine
    engine.close()


@pytest.fixture(scope="session")
def speech_engine():
    engine = create({"sample_rate": 16000, "use_speech_scoring": True})
    yield engine
    engine.close()


@pytest.fixture
def wav_pair(tmp_path, audio_signal):
    """Reference and noisy degraded WAV files at 48 kHz"""
    ref_path = tmp_path / "ref.wav"
    deg_path = tmp_path / "deg.wav"
    sf.write(str(ref_path), audio_signal, 48000)
    sf.write(str(deg_path), add_noise(audio_signal, 15.0), 48000)
    return str(ref_path), str(deg_path)
