"""
Audio Loading Module
====================

File I/O collaborator for the engine.

Features:
- Decoding of any format librosa/soundfile can read
- Mono downmix (channel average)
- Optional resampling to a target rate
- Reference/degraded pair loading at a common rate

The engine itself never touches files; it receives AudioSignal objects.
"""

import logging
from pathlib import Path
from typing import Optional, Tuple

import librosa
import numpy as np
import soundfile as sf

from .audio import AudioSignal
from .errors import InvalidSignalError

logger = logging.getLogger(__name__)


def load_audio(filepath: str, sample_rate: Optional[int] = None) -> AudioSignal:
    """
    Load an audio file as a mono AudioSignal.

    Args:
        filepath: Path to audio file
        sample_rate: Target rate; None keeps the file's native rate

    Returns:
        AudioSignal in float64

    Raises:
        InvalidSignalError: missing or undecodable file
    """
    path = Path(filepath)
    if not path.is_file():
        raise InvalidSignalError(f"Audio file not found: {filepath}")

    try:
        # librosa averages channels when mono=True
        audio, sr = librosa.load(str(path), sr=sample_rate, mono=True)
    except Exception as e:
        logger.error(f"Failed to load {filepath}: {e}")
        raise InvalidSignalError(f"Failed to decode audio file {filepath}: {e}") from e

    logger.debug(f"Loaded {filepath}: {len(audio)/sr:.2f}s @ {sr}Hz")
    return AudioSignal(audio.astype(np.float64), int(sr))


def native_sample_rate(filepath: str) -> int:
    """Sample rate stored in the file header"""
    try:
        return int(sf.info(str(filepath)).samplerate)
    except RuntimeError as e:
        raise InvalidSignalError(f"Failed to read audio header of {filepath}: {e}") from e


def load_pair(reference_path: str, degraded_path: str,
              sample_rate: Optional[int] = None) -> Tuple[AudioSignal, AudioSignal]:
    """
    Load a reference/degraded pair at one common rate.

    When ``sample_rate`` is None the reference's native rate is used and the
    degraded file is resampled to it if needed.
    """
    reference = load_audio(reference_path, sample_rate)
    degraded = load_audio(degraded_path, reference.sample_rate)

    if sample_rate is None:
        deg_rate = native_sample_rate(degraded_path)
        if deg_rate != reference.sample_rate:
            logger.warning(
                f"Resampled {degraded_path} from {deg_rate}Hz to {reference.sample_rate}Hz "
                f"to match the reference"
            )

    return reference, degraded
