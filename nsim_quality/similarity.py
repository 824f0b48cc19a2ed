"""
Patch Similarity Module
=======================

Neurogram Similarity Index Measure (NSIM) between spectrogram patches.

NSIM is SSIM adapted to neurograms: local means, variances and covariance
are taken under a small Gaussian window, and the similarity map is the
product of an intensity term and a structure term. The contrast term of
SSIM is dropped.

    intensity = (2 mu_r mu_d + C1) / (mu_r^2 + mu_d^2 + C1)
    structure = (sigma_rd + C2) / (sigma_r sigma_d + C2)

Reference: Hines & Harte, "Speech intelligibility prediction using a
neurogram similarity index measure", Speech Communication 54(2), 2012.
"""

import numpy as np
from scipy import signal

from .patches import Patch

K1 = 0.01
K2 = 0.03

GAUSSIAN_WINDOW = np.asarray([[0.0113, 0.0838, 0.0113],
                              [0.0838, 0.6193, 0.0838],
                              [0.0113, 0.0838, 0.0113]])
GAUSSIAN_WINDOW = GAUSSIAN_WINDOW / np.sum(GAUSSIAN_WINDOW)


def _local(image: np.ndarray) -> np.ndarray:
    return signal.convolve2d(image, np.rot90(GAUSSIAN_WINDOW, k=2),
                             mode="same", boundary="symm")


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    # 0/0 only happens for two flat, silent regions: treat as identical
    out = np.ones_like(numerator)
    np.divide(numerator, denominator, out=out, where=denominator != 0)
    return out


def nsim_map(reference: np.ndarray, degraded: np.ndarray,
             intensity_range: float) -> np.ndarray:
    """
    Pointwise NSIM map for two equally shaped (band x frame) images.

    Args:
        reference: Reference patch values
        degraded: Degraded patch values
        intensity_range: Dynamic range of the reference spectrogram

    Returns:
        Similarity map with the same shape as the inputs
    """
    if reference.shape != degraded.shape:
        raise ValueError(f"Patch shapes differ: {reference.shape} vs {degraded.shape}")

    c1 = (K1 * intensity_range) ** 2
    c2 = ((K2 * intensity_range) ** 2) / 2

    mu_ref = _local(reference)
    mu_deg = _local(degraded)
    mu_sq_ref = mu_ref * mu_ref
    mu_sq_deg = mu_deg * mu_deg
    mu_product = mu_ref * mu_deg

    sigma_sq_ref = _local(reference * reference) - mu_sq_ref
    sigma_sq_deg = _local(degraded * degraded) - mu_sq_deg
    sigma_product = _local(reference * degraded) - mu_product

    sigma_ref = np.sign(sigma_sq_ref) * np.sqrt(np.abs(sigma_sq_ref))
    sigma_deg = np.sign(sigma_sq_deg) * np.sqrt(np.abs(sigma_sq_deg))

    intensity = _safe_divide(2 * mu_product + c1, mu_sq_ref + mu_sq_deg + c1)
    structure = _safe_divide(sigma_product + c2, sigma_ref * sigma_deg + c2)
    return intensity * structure


def band_similarity(reference: np.ndarray, degraded: np.ndarray,
                    intensity_range: float) -> np.ndarray:
    """NSIM per frequency band (mean of the map over frames)"""
    return np.mean(nsim_map(reference, degraded, intensity_range), axis=1)


def patch_similarity(reference: Patch, degraded: Patch,
                     intensity_range: float) -> np.ndarray:
    """Per-band NSIM between two patches"""
    return band_similarity(reference.data, degraded.data, intensity_range)
