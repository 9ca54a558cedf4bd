"""
Confidence map builder for the Lunar Enhancement Pipeline

The confidence map C estimates, per pixel, how much of the local signal is
real detail rather than noise. It is the single gating signal for every
restoration stage: where C is zero no stage may make a visible change.
"""

import logging

import numpy as np

from .imageops import sobel_gradients
from .models import ConfidenceMap

logger = logging.getLogger(__name__)

BACKGROUND_MASK_LEVEL = 0.05
MIN_NOISE_SAMPLES = 64
SNR_LOW = 2.0
SNR_HIGH = 8.0
LIMB_SUPPRESSION = 0.75
SHARPNESS_NORMALIZATION = 0.02


def _check_shapes(plane: np.ndarray, *masks: np.ndarray):
    for mask in masks:
        if mask.shape != plane.shape:
            raise ValueError(f"Mask shape {mask.shape} does not match plane shape {plane.shape}")


def masked_median(values: np.ndarray, mask: np.ndarray) -> float:
    """Upper median of values where mask > 0.5 (all values when the mask is empty)"""
    samples = values[mask > 0.5]
    if samples.size == 0:
        samples = values.ravel()
    if samples.size == 0:
        return 0.0
    return float(np.sort(samples, axis=None)[samples.size // 2])


class ConfidenceMapBuilder:
    """Builds C from gradient SNR, limb suppression and the moon mask"""

    def build(self, luma: np.ndarray, moon_mask: np.ndarray, limb_ring: np.ndarray) -> ConfidenceMap:
        _check_shapes(luma, moon_mask, limb_ring)
        if luma.size == 0:
            return ConfidenceMap(map=np.zeros_like(luma, dtype=np.float32), median_c=0.0)

        noise = self.estimate_noise(luma, moon_mask)
        _, _, gradient = sobel_gradients(luma)
        snr = (gradient / max(noise, 1e-3)).astype(np.float32)

        confidence = np.clip((snr - SNR_LOW) / (SNR_HIGH - SNR_LOW), 0.0, 1.0)
        confidence *= 1.0 - np.clip(limb_ring, 0.0, 1.0) * LIMB_SUPPRESSION
        confidence *= np.clip(moon_mask, 0.0, 1.0)
        confidence = confidence.astype(np.float32)

        median_c = masked_median(confidence, moon_mask)
        logger.debug(f"Confidence map: noise sigma {noise:.4f}, median C {median_c:.3f}")

        return ConfidenceMap(map=confidence, median_c=median_c, snr_map=snr)

    @staticmethod
    def estimate_noise(luma: np.ndarray, moon_mask: np.ndarray) -> float:
        """Background standard deviation, whole frame when the background is too small"""
        samples = luma[moon_mask <= BACKGROUND_MASK_LEVEL]
        if samples.size < MIN_NOISE_SAMPLES:
            samples = luma.ravel()
        if samples.size <= 1:
            return 0.01
        return max(0.001, float(np.std(samples, dtype=np.float64)))


class SharpnessScorer:
    """Laplacian variance inside the moon, normalised to [0, 1]"""

    def score(self, luma: np.ndarray, mask: np.ndarray) -> float:
        if luma.shape != mask.shape or min(luma.shape) <= 2:
            return 0.0

        center = luma[1:-1, 1:-1]
        laplacian = (luma[1:-1, :-2] + luma[1:-1, 2:] + luma[:-2, 1:-1] + luma[2:, 1:-1]
                     - 4.0 * center)
        samples = laplacian[mask[1:-1, 1:-1] >= 0.5]
        if samples.size == 0:
            return 0.0
        return float(min(1.0, np.var(samples, dtype=np.float64) / SHARPNESS_NORMALIZATION))
