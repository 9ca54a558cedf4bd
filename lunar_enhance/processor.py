"""
Image Restoration Classes for the Lunar Enhancement Pipeline

This module contains the detail-restoration stages: Richardson-Lucy
deconvolution, multi-band wavelet sharpening and large-radius micro-contrast.
All three are gated per pixel by the confidence map and the limb ring, and
run their filters through the injected execution backend.
"""

import logging
from typing import Optional

import numpy as np

from .backend import CpuBackend
from .imageops import dilate, resize_bilinear, smoothstep
from .presets import DeconvolutionParameters, MicroContrastParameters, WaveletParameters

logger = logging.getLogger(__name__)

RATIO_FLOOR = 1e-4
CORRECTION_FLOOR = 1e-3
WAVELET_SIGMAS = (1.0, 2.5, 5.0)
MICRO_CONTRAST_MAX_SIDE = 1024
MICRO_CONTRAST_RADIUS_LIMIT = 16
MICRO_CONTRAST_WORKING_DIMENSION = 512
LIMB_EXCLUSION_LEVEL = 0.1


def _check_shapes(plane: np.ndarray, *masks: Optional[np.ndarray]):
    for mask in masks:
        if mask is not None and mask.shape != plane.shape:
            raise ValueError(f"Mask shape {mask.shape} does not match plane shape {plane.shape}")


def limb_factor(limb_ring: np.ndarray, multiplier: float) -> np.ndarray:
    """1 away from the limb, ``multiplier`` inside the ring"""
    return 1.0 - np.clip(limb_ring, 0.0, 1.0) * (1.0 - multiplier)


class Deconvolver:
    """Richardson-Lucy deconvolution with a confidence-gated update rate"""

    def __init__(self, backend: Optional[CpuBackend] = None):
        self.backend = backend or CpuBackend()

    def apply(self, luma: np.ndarray, params: DeconvolutionParameters, confidence: np.ndarray,
              limb_ring: np.ndarray) -> np.ndarray:
        _check_shapes(luma, confidence, limb_ring)
        observed = luma.astype(np.float32)
        if not params.enabled or luma.size == 0:
            return observed.copy()

        c = np.clip(confidence, 0.0, 1.0)
        update_multiplier = ((params.update_multiplier_base + params.update_multiplier_c_scale * c)
                             * limb_factor(limb_ring, params.limb_ring_multiplier))

        estimate = observed.copy()
        for _ in range(params.iterations):
            blurred = self.backend.gaussian_blur(estimate, params.psf_sigma)
            ratio = observed / np.maximum(blurred, RATIO_FLOOR)
            correction = np.maximum(self.backend.gaussian_blur(ratio, params.psf_sigma), CORRECTION_FLOOR)
            estimate = np.clip(estimate * np.power(correction, update_multiplier), 0.0, 1.0).astype(np.float32)

        logger.debug(f"Deconvolution: {params.iterations} iterations, sigma {params.psf_sigma}")
        return estimate


class WaveletSharpener:
    """Three-band difference-of-Gaussians sharpening"""

    def __init__(self, backend: Optional[CpuBackend] = None):
        self.backend = backend or CpuBackend()

    def apply(self, luma: np.ndarray, params: WaveletParameters, confidence: np.ndarray,
              limb_ring: np.ndarray, snr_map: Optional[np.ndarray] = None) -> np.ndarray:
        _check_shapes(luma, confidence, limb_ring, snr_map)
        luma = luma.astype(np.float32)
        if luma.size == 0:
            return luma.copy()

        fine_blur, mid_blur, coarse_blur = (self.backend.gaussian_blur(luma, sigma) for sigma in WAVELET_SIGMAS)
        fine = luma - fine_blur
        mid = fine_blur - mid_blur
        coarse = mid_blur - coarse_blur

        c = np.clip(confidence, 0.0, 1.0)
        luma_gate = 1.0 - smoothstep(params.max_luma, params.max_luma + params.max_luma_fade, luma)
        gain_scale = np.power(c, params.c_exponent) * limb_factor(limb_ring, params.limb_multiplier) * luma_gate

        active = (c > 0) & (gain_scale > 0)
        if snr_map is not None:
            active &= snr_map >= params.min_snr

        adjustment = (fine * params.fine_gain + mid * params.mid_gain + coarse * params.coarse_gain) * gain_scale
        sharpened = np.clip(luma + adjustment, 0.0, 1.0)
        return np.where(active, sharpened, luma).astype(np.float32)


class MicroContrast:
    """Unsharp-mask local contrast with a large box radius"""

    def __init__(self, backend: Optional[CpuBackend] = None):
        self.backend = backend or CpuBackend()

    def apply(self, luma: np.ndarray, params: MicroContrastParameters, confidence: np.ndarray,
              limb_ring: np.ndarray) -> np.ndarray:
        _check_shapes(luma, confidence, limb_ring)
        luma = luma.astype(np.float32)
        if luma.size == 0 or params.radius <= 0 or params.strength <= 0:
            return luma.copy()

        height, width = luma.shape
        if max(width, height) > MICRO_CONTRAST_MAX_SIDE or params.radius >= MICRO_CONTRAST_RADIUS_LIMIT:
            return self.apply_downsampled(luma, params, confidence, limb_ring)

        detail = luma - self.backend.box_blur(luma, params.radius)
        exclusion = dilate(limb_ring, params.limb_exclusion_pixels)
        return self._boost(luma, detail, exclusion, params, confidence)

    def apply_downsampled(self, luma: np.ndarray, params: MicroContrastParameters, confidence: np.ndarray,
                          limb_ring: np.ndarray,
                          max_dimension: int = MICRO_CONTRAST_WORKING_DIMENSION) -> np.ndarray:
        """Compute the detail band on a bilinear-downsampled copy and upsample it back"""
        luma = luma.astype(np.float32)
        height, width = luma.shape
        scale = min(1.0, max_dimension / max(width, height))
        small_width = max(1, int(round(width * scale)))
        small_height = max(1, int(round(height * scale)))

        if (small_width, small_height) == (width, height):
            detail = luma - self.backend.box_blur(luma, params.radius)
            exclusion = dilate(limb_ring, params.limb_exclusion_pixels)
            return self._boost(luma, detail, exclusion, params, confidence)

        small_luma = resize_bilinear(luma, small_width, small_height)
        small_limb = resize_bilinear(limb_ring, small_width, small_height)
        radius = max(1, int(round(params.radius * scale)))
        small_detail = small_luma - self.backend.box_blur(small_luma, radius)
        small_exclusion = dilate(small_limb, max(0, int(round(params.limb_exclusion_pixels * scale))))

        logger.debug(f"Micro-contrast on {small_width}x{small_height} working copy, radius {radius}")
        detail = resize_bilinear(small_detail, width, height)
        exclusion = resize_bilinear(small_exclusion, width, height)
        return self._boost(luma, detail, exclusion, params, confidence)

    @staticmethod
    def _boost(luma, detail, exclusion, params: MicroContrastParameters, confidence) -> np.ndarray:
        active = (confidence >= params.min_c) & (exclusion <= LIMB_EXCLUSION_LEVEL) & (luma <= params.max_luma)
        boosted = np.clip(luma + detail * params.strength, 0.0, 1.0)
        return np.where(active, boosted, luma).astype(np.float32)
