"""
Tonal Correction Classes for the Lunar Enhancement Pipeline

This module contains the confidence-aware tonal stages that run before
restoration: tone mapping, denoising and highlight compensation. Every stage
returns new planes clamped to [0, 1]; inputs are never modified.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from .backend import CpuBackend
from .imageops import blend, smoothstep
from .presets import DenoiseParameters, ToneParameters

logger = logging.getLogger(__name__)

HIGHLIGHT_MASK_RADIUS = 3


class ToneMapper:
    """Highlight shoulder and midtone contrast curve"""

    def apply(self, luma: np.ndarray, params: ToneParameters, white_point: float,
              moon_mask: Optional[np.ndarray] = None) -> np.ndarray:
        """Tone-map luma relative to white_point; outside moon_mask luma is untouched"""
        if white_point <= 0:
            return luma.astype(np.float32, copy=True)

        normalized = luma.astype(np.float32) / white_point
        shouldered = self.shoulder_curve(normalized, params.highlight_shoulder_start, params.shoulder_strength)
        contrasted = self.contrast_curve(shouldered, params.midtone_contrast_gain, params.midtone_pivot)
        mapped = np.clip(contrasted * white_point, 0.0, 1.0).astype(np.float32)

        if moon_mask is None:
            return mapped
        return np.clip(blend(luma, mapped, moon_mask), 0.0, 1.0)

    @staticmethod
    def shoulder_curve(x: np.ndarray, start: float, strength: float) -> np.ndarray:
        """Soft tanh shoulder above start; identity below"""
        denominator = max(1e-3, 1.0 - start)
        excess = np.maximum(x - start, 0.0)
        shoulder = start + (1.0 - start) * np.tanh(excess * strength / denominator)
        return np.where(x < start, x, shoulder)

    @staticmethod
    def contrast_curve(x: np.ndarray, gain: float, pivot: float) -> np.ndarray:
        shifted = x - pivot
        return pivot + shifted * (1.0 + gain * (1.0 - np.abs(shifted)))


class Denoiser:
    """Confidence-gated box-blur denoise: low confidence means more smoothing"""

    def __init__(self, backend: Optional[CpuBackend] = None):
        self.backend = backend or CpuBackend()

    def apply(self, luma: np.ndarray, cb: np.ndarray, cr: np.ndarray, params: DenoiseParameters,
              confidence: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        if confidence.shape != luma.shape:
            raise ValueError(f"Confidence shape {confidence.shape} does not match luma shape {luma.shape}")
        if luma.size == 0:
            return luma.copy(), cb.copy(), cr.copy()

        c = np.clip(confidence, 0.0, 1.0)
        luma_strength = params.luma_denoise_base * np.power(1.0 - c, params.luma_denoise_exponent)
        luma_blur = self.backend.box_blur(luma, params.guided_filter_radius)
        denoised = np.clip(luma * (1.0 - luma_strength) + luma_blur * luma_strength, 0.0, 1.0)

        chroma_radius = max(1, params.guided_filter_radius * 2)
        chroma_strength = min(1.0, max(0.0, params.chroma_denoise))
        cb_out = cb * (1.0 - chroma_strength) + self.backend.box_blur(cb, chroma_radius) * chroma_strength
        cr_out = cr * (1.0 - chroma_strength) + self.backend.box_blur(cr, chroma_radius) * chroma_strength

        return denoised.astype(np.float32), cb_out.astype(np.float32), cr_out.astype(np.float32)


class HighlightCompensator:
    """Compresses near-white values toward clip_start through a blurred clip mask"""

    def __init__(self, backend: Optional[CpuBackend] = None):
        self.backend = backend or CpuBackend()

    def apply(self, luma: np.ndarray, moon_mask: np.ndarray, clip_start: float = 0.90,
              strength: float = 0.6) -> np.ndarray:
        if moon_mask.shape != luma.shape:
            raise ValueError(f"Mask shape {moon_mask.shape} does not match luma shape {luma.shape}")
        if strength <= 0 or luma.size == 0:
            return luma.astype(np.float32, copy=True)

        clip_start = min(1.0, max(0.0, clip_start))
        strength = min(1.0, max(0.0, strength))

        clip_mask = (smoothstep(clip_start, 1.0, luma) * moon_mask).astype(np.float32)
        weight = np.clip(self.backend.box_blur(clip_mask, HIGHLIGHT_MASK_RADIUS), 0.0, 1.0)

        compressed = clip_start + (luma - clip_start) * (1.0 - strength)
        result = luma * (1.0 - weight) + compressed * weight
        logger.debug(f"Highlight compensation: mean weight {float(weight.mean()):.4f}")
        return np.clip(result, 0.0, 1.0).astype(np.float32)
