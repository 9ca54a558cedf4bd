"""
Perceptual Quality Evaluation for the Lunar Enhancement Pipeline

This module contains the PerceptualMetricsEvaluator, which measures blur,
ringing, noise visibility, local contrast, edge density and phase contrast on
a downsampled copy of the crop, and the PerceptualTuner, which turns those
measurements into parameter adjustments and user-facing warnings before the
restoration stages run.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import List, Optional

import numpy as np

from .backend import CpuBackend
from .imageops import downsample_to, local_std, sample_bilinear, smoothstep, sobel_gradients
from .models import MaskBuffer, PerceptualMetrics
from .presets import (DeconvolutionParameters, DenoiseParameters, MicroContrastParameters,
                      PresetConfiguration, ToneParameters, WaveletParameters,
                      disable_deconvolution, reduce_deconvolution_iterations)

logger = logging.getLogger(__name__)

MAX_DIMENSION = 512
MAX_EDGE_SAMPLES = 1500
PROFILE_RADIUS = 6
EDGE_PERCENTILE = 0.9

RINGING_WARNING = "Ringing risk detected. Reduced sharpening."
NOISE_WARNING = "Noise visibility high. Extra denoise applied."
LOW_DETAIL_WARNING = "Low detail. Kept the result natural."
FULL_PHASE_WARNING = "Full-moon phase detected. Reduced micro-contrast."


def _crossing_position(samples: np.ndarray, start: int, end: int, target: float) -> Optional[float]:
    """Fractional index where the profile crosses target walking from start to end"""
    if start == end:
        return None
    step = 1 if start < end else -1
    i = start
    while i != end:
        v0, v1 = samples[i], samples[i + step]
        if (v0 - target) * (v1 - target) <= 0:
            denominator = v1 - v0
            t = 0.0 if abs(denominator) < 1e-6 else (target - v0) / denominator
            return i + t * step
        i += step
    return None


class PerceptualMetricsEvaluator:
    """Measures perceptual quality of a luma crop inside the moon mask"""

    def __init__(self, backend: Optional[CpuBackend] = None, max_dimension: int = MAX_DIMENSION):
        self.backend = backend or CpuBackend()
        self.max_dimension = max_dimension

    def evaluate(self, luma: np.ndarray, moon_mask: np.ndarray, limb_ring: np.ndarray) -> PerceptualMetrics:
        if luma.size == 0:
            return PerceptualMetrics(blur_probability=1.0, ringing_score=0.0, noise_visibility=0.0,
                                     local_contrast=0.0, edge_density=0.0, phase_contrast=0.0)

        plane = downsample_to(luma, self.max_dimension)
        height, width = plane.shape
        mask = MaskBuffer(moon_mask).resized(width, height).data
        limb = MaskBuffer(limb_ring).resized(width, height).data

        gx, gy, magnitude = sobel_gradients(plane)
        region = (mask > 0.5) & (limb < 0.5)
        region_count = int(np.count_nonzero(region))

        edge_threshold = 0.0
        if region_count:
            values = np.sort(magnitude[region])
            edge_threshold = float(values[int((values.size - 1) * EDGE_PERCENTILE)])

        interior = np.zeros_like(region)
        interior[1:-1, 1:-1] = True
        edges = region & interior & (magnitude >= edge_threshold) & (magnitude > 0)
        edge_density = float(np.count_nonzero(edges)) / region_count if region_count else 0.0

        inside = mask > 0.5
        mean_luma = float(plane[inside].mean()) if np.any(inside) else 0.0

        ys, xs = np.nonzero(edges)
        step = max(1, len(ys) // MAX_EDGE_SAMPLES)
        ys, xs = ys[::step], xs[::step]
        ux = gx[ys, xs] / magnitude[ys, xs]
        uy = gy[ys, xs] / magnitude[ys, xs]

        metrics = PerceptualMetrics(
            blur_probability=self.blur_probability(plane, xs, ys, ux, uy, edge_density),
            ringing_score=self.ringing_score(plane, xs, ys, ux, uy),
            noise_visibility=self.noise_visibility(plane, inside, edges, mean_luma),
            local_contrast=self.local_contrast(plane, inside, mean_luma),
            edge_density=min(1.0, edge_density),
            phase_contrast=self.phase_contrast(plane, inside),
        )
        logger.debug(f"Perceptual metrics: {metrics}")
        return metrics

    def local_contrast(self, plane: np.ndarray, inside: np.ndarray, mean_luma: float) -> float:
        """Mean absolute deviation from a wide blur, relative to mean luma"""
        if not np.any(inside):
            return 0.0
        deviation = np.abs(plane - self.backend.gaussian_blur(plane, 4.0))[inside].mean()
        return float(min(1.0, deviation / max(mean_luma, 1e-3)))

    @staticmethod
    def blur_probability(plane, xs, ys, ux, uy, edge_density: float) -> float:
        """Mean probability of blur from 10-90% edge widths against a just-noticeable-blur width"""
        if len(xs) == 0:
            return 1.0

        offsets = np.arange(-PROFILE_RADIUS, PROFILE_RADIUS + 1)
        profiles = sample_bilinear(plane,
                                   xs[:, None] + offsets[None, :] * ux[:, None],
                                   ys[:, None] + offsets[None, :] * uy[:, None])

        probabilities = []
        for samples in profiles:
            low_index = int(np.argmin(samples))
            high_index = int(np.argmax(samples))
            low_value, high_value = samples[low_index], samples[high_index]
            contrast = high_value - low_value
            if contrast < 0.02:
                continue

            low = _crossing_position(samples, low_index, high_index, low_value + 0.1 * contrast)
            high = _crossing_position(samples, low_index, high_index, low_value + 0.9 * contrast)
            if low is None or high is None:
                continue

            edge_width = abs(high - low)
            jnb_width = 1.0 + 6.0 * math.exp(-10.0 * contrast)
            probabilities.append(1.0 / (1.0 + math.exp(-(edge_width - jnb_width))))

        if not probabilities:
            return 1.0 if edge_density < 0.02 else 0.6

        result = float(np.mean(probabilities))
        if edge_density < 0.02:
            result = max(result, 0.8)
        return min(1.0, max(0.0, result))

    @staticmethod
    def ringing_score(plane, xs, ys, ux, uy) -> float:
        """Overshoot 1-3 px on the dark side of strong edges, relative to local activity"""
        if len(xs) == 0:
            return 0.0

        bright = sample_bilinear(plane, xs + ux, ys + uy)
        dark = sample_bilinear(plane, xs - ux, ys - uy)
        direction = np.where(bright >= dark, -1.0, 1.0)

        s1 = sample_bilinear(plane, xs + direction * ux, ys + direction * uy)
        s3 = sample_bilinear(plane, xs + direction * 3.0 * ux, ys + direction * 3.0 * uy)
        amplitude = np.maximum(s1 - s3, 0.0)

        ringing = amplitude > 0
        if not np.any(ringing):
            return 0.0

        activity = local_std(plane, 2)[ys, xs]
        visibility = np.sort(amplitude[ringing] / (activity[ringing] + 0.02))
        top = visibility[int(visibility.size * 0.9):]
        return float(min(1.0, top.mean()))

    def noise_visibility(self, plane, inside, edges, mean_luma: float) -> float:
        """High-pass residual deviation against a luminance-dependent JND, away from edges"""
        flat = inside & ~edges
        if not np.any(flat):
            return 0.0

        residual = plane - self.backend.gaussian_blur(plane, 1.0)
        noise = local_std(residual, 2)[flat]
        jnd = min(0.2, max(0.02, 0.02 + 0.15 * math.sqrt(max(0.0, mean_luma))))
        return float(min(1.0, (noise / (jnd + 1e-3)).mean()))

    @staticmethod
    def phase_contrast(plane, inside) -> float:
        """Left/right mean-luma asymmetry about the mask centroid"""
        ys, xs = np.nonzero(inside)
        if xs.size == 0:
            return 0.0

        values = plane[ys, xs]
        left = xs < xs.mean()
        if not np.any(left) or np.all(left):
            return 0.0

        mean_all = float(values.mean())
        if mean_all <= 1e-4:
            return 0.0
        return float(min(1.0, abs(values[left].mean() - values[~left].mean()) / mean_all))


@dataclass(frozen=True)
class TuningResult:
    """Adjusted parameter groups and the warnings that explain them"""
    tone: ToneParameters
    denoise: DenoiseParameters
    deconvolution: DeconvolutionParameters
    wavelet: WaveletParameters
    micro_contrast: MicroContrastParameters
    warnings: List[str]

    def apply_to(self, config: PresetConfiguration) -> PresetConfiguration:
        return replace(config, tone=self.tone, denoise=self.denoise, deconvolution=self.deconvolution,
                       wavelet=self.wavelet, micro_contrast=self.micro_contrast)


class PerceptualTuner:
    """Shapes scaled preset parameters from perceptual metrics"""

    # Contrast-sensitivity weighting: mid frequencies are favoured
    FINE_WEIGHT = 0.85
    MID_WEIGHT = 1.0
    COARSE_WEIGHT = 0.70

    def tune(self, config: PresetConfiguration, metrics: PerceptualMetrics,
             sharpness_score: float) -> TuningResult:
        ring_gate = float(smoothstep(0.04, 0.10, metrics.ringing_score))
        noise_gate = float(smoothstep(0.35, 0.65, metrics.noise_visibility))
        blur_gate = float(smoothstep(0.45, 0.75, metrics.blur_probability))
        contrast_gate = float(smoothstep(0.25, 0.45, metrics.local_contrast))
        edge_gate = float(smoothstep(0.02, 0.08, metrics.edge_density))
        phase_gate = float(smoothstep(0.03, 0.08, metrics.phase_contrast))
        logger.debug(f"Tuner gates: ring={ring_gate:.2f} noise={noise_gate:.2f} blur={blur_gate:.2f} "
                     f"contrast={contrast_gate:.2f} edge={edge_gate:.2f} phase={phase_gate:.2f}")

        warnings = []
        edge_factor = 0.6 + 0.4 * edge_gate
        phase_micro_scale = 0.6 + 0.4 * phase_gate
        phase_fine_scale = 0.7 + 0.3 * phase_gate

        wavelet = config.wavelet
        fine_gain = (wavelet.fine_gain * self.FINE_WEIGHT * edge_factor * phase_fine_scale
                     * (1 - 0.35 * ring_gate) * (1 - 0.20 * noise_gate))
        if sharpness_score > 0.70:
            fine_gain *= 0.85
        wavelet = replace(
            wavelet,
            fine_gain=fine_gain,
            mid_gain=wavelet.mid_gain * self.MID_WEIGHT * edge_factor * (1 - 0.15 * noise_gate),
            coarse_gain=wavelet.coarse_gain * self.COARSE_WEIGHT,
        )

        micro_contrast = replace(
            config.micro_contrast,
            strength=(config.micro_contrast.strength * phase_micro_scale
                      * (1 - 0.30 * noise_gate) * (1 - 0.20 * contrast_gate)),
        )
        tone = replace(config.tone, midtone_contrast_gain=config.tone.midtone_contrast_gain * (1 - 0.30 * contrast_gate))
        denoise = replace(
            config.denoise,
            luma_denoise_base=min(0.70, max(0.05, config.denoise.luma_denoise_base + 0.08 * noise_gate)),
            chroma_denoise=min(0.80, max(0.20, config.denoise.chroma_denoise + 0.10 * noise_gate)),
        )

        tuned = replace(config, wavelet=wavelet)
        if ring_gate > 0.5:
            warnings.append(RINGING_WARNING)
            tuned = reduce_deconvolution_iterations(2)(tuned)

        if noise_gate > 0.5:
            warnings.append(NOISE_WARNING)

        if blur_gate > 0.6 and sharpness_score < 0.35:
            warnings.append(LOW_DETAIL_WARNING)
            tuned = disable_deconvolution(tuned)
            tuned = replace(tuned, wavelet=replace(tuned.wavelet, fine_gain=tuned.wavelet.fine_gain * 0.75))

        if phase_micro_scale < 0.9:
            warnings.append(FULL_PHASE_WARNING)

        for warning in warnings:
            logger.info(f"Perceptual tuner: {warning}")

        return TuningResult(
            tone=tone,
            denoise=denoise,
            deconvolution=tuned.deconvolution,
            wavelet=tuned.wavelet,
            micro_contrast=micro_contrast,
            warnings=warnings,
        )
