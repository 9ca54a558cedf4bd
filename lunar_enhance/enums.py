"""
Enums for the Lunar Enhancement Pipeline

This module contains enumeration classes for preset selection, detection
failure reasons, capture quality grading and pipeline stages.
"""

from enum import Enum


class EnhancementPreset(Enum):
    """Enumeration of enhancement presets"""
    NATURAL = "natural"
    CRISP = "crisp"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @property
    def description(self) -> str:
        if self is EnhancementPreset.NATURAL:
            return "Subtle enhancement that preserves the original character"
        return "Stronger detail with careful artifact prevention"


class DetectionFailureReason(Enum):
    """Why a detection call did not produce a usable moon"""
    NO_CANDIDATE = "no_candidate"      # No blob survived area/circularity filtering
    DEGENERATE_FIT = "degenerate_fit"  # Circle could not be fit to the edge points
    LOW_CONFIDENCE = "low_confidence"  # Fit exists but confidence is below threshold


class CaptureQuality(Enum):
    """Enumeration of capture quality grades"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_scores(cls, median_confidence: float, clipped_fraction: float,
                    sharpness_score: float) -> "CaptureQuality":
        """Grade a capture from median confidence, clipping and sharpness"""
        if clipped_fraction > 0.01:
            clipping_penalty = 0.3
        elif clipped_fraction > 0.003:
            clipping_penalty = 0.15
        else:
            clipping_penalty = 0.0

        score = (median_confidence * 0.5 + sharpness_score * 0.5) - clipping_penalty

        if score > 0.6:
            return cls.HIGH
        if score > 0.35:
            return cls.MEDIUM
        return cls.LOW


class PipelineStage(Enum):
    """Stages of the enhancement run, in execution order"""
    CROP = "Cropping"
    COLOR_CONVERT = "Converting color"
    CONFIDENCE_MAP = "Building confidence"
    PERCEPTUAL = "Perceptual analysis"
    TONE_MAP = "Tone mapping"
    DENOISE = "Denoising"
    HIGHLIGHT_COMPENSATE = "Softening highlights"
    DECONVOLVE = "Deconvolving"
    SHARPEN = "Sharpening"
    MICRO_CONTRAST = "Micro-contrast"
    HALO_CHECK = "Checking halos"
    MITIGATE = "Mitigating halos"
    FINALIZE = "Finalizing"
    DONE = "Done"
