"""
Lunar Enhancement Pipeline - Moon detection and confidence-gated enhancement.

This package provides classes and utilities for:
- Locating the moon disk and building feathered moon and limb masks
- Per-pixel detail confidence and capture quality grading
- Tone mapping, denoising and highlight compensation
- Deconvolution, wavelet sharpening and micro-contrast
- Halo checking with a single mitigation replay
- Parallel processing of image directories
"""

__version__ = "1.0.0"
__author__ = "Lunar Enhancement Pipeline Team"

from .enums import CaptureQuality, DetectionFailureReason, EnhancementPreset, PipelineStage
from .errors import ConversionFailure, EnhancementError, InvalidCropError
from .models import (DetectionOutcome, EnhancementMetrics, EnhancementOutput, FittedCircle, ImageMetadata,
                     MoonDetectionResult, ProcessingParameters)
from .presets import PresetConfiguration, preset_for
from .detector import DetectionConfig, MoonDetector
from .parallel import ParallelProcessor
from .pipeline import MoonEnhancementPipeline, create_default_config

__all__ = [
    'CaptureQuality',
    'DetectionFailureReason',
    'EnhancementPreset',
    'PipelineStage',
    'ConversionFailure',
    'EnhancementError',
    'InvalidCropError',
    'DetectionOutcome',
    'EnhancementMetrics',
    'EnhancementOutput',
    'FittedCircle',
    'ImageMetadata',
    'MoonDetectionResult',
    'ProcessingParameters',
    'PresetConfiguration',
    'preset_for',
    'DetectionConfig',
    'MoonDetector',
    'ParallelProcessor',
    'MoonEnhancementPipeline',
    'create_default_config',
]
