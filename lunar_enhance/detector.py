"""
Moon Detector for the Lunar Enhancement Pipeline

This module contains the MoonDetector class which locates the moon in a
photograph: threshold analysis, connected-component blob extraction, circle
fitting, confidence scoring and mask generation. The result is returned as a
tagged DetectionOutcome so callers can branch on why detection failed.
"""

import logging
from dataclasses import dataclass, fields
from typing import Dict, Optional

import numpy as np

from .circle_fit import CircleFitter
from .components import ConnectedComponentsAnalyzer
from .enums import DetectionFailureReason
from .masks import MaskGenerator
from .models import BlobInfo, DetectionOutcome, FittedCircle, MoonDetectionResult
from .preprocessor import LuminanceExtractor
from .scoring import ConfidenceScorer, disk_pixels
from .threshold import ThresholdAnalyzer

logger = logging.getLogger(__name__)

CLIPPED_LUMA = 0.98


@dataclass(frozen=True)
class DetectionConfig:
    """Detection settings (the ``detection`` group of the JSON config)"""
    min_blob_area_fraction: float = 0.001
    max_blob_area_fraction: float = 0.8
    min_circularity: float = 0.6
    mask_feather_width: float = 3.0
    limb_ring_width: float = 9.0
    crop_padding_factor: float = 1.3
    min_confidence: float = 0.5
    fast: bool = False
    fast_target_width: int = 512
    use_ransac: bool = False
    ransac_iterations: int = 100
    ransac_inlier_threshold: float = 2.0
    ransac_seed: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "DetectionConfig":
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in (data or {}).items() if key in known})


def clipped_fraction(luma: np.ndarray, circle: FittedCircle) -> float:
    """Fraction of pixels inside the circle with luma above CLIPPED_LUMA"""
    rows, cols, inside = disk_pixels(luma.shape, circle.center_x, circle.center_y, circle.radius)
    total = int(np.count_nonzero(inside))
    if total == 0:
        return 0.0
    return float(np.count_nonzero(luma[rows, cols][inside] > CLIPPED_LUMA)) / total


class MoonDetector:
    """Finds the moon disk, its masks and a detection confidence"""

    def __init__(self, config: Optional[DetectionConfig] = None):
        self.config = config or DetectionConfig()
        self.luminance_extractor = LuminanceExtractor()
        self.threshold_analyzer = ThresholdAnalyzer()
        self.component_analyzer = ConnectedComponentsAnalyzer()
        self.circle_fitter = CircleFitter()
        self.confidence_scorer = ConfidenceScorer()
        self.mask_generator = MaskGenerator(
            feather_width=self.config.mask_feather_width,
            limb_ring_width=self.config.limb_ring_width,
        )

    def detect(self, image: np.ndarray, fast: Optional[bool] = None) -> DetectionOutcome:
        """Detect the moon in an RGB or grayscale image.

        With ``fast`` (default from config) detection runs on a downsampled
        luma plane and the circle is scaled back; masks are always generated
        at full resolution.
        """
        fast = self.config.fast if fast is None else fast
        full_height, full_width = image.shape[:2]

        luma = self.luminance_extractor.extract(image, fast=fast, target_width=self.config.fast_target_width)
        height, width = luma.shape
        scale = full_width / width

        threshold = self.threshold_analyzer.analyze(luma)

        area = width * height
        blobs = self.component_analyzer.find_blobs(
            threshold.binary_mask,
            min_area=int(area * self.config.min_blob_area_fraction),
            max_area=int(area * self.config.max_blob_area_fraction),
        )

        candidate = self.select_candidate(blobs)
        if candidate is None:
            logger.info(f"No moon candidate among {len(blobs)} blobs")
            return DetectionOutcome.failed(DetectionFailureReason.NO_CANDIDATE)

        circle = self.fit_circle(candidate)
        if circle is None:
            logger.info("Circle fit failed for the moon candidate")
            return DetectionOutcome.failed(DetectionFailureReason.DEGENERATE_FIT)

        confidence = self.confidence_scorer.score(circle, candidate, luma)
        clipped = clipped_fraction(luma, circle)

        if scale != 1.0:
            circle = circle.scaled(scale)

        masks = self.mask_generator.generate(
            circle, (full_width, full_height), padding_factor=self.config.crop_padding_factor)

        result = MoonDetectionResult(
            circle=circle,
            crop_rect=masks.crop_rect,
            moon_mask=masks.moon_mask,
            limb_ring_mask=masks.limb_ring_mask,
            confidence=confidence,
            clipped_highlight_fraction=clipped,
        )

        logger.info(f"Moon detected at ({circle.center_x:.1f}, {circle.center_y:.1f}) r={circle.radius:.1f}, "
                    f"confidence {confidence.circle_confidence:.3f}, clipped {clipped:.4f}")

        if confidence.circle_confidence < self.config.min_confidence:
            logger.warning(f"Low detection confidence: {confidence.circle_confidence:.3f}")
            return DetectionOutcome.failed(DetectionFailureReason.LOW_CONFIDENCE, result)

        return DetectionOutcome.success(result)

    def select_candidate(self, blobs) -> Optional[BlobInfo]:
        """Largest area * circularity among sufficiently round blobs"""
        candidates = [blob for blob in blobs if blob.circularity >= self.config.min_circularity]
        if not candidates:
            return None
        return max(candidates, key=lambda blob: blob.area * blob.circularity)

    def fit_circle(self, blob: BlobInfo) -> Optional[FittedCircle]:
        if self.config.use_ransac:
            return self.circle_fitter.fit_ransac(
                blob.edge_points,
                iterations=self.config.ransac_iterations,
                inlier_threshold=self.config.ransac_inlier_threshold,
                seed=self.config.ransac_seed,
            )
        return self.circle_fitter.fit(blob.edge_points)
