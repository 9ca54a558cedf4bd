"""
Detection confidence scoring

Combines fit quality, blob circularity, apparent size and brightness
consistency into a single circle confidence in [0, 1].
"""

import logging
import math
from typing import Tuple

import numpy as np

from .models import BlobInfo, DetectionConfidence, FittedCircle

logger = logging.getLogger(__name__)

FIT_WEIGHT = 0.35
CIRCULARITY_WEIGHT = 0.25
SIZE_WEIGHT = 0.20
BRIGHTNESS_WEIGHT = 0.20


class ConfidenceScorer:
    """Scores how likely a fitted circle is a well-exposed moon"""

    def score(self, circle: FittedCircle, blob: BlobInfo, luma: np.ndarray) -> DetectionConfidence:
        fit_quality = self.fit_quality(circle)
        size_score = self.size_score(circle, luma.shape[1])
        brightness = self.brightness_consistency(luma, circle)
        circularity = float(blob.circularity)

        confidence = (FIT_WEIGHT * fit_quality
                      + CIRCULARITY_WEIGHT * circularity
                      + SIZE_WEIGHT * size_score
                      + BRIGHTNESS_WEIGHT * brightness)

        logger.debug(f"Detection confidence {confidence:.3f} (fit={fit_quality:.3f}, "
                     f"circularity={circularity:.3f}, size={size_score:.3f}, brightness={brightness:.3f})")

        return DetectionConfidence(
            circle_confidence=max(0.0, min(1.0, confidence)),
            fit_quality=fit_quality,
            size_score=size_score,
            brightness_consistency=brightness,
            circularity=circularity,
        )

    @staticmethod
    def fit_quality(circle: FittedCircle) -> float:
        """exp(-20 * residual / radius): 1.0 for a perfect fit, ~0.37 at 5% error"""
        return max(0.0, min(1.0, math.exp(-20.0 * circle.residual_error / circle.radius)))

    @staticmethod
    def size_score(circle: FittedCircle, image_width: int) -> float:
        ratio = circle.radius * 2.0 / image_width

        if ratio < 0.03:
            return 0.3
        if ratio > 0.80:
            return 0.4
        if 0.05 <= ratio <= 0.60:
            return 1.0
        if ratio < 0.05:
            return 0.3 + (ratio - 0.03) / 0.02 * 0.7
        return 1.0 - (ratio - 0.60) / 0.20 * 0.6

    @staticmethod
    def brightness_consistency(luma: np.ndarray, circle: FittedCircle) -> float:
        """Score the coefficient of variation of luma inside 0.9 r"""
        mean, std = disk_statistics(luma, circle.center_x, circle.center_y, circle.radius * 0.9)
        if mean <= 0.01:
            return 0.5

        cv = std / mean
        # Near-uniform disks are likely clipped, very variable ones likely not the moon
        if cv < 0.05:
            return 0.4
        if cv > 0.6:
            return 0.3
        if 0.1 <= cv <= 0.4:
            return 1.0
        if cv < 0.1:
            return 0.4 + (cv - 0.05) / 0.05 * 0.6
        return 1.0 - (cv - 0.4) / 0.2 * 0.7


def disk_pixels(shape, center_x: float, center_y: float, radius: float) -> Tuple[slice, slice, np.ndarray]:
    """Bounding slices of a disk and the boolean disk mask within them"""
    height, width = shape
    x0 = max(0, int(center_x - radius))
    x1 = min(width, int(center_x + radius) + 1)
    y0 = max(0, int(center_y - radius))
    y1 = min(height, int(center_y + radius) + 1)
    if x1 <= x0 or y1 <= y0:
        return slice(0, 0), slice(0, 0), np.zeros((0, 0), dtype=bool)

    ys, xs = np.mgrid[y0:y1, x0:x1]
    inside = (xs - center_x) ** 2 + (ys - center_y) ** 2 <= radius * radius
    return slice(y0, y1), slice(x0, x1), inside


def disk_statistics(luma: np.ndarray, center_x: float, center_y: float, radius: float) -> Tuple[float, float]:
    """Mean and sample standard deviation of luma inside a disk"""
    rows, cols, inside = disk_pixels(luma.shape, center_x, center_y, radius)
    values = luma[rows, cols][inside]
    if values.size == 0:
        return 0.0, 0.0
    std = float(np.std(values, ddof=1)) if values.size > 1 else 0.0
    return float(values.mean()), std
