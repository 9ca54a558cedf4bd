"""
Halo guard for the Lunar Enhancement Pipeline

Samples luma radially just inside and just outside the fitted limb and
reports the worst relative overshoot, which the pipeline compares against
the preset threshold to decide on its single mitigation replay.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .models import FittedCircle
from .presets import HaloGuardParameters

logger = logging.getLogger(__name__)

SAMPLE_OFFSET = 2.0
MIN_SAMPLE_ANGLES = 8


@dataclass(frozen=True)
class HaloGuardResult:
    overshoot_metric: float
    passed: bool


class HaloGuard:
    """Radial overshoot check across the limb"""

    def evaluate(self, luma: np.ndarray, circle: FittedCircle, params: HaloGuardParameters) -> HaloGuardResult:
        """``circle`` must be in the coordinates of ``luma`` (i.e. crop-local)"""
        if luma.size == 0:
            return HaloGuardResult(overshoot_metric=0.0, passed=True)

        count = max(MIN_SAMPLE_ANGLES, params.sample_angles)
        angles = np.arange(count) * (2.0 * np.pi / count)
        cos_a, sin_a = np.cos(angles), np.sin(angles)

        inside = self._sample(luma, circle.center_x + (circle.radius - SAMPLE_OFFSET) * cos_a,
                              circle.center_y + (circle.radius - SAMPLE_OFFSET) * sin_a)
        outside = self._sample(luma, circle.center_x + (circle.radius + SAMPLE_OFFSET) * cos_a,
                               circle.center_y + (circle.radius + SAMPLE_OFFSET) * sin_a)

        overshoot = np.maximum(outside - inside, 0.0) / np.maximum(inside, 1e-3)
        metric = float(overshoot.max())
        passed = metric <= params.overshoot_threshold

        logger.debug(f"Halo guard: overshoot {metric:.4f} (threshold {params.overshoot_threshold})")
        return HaloGuardResult(overshoot_metric=metric, passed=passed)

    @staticmethod
    def _sample(luma: np.ndarray, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        height, width = luma.shape
        ix = np.clip(np.round(x).astype(np.int64), 0, width - 1)
        iy = np.clip(np.round(y).astype(np.int64), 0, height - 1)
        return luma[iy, ix].astype(np.float64)
