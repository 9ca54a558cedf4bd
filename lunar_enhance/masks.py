"""
Mask generation for moon processing

Given a fitted circle, computes the padded crop rectangle and, at the crop's
resolution, a cosine-feathered moon mask and a limb-ring mask covering the
band just inside the limb.
"""

import logging
import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .models import CropRect, FittedCircle, MaskBuffer

logger = logging.getLogger(__name__)

LIMB_TRANSITION_WIDTH = 2.0


@dataclass(frozen=True, eq=False)
class MaskGenerationResult:
    crop_rect: CropRect
    moon_mask: MaskBuffer
    limb_ring_mask: MaskBuffer


def crop_rect_for(circle: FittedCircle, image_size: Tuple[int, int], padding_factor: float) -> CropRect:
    """Square of side 2 * r * padding_factor around the circle, clamped to the image"""
    width, height = image_size
    half = circle.radius * padding_factor

    x0 = max(0, int(math.floor(circle.center_x - half)))
    y0 = max(0, int(math.floor(circle.center_y - half)))
    x1 = min(width, int(math.ceil(circle.center_x + half)))
    y1 = min(height, int(math.ceil(circle.center_y + half)))
    return CropRect(x0, y0, max(0, x1 - x0), max(0, y1 - y0))


def distance_field(width: int, height: int, center_x: float, center_y: float) -> np.ndarray:
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float32)
    return np.hypot(xs - center_x, ys - center_y)


def feathered_disk(distance: np.ndarray, radius: float, feather: float) -> np.ndarray:
    """1 inside r - f, 0 beyond r + f, raised-cosine falloff between"""
    inner = radius - feather
    outer = radius + feather
    if outer <= inner:
        return (distance <= radius).astype(np.float32)

    t = np.clip((distance - inner) / (outer - inner), 0.0, 1.0)
    return (0.5 * (1.0 + np.cos(t * np.pi))).astype(np.float32)


def limb_ring(distance: np.ndarray, radius: float, ring_width: float) -> np.ndarray:
    """1 over [r - w, r], linear ramps of LIMB_TRANSITION_WIDTH on both sides"""
    inner = radius - ring_width
    below = 1.0 - (inner - distance) / LIMB_TRANSITION_WIDTH
    above = 1.0 - (distance - radius) / LIMB_TRANSITION_WIDTH
    ring = np.where(distance < inner, below, np.where(distance > radius, above, 1.0))
    return np.clip(ring, 0.0, 1.0).astype(np.float32)


class MaskGenerator:
    """Builds the crop rectangle, moon mask and limb-ring mask for a circle"""

    def __init__(self, feather_width: float = 3.0, limb_ring_width: float = 9.0):
        self.feather_width = feather_width
        self.limb_ring_width = limb_ring_width

    def generate(self, circle: FittedCircle, image_size: Tuple[int, int],
                 padding_factor: float = 1.3) -> MaskGenerationResult:
        """image_size is (width, height); masks are sized to the crop"""
        rect = crop_rect_for(circle, image_size, padding_factor)
        local_x = circle.center_x - rect.x
        local_y = circle.center_y - rect.y

        distance = distance_field(rect.width, rect.height, local_x, local_y)
        moon_mask = MaskBuffer(feathered_disk(distance, circle.radius, self.feather_width))
        ring_mask = MaskBuffer(limb_ring(distance, circle.radius, self.limb_ring_width))

        logger.debug(f"Generated masks {rect.width}x{rect.height} at ({rect.x}, {rect.y})")
        return MaskGenerationResult(crop_rect=rect, moon_mask=moon_mask, limb_ring_mask=ring_mask)
