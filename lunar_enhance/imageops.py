"""
Plane utilities shared by detection, enhancement and perceptual metrics.
"""

from typing import Optional, Tuple

import cv2
import numpy as np


def smoothstep(edge0: float, edge1: float, x):
    """Hermite ramp from 0 at edge0 to 1 at edge1 (scalar or array)"""
    if edge1 == edge0:
        return np.where(np.asarray(x) >= edge1, 1.0, 0.0)
    t = np.clip((np.asarray(x, dtype=np.float64) - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def blend(base: np.ndarray, processed: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Mix processed into base through a [0, 1] mask"""
    t = np.clip(mask, 0.0, 1.0)
    return (base * (1.0 - t) + processed * t).astype(np.float32)


def sobel_gradients(plane: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """3x3 Sobel gx, gy and magnitude; the one-pixel border is zero"""
    plane = np.ascontiguousarray(plane, dtype=np.float32)
    gx = np.zeros_like(plane)
    gy = np.zeros_like(plane)
    height, width = plane.shape
    if width > 2 and height > 2:
        gx_full = cv2.Sobel(plane, cv2.CV_32F, 1, 0, ksize=3)
        gy_full = cv2.Sobel(plane, cv2.CV_32F, 0, 1, ksize=3)
        gx[1:-1, 1:-1] = gx_full[1:-1, 1:-1]
        gy[1:-1, 1:-1] = gy_full[1:-1, 1:-1]
    return gx, gy, np.sqrt(gx * gx + gy * gy)


def dilate(mask: np.ndarray, radius: int) -> np.ndarray:
    """Square max filter of the given radius"""
    mask = np.ascontiguousarray(mask, dtype=np.float32)
    if radius <= 0:
        return mask.copy()
    kernel = np.ones((2 * radius + 1, 2 * radius + 1), dtype=np.uint8)
    return cv2.dilate(mask, kernel, borderType=cv2.BORDER_REPLICATE)


def resize_bilinear(plane: np.ndarray, width: int, height: int) -> np.ndarray:
    plane = np.ascontiguousarray(plane, dtype=np.float32)
    if plane.shape == (height, width):
        return plane.copy()
    return cv2.resize(plane, (width, height), interpolation=cv2.INTER_LINEAR)


def downsample_to(plane: np.ndarray, max_dimension: int) -> np.ndarray:
    """Bilinear downsample so the longer side is at most max_dimension"""
    height, width = plane.shape
    max_side = max(width, height)
    if max_side <= max_dimension:
        return np.ascontiguousarray(plane, dtype=np.float32)
    scale = max_dimension / max_side
    return resize_bilinear(plane, max(1, int(round(width * scale))), max(1, int(round(height * scale))))


def sample_bilinear(plane: np.ndarray, x, y) -> np.ndarray:
    """Bilinear samples at (x, y), coordinates clamped to the plane"""
    height, width = plane.shape
    x = np.clip(np.asarray(x, dtype=np.float64), 0, width - 1)
    y = np.clip(np.asarray(y, dtype=np.float64), 0, height - 1)

    x0 = np.floor(x).astype(np.int64)
    y0 = np.floor(y).astype(np.int64)
    x1 = np.minimum(x0 + 1, width - 1)
    y1 = np.minimum(y0 + 1, height - 1)
    fx = x - x0
    fy = y - y0

    top = plane[y0, x0] * (1 - fx) + plane[y0, x1] * fx
    bottom = plane[y1, x0] * (1 - fx) + plane[y1, x1] * fx
    return top * (1 - fy) + bottom * fy


def local_std(plane: np.ndarray, radius: int) -> np.ndarray:
    """Standard deviation over a (2r+1)^2 window"""
    plane = np.ascontiguousarray(plane, dtype=np.float32)
    size = (2 * radius + 1, 2 * radius + 1)
    mean = cv2.blur(plane, size, borderType=cv2.BORDER_REPLICATE)
    mean_sq = cv2.blur(plane * plane, size, borderType=cv2.BORDER_REPLICATE)
    return np.sqrt(np.maximum(mean_sq - mean * mean, 0.0))


def histogram_percentile(values: np.ndarray, percentile: float,
                         mask: Optional[np.ndarray] = None, bins: int = 1024) -> float:
    """Percentile of [0, 1] data from a fixed-bin histogram, optionally where mask > 0.5"""
    values = np.asarray(values, dtype=np.float32)
    if mask is not None and mask.shape == values.shape:
        values = values[mask > 0.5]
    values = values.ravel()
    if values.size == 0 or bins <= 1:
        return 0.0

    indices = np.clip((np.clip(values, 0.0, 1.0) * (bins - 1)).astype(np.int64), 0, bins - 1)
    histogram = np.bincount(indices, minlength=bins)
    target = int((values.size - 1) * min(1.0, max(0.0, percentile)))
    cumulative = np.cumsum(histogram)
    index = int(np.searchsorted(cumulative - 1, target, side='left'))
    return min(index, bins - 1) / (bins - 1)
