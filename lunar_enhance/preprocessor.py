"""
Image Preprocessor for the Lunar Enhancement Pipeline

This module contains luminance extraction (with one optional fast, downsampled
pathway), crop rectangle clamping and the BT.709 colour conversion between
RGB images and luma/chroma planes.
"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from .errors import ConversionFailure, InvalidCropError
from .models import CropRect

logger = logging.getLogger(__name__)

# BT.709 luma weights
KR = 0.2126
KG = 0.7152
KB = 0.0722
CB_SCALE = 2.0 * (1.0 - KB)  # 1.8556
CR_SCALE = 2.0 * (1.0 - KR)  # 1.5748


def to_float_image(image: np.ndarray) -> np.ndarray:
    """Normalise a uint8/uint16/float image to float32 in [0, 1]"""
    if image.dtype == np.uint8:
        return image.astype(np.float32) / 255.0
    if image.dtype == np.uint16:
        return image.astype(np.float32) / 65535.0
    return np.clip(image.astype(np.float32), 0.0, 1.0)


class LuminanceExtractor:
    """BT.709 luma extraction from RGB or grayscale images"""

    def extract(self, image: np.ndarray, fast: bool = False, target_width: int = 512) -> np.ndarray:
        """Luma plane in [0, 1]; with ``fast`` the image is first area-downsampled to target_width"""
        image = to_float_image(image)

        if fast and image.shape[1] > target_width:
            scale = target_width / image.shape[1]
            target_height = max(1, int(round(image.shape[0] * scale)))
            image = cv2.resize(image, (target_width, target_height), interpolation=cv2.INTER_AREA)
            logger.debug(f"Fast luma path: downsampled to {target_width}x{target_height}")

        if image.ndim == 2:
            return np.ascontiguousarray(image, dtype=np.float32)

        luma = KR * image[..., 0] + KG * image[..., 1] + KB * image[..., 2]
        return np.clip(luma, 0.0, 1.0).astype(np.float32)


class ImageCropper:
    """Clamps crop rectangles and extracts crops"""

    @staticmethod
    def clamped_rect(rect: CropRect, image_shape: Tuple[int, ...]) -> Optional[CropRect]:
        height, width = image_shape[:2]
        x0 = max(0, int(rect.x))
        y0 = max(0, int(rect.y))
        x1 = min(width, int(rect.x) + int(rect.width))
        y1 = min(height, int(rect.y) + int(rect.height))

        if x1 <= x0 or y1 <= y0:
            return None
        return CropRect(x0, y0, x1 - x0, y1 - y0)

    def crop(self, image: np.ndarray, rect: CropRect) -> np.ndarray:
        """Copy of the image inside rect; raises InvalidCropError when empty"""
        if rect.is_empty:
            raise InvalidCropError(rect, image.shape)

        clamped = self.clamped_rect(rect, image.shape)
        if clamped is None:
            raise InvalidCropError(rect, image.shape)

        rows, cols = clamped.slices()
        return image[rows, cols].copy()


class ColorConverter:
    """RGB <-> (Y, Cb, Cr) planes with BT.709 coefficients"""

    def rgb_to_ycbcr(self, image: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        rgb = to_float_image(image)
        if rgb.size == 0:
            raise ConversionFailure(f"Cannot convert empty image of shape {image.shape}")

        if rgb.ndim == 2:
            zeros = np.zeros_like(rgb)
            return rgb.copy(), zeros, zeros.copy()

        r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
        y = KR * r + KG * g + KB * b
        cb = (b - y) / CB_SCALE
        cr = (r - y) / CR_SCALE
        return y.astype(np.float32), cb.astype(np.float32), cr.astype(np.float32)

    def ycbcr_to_rgb(self, y: np.ndarray, cb: np.ndarray, cr: np.ndarray) -> np.ndarray:
        """Inverse conversion back to an RGB uint8 image"""
        if y.size == 0:
            raise ConversionFailure("Cannot build an image from empty planes")

        r = y + CR_SCALE * cr
        b = y + CB_SCALE * cb
        g = (y - KR * r - KB * b) / KG

        rgb = np.stack([r, g, b], axis=-1)
        return (np.clip(rgb, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
