"""
Execution backends for the Lunar Enhancement Pipeline

This module contains the CPU reference backend (OpenCV) and an accelerated
backend (PyTorch, CUDA when available) for the separable filters that
dominate restoration cost. Both use replicated borders and must agree within
numerical tolerance; the pipeline receives one of them at construction.
"""

import logging
from typing import Optional

import cv2
import numpy as np
import torch
import torch.nn.functional as F

from .kernels import GaussianKernelCache, kernel_cache

logger = logging.getLogger(__name__)


def _as_plane(plane: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(plane, dtype=np.float32)


class CpuBackend:
    """Reference implementation on OpenCV"""

    name = "cpu"

    def __init__(self, kernels: Optional[GaussianKernelCache] = None):
        self.kernels = kernels or kernel_cache

    def separable_filter(self, plane: np.ndarray, kernel: np.ndarray) -> np.ndarray:
        kernel = np.asarray(kernel, dtype=np.float32)
        return cv2.sepFilter2D(_as_plane(plane), cv2.CV_32F, kernel, kernel,
                               borderType=cv2.BORDER_REPLICATE)

    def gaussian_blur(self, plane: np.ndarray, sigma: float) -> np.ndarray:
        return self.separable_filter(plane, self.kernels.kernel(sigma))

    def box_blur(self, plane: np.ndarray, radius: int) -> np.ndarray:
        if radius <= 0:
            return _as_plane(plane).copy()
        size = 2 * radius + 1
        return cv2.blur(_as_plane(plane), (size, size), borderType=cv2.BORDER_REPLICATE)


class TorchBackend(CpuBackend):
    """Accelerated implementation on PyTorch convolutions"""

    name = "torch"

    def __init__(self, device: Optional[str] = None, kernels: Optional[GaussianKernelCache] = None):
        super().__init__(kernels)
        self.device = torch.device(device or ('cuda' if torch.cuda.is_available() else 'cpu'))
        logger.info(f"Initialized torch backend on device: {self.device}")

    def separable_filter(self, plane: np.ndarray, kernel: np.ndarray) -> np.ndarray:
        weights = torch.from_numpy(np.asarray(kernel, dtype=np.float32)).to(self.device)
        radius = weights.numel() // 2

        with torch.no_grad():
            tensor = torch.from_numpy(_as_plane(plane))[None, None].to(self.device)
            tensor = F.pad(tensor, (radius, radius, 0, 0), mode='replicate')
            tensor = F.conv2d(tensor, weights.view(1, 1, 1, -1))
            tensor = F.pad(tensor, (0, 0, radius, radius), mode='replicate')
            tensor = F.conv2d(tensor, weights.view(1, 1, -1, 1))

        return tensor[0, 0].cpu().numpy()

    def box_blur(self, plane: np.ndarray, radius: int) -> np.ndarray:
        if radius <= 0:
            return _as_plane(plane).copy()
        size = 2 * radius + 1
        return self.separable_filter(plane, np.full(size, 1.0 / size, dtype=np.float32))


def create_backend(name: str = "cpu", device: Optional[str] = None) -> CpuBackend:
    """Build a backend by configuration name"""
    if name == "cpu":
        return CpuBackend()
    if name == "torch":
        return TorchBackend(device=device)
    raise ValueError(f"Unknown backend: {name!r}")
