"""
Gaussian kernel cache for the Lunar Enhancement Pipeline

Kernels are shared between stages and between concurrent runs, so the cache
is the one piece of process-wide mutable state and is guarded by a lock.
"""

import logging
import threading
from typing import Dict

import numpy as np

logger = logging.getLogger(__name__)


def build_gaussian_kernel(sigma: float) -> np.ndarray:
    """Normalised 1-D Gaussian with radius max(1, ceil(3 * sigma))"""
    radius = max(1, int(np.ceil(3.0 * sigma)))
    x = np.arange(-radius, radius + 1, dtype=np.float64)
    kernel = np.exp(-(x * x) / (2.0 * sigma * sigma))
    kernel /= kernel.sum()
    return kernel.astype(np.float32)


class GaussianKernelCache:
    """Memoises 1-D Gaussian kernels keyed by sigma (0.001 px resolution)"""

    def __init__(self):
        self._cache: Dict[int, np.ndarray] = {}
        self._lock = threading.Lock()

    def kernel(self, sigma: float) -> np.ndarray:
        sigma = max(0.1, float(sigma))
        key = int(round(sigma * 1000))

        with self._lock:
            cached = self._cache.get(key)
            if cached is None:
                cached = build_gaussian_kernel(key / 1000.0)
                cached.setflags(write=False)
                self._cache[key] = cached
                logger.debug(f"Cached Gaussian kernel sigma={key / 1000.0:.3f} size={cached.size}")
        return cached

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def clear(self):
        with self._lock:
            self._cache.clear()


kernel_cache = GaussianKernelCache()
