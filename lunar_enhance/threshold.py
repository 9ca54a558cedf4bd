"""
Threshold analysis for moon detection

The moon is reliably the brightest compact region in a night-sky photo, so
the search starts from the bright end of the histogram: a starting bin is
taken where the top 15% of pixels begin, and Otsu's method is then run over
the bins at or above half that starting bin.
"""

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)

HISTOGRAM_BINS = 256
TOP_FRACTION = 0.15


@dataclass(frozen=True, eq=False)
class ThresholdResult:
    binary_mask: np.ndarray  # bool, True where luma >= threshold
    threshold: float         # normalised luma threshold
    threshold_bin: int


class ThresholdAnalyzer:
    """Produces a binary mask of bright pixels from a luma plane"""

    def __init__(self, bins: int = HISTOGRAM_BINS):
        self.bins = bins

    def analyze(self, luma: np.ndarray) -> ThresholdResult:
        histogram = self.compute_histogram(luma)
        threshold_bin = self.find_threshold_bin(histogram)
        threshold = threshold_bin / self.bins
        logger.debug(f"Luma threshold: bin {threshold_bin} ({threshold:.3f})")

        return ThresholdResult(
            binary_mask=np.asarray(luma) >= threshold,
            threshold=threshold,
            threshold_bin=threshold_bin,
        )

    def compute_histogram(self, luma: np.ndarray) -> np.ndarray:
        indices = np.clip((np.asarray(luma, dtype=np.float32) * self.bins).astype(np.int64), 0, self.bins - 1)
        return np.bincount(indices.ravel(), minlength=self.bins)

    def find_threshold_bin(self, histogram: np.ndarray) -> int:
        histogram = np.asarray(histogram, dtype=np.float64)
        total = histogram.sum()
        if total <= 0:
            return len(histogram) // 2

        # Walk down from the top until the brightest TOP_FRACTION is covered
        from_top = np.cumsum(histogram[::-1]) / total
        crossing = np.flatnonzero(from_top > TOP_FRACTION)
        start_bin = len(histogram) - 1 - int(crossing[0]) if crossing.size else len(histogram) - 1

        return self.otsu_threshold_bin(histogram, min_bin=start_bin // 2)

    @staticmethod
    def otsu_threshold_bin(histogram: np.ndarray, min_bin: int = 0) -> int:
        """Otsu's between-class variance maximisation over bins >= min_bin.

        Returns the last bin of the background class. When the maximum is a
        plateau (empty bins between two modes) the plateau midpoint is used.
        """
        counts = np.asarray(histogram, dtype=np.float64)[min_bin:]
        if counts.sum() <= 0:
            return len(histogram) // 2

        levels = np.arange(min_bin, min_bin + len(counts), dtype=np.float64)
        total = counts.sum()
        sum_total = float((levels * counts).sum())

        weight_bg = np.cumsum(counts)
        sum_bg = np.cumsum(levels * counts)
        weight_fg = total - weight_bg

        mean_bg = sum_bg / np.maximum(weight_bg, 1e-12)
        mean_fg = (sum_total - sum_bg) / np.maximum(weight_fg, 1e-12)
        variance = weight_bg * weight_fg * (mean_bg - mean_fg) ** 2
        variance[(weight_bg == 0) | (weight_fg == 0)] = 0.0

        best = int(np.argmax(variance))
        if variance[best] <= 0:
            return min_bin

        end = best
        while end + 1 < len(variance) and variance[end + 1] >= variance[best] * (1 - 1e-12):
            end += 1

        return min_bin + (best + end) // 2
