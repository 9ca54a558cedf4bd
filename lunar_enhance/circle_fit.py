"""
Circle fitting for moon detection

The default fit is algebraic (Taubin-style, on mean-centred coordinates),
falling back to a centroid / mean-radius fit when the normal equations are
near-singular. A RANSAC variant is available for noisy or partly occluded
limbs; it is opt-in and not used by the default detection flow.
"""

import logging
from typing import Optional

import numpy as np

from .models import FittedCircle

logger = logging.getLogger(__name__)

MIN_POINTS = 3
SINGULAR_DETERMINANT = 1e-10


def _as_points(points) -> np.ndarray:
    points = np.asarray(points, dtype=np.float64)
    return points.reshape(-1, 2)


def rms_residual(points: np.ndarray, center_x: float, center_y: float, radius: float) -> float:
    distances = np.hypot(points[:, 0] - center_x, points[:, 1] - center_y)
    return float(np.sqrt(np.mean((distances - radius) ** 2)))


class CircleFitter:
    """Fits a circle to (x, y) edge points"""

    def fit(self, points) -> Optional[FittedCircle]:
        """Algebraic fit; None when fewer than three points or no finite solution"""
        points = _as_points(points)
        if len(points) < MIN_POINTS:
            return None

        mean_x, mean_y = points.mean(axis=0)
        u = points[:, 0] - mean_x
        v = points[:, 1] - mean_y

        suu = np.sum(u * u)
        svv = np.sum(v * v)
        suv = np.sum(u * v)
        suuu = np.sum(u * u * u)
        svvv = np.sum(v * v * v)
        suvv = np.sum(u * v * v)
        svuu = np.sum(v * u * u)

        determinant = suu * svv - suv * suv
        if abs(determinant) <= SINGULAR_DETERMINANT:
            logger.debug("Circle fit: near-singular system, using simple fit")
            return self.fit_simple(points)

        rhs_u = 0.5 * (suuu + suvv)
        rhs_v = 0.5 * (svvv + svuu)
        uc = (rhs_u * svv - rhs_v * suv) / determinant
        vc = (rhs_v * suu - rhs_u * suv) / determinant

        center_x = mean_x + uc
        center_y = mean_y + vc
        radius = float(np.mean(np.hypot(points[:, 0] - center_x, points[:, 1] - center_y)))

        if not np.isfinite([center_x, center_y, radius]).all() or radius <= 0:
            logger.debug("Circle fit: non-finite solution, using simple fit")
            return self.fit_simple(points)

        return FittedCircle(
            center_x=float(center_x),
            center_y=float(center_y),
            radius=radius,
            residual_error=rms_residual(points, center_x, center_y, radius),
        )

    def fit_simple(self, points) -> Optional[FittedCircle]:
        """Centroid as center, mean distance as radius"""
        points = _as_points(points)
        if len(points) < MIN_POINTS:
            return None

        center_x, center_y = points.mean(axis=0)
        radius = float(np.mean(np.hypot(points[:, 0] - center_x, points[:, 1] - center_y)))
        if not np.isfinite([center_x, center_y, radius]).all() or radius <= 0:
            return None

        return FittedCircle(
            center_x=float(center_x),
            center_y=float(center_y),
            radius=radius,
            residual_error=rms_residual(points, center_x, center_y, radius),
        )

    def fit_ransac(self, points, iterations: int = 100, inlier_threshold: float = 2.0,
                   seed: Optional[int] = 0) -> Optional[FittedCircle]:
        """Robust fit: best three-point circle by inlier count, refit on its inliers"""
        points = _as_points(points)
        if len(points) < MIN_POINTS:
            return None

        rng = np.random.default_rng(seed)
        best_circle = None
        best_inliers = 0

        for _ in range(iterations):
            sample = points[rng.choice(len(points), 3, replace=False)]
            candidate = self.fit_three_points(sample[0], sample[1], sample[2])
            if candidate is None:
                continue

            distances = np.hypot(points[:, 0] - candidate.center_x, points[:, 1] - candidate.center_y)
            inliers = int(np.count_nonzero(np.abs(distances - candidate.radius) < inlier_threshold))
            if inliers > best_inliers:
                best_inliers = inliers
                best_circle = candidate

        if best_circle is None:
            return None

        distances = np.hypot(points[:, 0] - best_circle.center_x, points[:, 1] - best_circle.center_y)
        inliers = points[np.abs(distances - best_circle.radius) < inlier_threshold]
        logger.debug(f"RANSAC circle fit: {len(inliers)}/{len(points)} inliers")
        if len(inliers) >= MIN_POINTS:
            refit = self.fit(inliers)
            if refit is not None:
                return refit
        return best_circle

    @staticmethod
    def fit_three_points(p1, p2, p3) -> Optional[FittedCircle]:
        """Circumscribed circle of three points; None when collinear"""
        (ax, ay), (bx, by), (cx, cy) = p1, p2, p3
        d = 2.0 * (ax * (by - cy) + bx * (cy - ay) + cx * (ay - by))
        if abs(d) <= SINGULAR_DETERMINANT:
            return None

        a2 = ax * ax + ay * ay
        b2 = bx * bx + by * by
        c2 = cx * cx + cy * cy
        ux = (a2 * (by - cy) + b2 * (cy - ay) + c2 * (ay - by)) / d
        uy = (a2 * (cx - bx) + b2 * (ax - cx) + c2 * (bx - ax)) / d
        radius = float(np.hypot(ax - ux, ay - uy))

        if not np.isfinite([ux, uy, radius]).all() or radius <= 0:
            return None
        return FittedCircle(float(ux), float(uy), radius, 0.0)
