"""
Test Suite: Moon Detection

Tests the detection chain on synthetic frames:
- Threshold analysis (top-fraction start bin + Otsu)
- Run-based connected components and blob statistics
- Algebraic and RANSAC circle fitting
- Confidence scoring and mask generation
- The MoonDetector outcome for found, missing and uncertain moons
"""

import math

import numpy as np
import pytest

from conftest import MOON_CENTER, MOON_RADIUS, make_moon_luma, to_rgb8
from lunar_enhance.circle_fit import CircleFitter
from lunar_enhance.components import ConnectedComponentsAnalyzer, UnionFind
from lunar_enhance.detector import DetectionConfig, MoonDetector, clipped_fraction
from lunar_enhance.enums import DetectionFailureReason
from lunar_enhance.masks import MaskGenerator, crop_rect_for
from lunar_enhance.models import CropRect, FittedCircle
from lunar_enhance.scoring import ConfidenceScorer
from lunar_enhance.threshold import ThresholdAnalyzer


def circle_points(cx, cy, r, count=36):
    angles = np.linspace(0, 2 * np.pi, count, endpoint=False)
    return np.column_stack((cx + r * np.cos(angles), cy + r * np.sin(angles)))


class TestThresholdAnalyzer:
    @pytest.fixture
    def bimodal(self):
        luma = np.full((100, 100), 0.1, dtype=np.float32)
        luma[20:50, 40:70] = 0.8
        return luma

    def test_separates_bright_square(self, bimodal):
        result = ThresholdAnalyzer().analyze(bimodal)

        assert 0.1 < result.threshold < 0.8
        assert result.binary_mask.dtype == bool
        assert int(result.binary_mask.sum()) == 900
        assert result.binary_mask[30, 50]
        assert not result.binary_mask[0, 0]

    def test_otsu_plateau_midpoint(self):
        histogram = np.zeros(256)
        histogram[10] = 500
        histogram[30] = 500

        assert ThresholdAnalyzer.otsu_threshold_bin(histogram) == 19

    def test_empty_histogram_defaults_to_middle(self):
        assert ThresholdAnalyzer().find_threshold_bin(np.zeros(256)) == 128

    def test_dark_sky_bright_moon_histogram(self):
        histogram = np.zeros(256)
        histogram[:90] = 0.9 / 90
        histogram[230:] = 0.1 / 26

        assert 90 < ThresholdAnalyzer().find_threshold_bin(histogram) < 230


class TestConnectedComponents:
    @pytest.fixture
    def two_squares(self):
        mask = np.zeros((50, 50), dtype=bool)
        mask[5:15, 5:15] = True
        mask[30:35, 30:35] = True
        return mask

    def test_blob_statistics(self, two_squares):
        blobs = ConnectedComponentsAnalyzer().find_blobs(two_squares)

        assert [blob.area for blob in blobs] == [100, 25]
        largest = blobs[0]
        assert largest.bounding_box == CropRect(5, 5, 10, 10)
        assert largest.centroid == pytest.approx((9.5, 9.5))
        assert largest.perimeter == 36

    def test_area_window(self, two_squares):
        blobs = ConnectedComponentsAnalyzer().find_blobs(two_squares, min_area=50)
        assert len(blobs) == 1
        assert blobs[0].area == 100

    def test_u_shape_is_one_component(self):
        mask = np.zeros((10, 10), dtype=bool)
        mask[:, 0] = True
        mask[:, 9] = True
        mask[9, :] = True

        labels, count = ConnectedComponentsAnalyzer().label(mask)
        assert count == 1
        assert labels[0, 0] == labels[0, 9]

    def test_diagonal_pixels_are_separate(self):
        mask = np.zeros((2, 2), dtype=bool)
        mask[0, 0] = True
        mask[1, 1] = True

        _, count = ConnectedComponentsAnalyzer().label(mask)
        assert count == 2

    def test_disk_is_round_and_line_is_not(self):
        ys, xs = np.mgrid[0:100, 0:100]
        mask = (xs - 50) ** 2 + (ys - 50) ** 2 <= 30 ** 2
        mask[5, 10:50] = True

        blobs = ConnectedComponentsAnalyzer().find_blobs(mask)
        assert blobs[0].circularity > 0.9
        assert blobs[1].circularity < 0.6

    def test_union_find(self):
        sets = UnionFind(5)
        sets.union(0, 1)
        sets.union(2, 3)
        sets.union(1, 3)

        assert sets.find(0) == sets.find(2)
        assert sets.find(4) != sets.find(0)
        assert len(set(sets.roots().tolist())) == 2


class TestCircleFitter:
    def test_exact_circle(self):
        circle = CircleFitter().fit(circle_points(50.0, 40.0, 20.0))

        assert circle.center_x == pytest.approx(50.0, abs=1e-6)
        assert circle.center_y == pytest.approx(40.0, abs=1e-6)
        assert circle.radius == pytest.approx(20.0, abs=1e-6)
        assert circle.residual_error < 1e-6

    def test_three_points_on_circle(self):
        circle = CircleFitter().fit([[70.0, 50.0], [50.0, 70.0], [30.0, 50.0]])

        assert circle.center == pytest.approx((50.0, 50.0), abs=1e-6)
        assert circle.radius == pytest.approx(20.0, abs=1e-6)
        assert circle.residual_error < 1e-6

    def test_too_few_points(self):
        assert CircleFitter().fit([[0, 0], [1, 1]]) is None
        assert CircleFitter().fit_ransac([[0, 0]]) is None

    def test_three_collinear_points(self):
        assert CircleFitter.fit_three_points((0, 0), (1, 1), (2, 2)) is None

    def test_ransac_ignores_outliers(self):
        rng = np.random.default_rng(7)
        inliers = circle_points(60.0, 55.0, 25.0, count=60)
        outliers = np.column_stack((60.0 + rng.uniform(-5, 5, 15), 55.0 + rng.uniform(-5, 5, 15)))
        points = np.vstack((inliers, outliers))

        robust = CircleFitter().fit_ransac(points, iterations=100, seed=0)
        plain = CircleFitter().fit(points)

        assert robust.center_x == pytest.approx(60.0, abs=0.1)
        assert robust.center_y == pytest.approx(55.0, abs=0.1)
        assert robust.radius == pytest.approx(25.0, abs=0.1)
        assert plain.residual_error > robust.residual_error

    def test_residual_shrinks_with_noise(self):
        base = circle_points(50.0, 50.0, 20.0, count=72)
        radial = np.random.default_rng(3).normal(0.0, 1.0, len(base))
        directions = (base - 50.0) / 20.0

        residuals = []
        for amplitude in (2.0, 0.5, 0.05, 0.0):
            points = base + directions * (radial * amplitude)[:, None]
            residuals.append(CircleFitter().fit(points).residual_error)

        assert all(r >= 0.0 for r in residuals)
        assert residuals == sorted(residuals, reverse=True)
        assert residuals[-1] < 1e-3


class TestConfidenceScorer:
    def test_size_score_bands(self):
        assert ConfidenceScorer.size_score(FittedCircle(120, 120, 40), 240) == 1.0
        assert ConfidenceScorer.size_score(FittedCircle(120, 120, 2), 240) == 0.3
        assert ConfidenceScorer.size_score(FittedCircle(120, 120, 110), 240) == 0.4
        assert ConfidenceScorer.size_score(FittedCircle(120, 120, 84), 240) == pytest.approx(0.7)

    def test_fit_quality(self):
        assert ConfidenceScorer.fit_quality(FittedCircle(0, 0, 10, 0.0)) == 1.0
        assert ConfidenceScorer.fit_quality(FittedCircle(0, 0, 10, 0.5)) == pytest.approx(math.exp(-1.0))

    def test_brightness_consistency(self):
        circle = FittedCircle(50, 50, 20)
        assert ConfidenceScorer.brightness_consistency(np.full((100, 100), 0.5), circle) == 0.4
        assert ConfidenceScorer.brightness_consistency(np.zeros((100, 100)), circle) == 0.5

    def test_composite_is_bounded(self, moon_luma):
        circle = FittedCircle(MOON_CENTER[0], MOON_CENTER[1], MOON_RADIUS, 0.3)
        blob = ConnectedComponentsAnalyzer().find_blobs(moon_luma > 0.3)[0]
        confidence = ConfidenceScorer().score(circle, blob, moon_luma)

        expected = (0.35 * confidence.fit_quality + 0.25 * confidence.circularity
                    + 0.20 * confidence.size_score + 0.20 * confidence.brightness_consistency)
        assert 0.0 <= confidence.circle_confidence <= 1.0
        assert confidence.circle_confidence == pytest.approx(min(1.0, expected))


class TestMaskGenerator:
    def test_crop_rect(self):
        circle = FittedCircle(120.0, 116.0, 40.0)
        assert crop_rect_for(circle, (240, 240), 1.25) == CropRect(70, 66, 100, 100)

    def test_crop_rect_clamped_to_image(self):
        rect = crop_rect_for(FittedCircle(10.0, 10.0, 20.0), (240, 240), 1.25)
        assert (rect.x, rect.y) == (0, 0)
        assert rect.width == 35

    def test_masks(self):
        result = MaskGenerator(feather_width=3.0, limb_ring_width=9.0).generate(
            FittedCircle(60.0, 60.0, 30.0), (200, 200), padding_factor=1.25)
        rect = result.crop_rect
        cx, cy = 60 - rect.x, 60 - rect.y

        assert result.moon_mask.data.shape == (rect.height, rect.width)
        assert result.moon_mask.value(cx, cy) == 1.0
        assert result.moon_mask.value(cx + 30, cy) == pytest.approx(0.5, abs=1e-5)
        assert result.moon_mask.value(0, 0) == pytest.approx(0.0, abs=1e-6)

        assert result.limb_ring_mask.value(cx + 26, cy) == 1.0
        assert result.limb_ring_mask.value(cx + 33, cy) == 0.0
        assert result.limb_ring_mask.value(cx, cy) == 0.0


class TestMoonDetector:
    def test_detects_moon(self, moon_image):
        outcome = MoonDetector().detect(moon_image)

        assert outcome.detected
        result = outcome.result
        assert result.circle.center_x == pytest.approx(MOON_CENTER[0], abs=1.5)
        assert result.circle.center_y == pytest.approx(MOON_CENTER[1], abs=1.5)
        assert result.circle.radius == pytest.approx(MOON_RADIUS, abs=2.0)
        assert result.circle_confidence > 0.7
        assert result.clipped_highlight_fraction == 0.0

        rect = result.crop_rect
        assert result.moon_mask.data.shape == (rect.height, rect.width)
        assert result.limb_ring_mask.data.shape == (rect.height, rect.width)
        assert rect.x < result.circle.center_x - result.circle.radius
        assert rect.x + rect.width > result.circle.center_x + result.circle.radius

    def test_grayscale_input(self, moon_luma):
        assert MoonDetector().detect(moon_luma).detected

    def test_empty_sky(self):
        outcome = MoonDetector().detect(np.zeros((240, 240, 3), dtype=np.uint8))

        assert not outcome.detected
        assert outcome.result is None
        assert outcome.failure is DetectionFailureReason.NO_CANDIDATE

    def test_low_confidence_keeps_result(self, moon_image):
        outcome = MoonDetector(DetectionConfig(min_confidence=0.99)).detect(moon_image)

        assert outcome.failure is DetectionFailureReason.LOW_CONFIDENCE
        assert outcome.result is not None
        assert not outcome.detected

    def test_ransac_detection(self, moon_image):
        outcome = MoonDetector(DetectionConfig(use_ransac=True)).detect(moon_image)

        assert outcome.detected
        assert outcome.result.circle.center_x == pytest.approx(MOON_CENTER[0], abs=1.5)

    def test_fast_path_reports_full_resolution(self):
        image = to_rgb8(make_moon_luma(size=960, center=(480.0, 464.0), radius=160.0))
        outcome = MoonDetector().detect(image, fast=True)

        assert outcome.detected
        circle = outcome.result.circle
        assert circle.center_x == pytest.approx(480.0, abs=6.0)
        assert circle.center_y == pytest.approx(464.0, abs=6.0)
        assert circle.radius == pytest.approx(160.0, abs=6.0)
        rect = outcome.result.crop_rect
        assert outcome.result.moon_mask.data.shape == (rect.height, rect.width)

    def test_clipped_fraction(self, clipped_moon_image):
        outcome = MoonDetector().detect(clipped_moon_image)

        assert outcome.result is not None
        assert outcome.result.clipped_highlight_fraction > 0.01

    def test_clipped_fraction_helper(self):
        luma = np.zeros((50, 50), dtype=np.float32)
        luma[20:30, 20:30] = 1.0
        assert clipped_fraction(luma, FittedCircle(25.0, 25.0, 3.0)) == 1.0
        assert clipped_fraction(luma, FittedCircle(5.0, 5.0, 3.0)) == 0.0

    def test_config_from_dict_ignores_unknown_keys(self):
        config = DetectionConfig.from_dict({"min_confidence": 0.7, "unused": True})
        assert config.min_confidence == 0.7
        assert config.fast is False
