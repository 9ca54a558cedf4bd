"""
Test Suite: Perceptual Metrics and Tuning

Tests the perceptual evaluator on synthetic edges and phases, and the tuner's
parameter shaping and warnings.
"""

import numpy as np
import pytest

from lunar_enhance.backend import CpuBackend
from lunar_enhance.models import PerceptualMetrics
from lunar_enhance.perceptual import (FULL_PHASE_WARNING, LOW_DETAIL_WARNING, NOISE_WARNING, RINGING_WARNING,
                                      PerceptualMetricsEvaluator, PerceptualTuner)
from lunar_enhance.presets import CRISP_STILL, NATURAL_STILL


def neutral_metrics(**overrides):
    values = dict(blur_probability=0.0, ringing_score=0.0, noise_visibility=0.0,
                  local_contrast=0.0, edge_density=0.1, phase_contrast=0.1)
    values.update(overrides)
    return PerceptualMetrics(**values)


class TestPerceptualMetricsEvaluator:
    @pytest.fixture
    def full_mask(self):
        return np.ones((64, 64), dtype=np.float32), np.zeros((64, 64), dtype=np.float32)

    @pytest.fixture
    def step(self):
        luma = np.full((64, 64), 0.2, dtype=np.float32)
        luma[:, 32:] = 0.8
        return luma

    def test_metrics_are_bounded(self, moon_luma):
        moon_mask = (moon_luma > 0.3).astype(np.float32)
        metrics = PerceptualMetricsEvaluator().evaluate(moon_luma, moon_mask, np.zeros_like(moon_mask))

        for value in (metrics.blur_probability, metrics.ringing_score, metrics.noise_visibility,
                      metrics.local_contrast, metrics.edge_density, metrics.phase_contrast):
            assert 0.0 <= value <= 1.0

    def test_uniform_image(self, full_mask):
        mask, limb = full_mask
        metrics = PerceptualMetricsEvaluator().evaluate(np.full((64, 64), 0.5, dtype=np.float32), mask, limb)

        assert metrics.edge_density == 0.0
        assert metrics.ringing_score == 0.0
        assert metrics.blur_probability == 1.0
        assert metrics.phase_contrast == 0.0

    def test_blurred_edge_is_blurrier(self, step, full_mask):
        mask, limb = full_mask
        evaluator = PerceptualMetricsEvaluator()
        sharp = evaluator.evaluate(step, mask, limb)
        soft = evaluator.evaluate(CpuBackend().box_blur(step, 2), mask, limb)

        assert soft.blur_probability > sharp.blur_probability

    def test_ringing_detected(self, step, full_mask):
        mask, limb = full_mask
        ringing = step.copy()
        ringing[:, 29] = 0.15
        ringing[:, 30] = 0.25
        evaluator = PerceptualMetricsEvaluator()

        assert evaluator.evaluate(ringing, mask, limb).ringing_score > evaluator.evaluate(step, mask, limb).ringing_score

    def test_terminator_has_phase_contrast(self, full_mask):
        mask, limb = full_mask
        luma = np.full((64, 64), 0.05, dtype=np.float32)
        luma[:, :32] = 0.6

        assert PerceptualMetricsEvaluator().evaluate(luma, mask, limb).phase_contrast > 0.3

    def test_empty_input(self):
        empty = np.zeros((0, 0), dtype=np.float32)
        metrics = PerceptualMetricsEvaluator().evaluate(empty, empty, empty)
        assert metrics.blur_probability == 1.0


class TestPerceptualTuner:
    def test_neutral_metrics(self):
        result = PerceptualTuner().tune(NATURAL_STILL, neutral_metrics(), sharpness_score=0.5)

        assert result.warnings == []
        assert result.wavelet.fine_gain == pytest.approx(0.18 * 0.85)
        assert result.wavelet.mid_gain == pytest.approx(0.12)
        assert result.wavelet.coarse_gain == pytest.approx(0.05 * 0.70)
        assert result.micro_contrast.strength == pytest.approx(0.07)
        assert result.deconvolution == NATURAL_STILL.deconvolution

    def test_ringing_reduces_deconvolution(self):
        result = PerceptualTuner().tune(CRISP_STILL, neutral_metrics(ringing_score=0.2), sharpness_score=0.5)

        assert RINGING_WARNING in result.warnings
        assert result.deconvolution.iterations == CRISP_STILL.deconvolution.iterations - 2
        assert result.wavelet.fine_gain < CRISP_STILL.wavelet.fine_gain * 0.85 * 0.7

    def test_noise_adds_denoise(self):
        result = PerceptualTuner().tune(NATURAL_STILL, neutral_metrics(noise_visibility=0.9), sharpness_score=0.5)

        assert NOISE_WARNING in result.warnings
        assert result.denoise.luma_denoise_base == pytest.approx(0.43)
        assert result.denoise.chroma_denoise == pytest.approx(0.65)

    def test_blurry_low_detail_disables_deconvolution(self):
        metrics = neutral_metrics(blur_probability=0.9)
        result = PerceptualTuner().tune(NATURAL_STILL, metrics, sharpness_score=0.1)

        assert LOW_DETAIL_WARNING in result.warnings
        assert not result.deconvolution.enabled

    def test_full_phase_reduces_micro_contrast(self):
        result = PerceptualTuner().tune(NATURAL_STILL, neutral_metrics(phase_contrast=0.0), sharpness_score=0.5)

        assert FULL_PHASE_WARNING in result.warnings
        assert result.micro_contrast.strength == pytest.approx(0.07 * 0.6)

    def test_apply_to_keeps_other_groups(self):
        result = PerceptualTuner().tune(NATURAL_STILL, neutral_metrics(), sharpness_score=0.5)
        tuned = result.apply_to(NATURAL_STILL)

        assert tuned.halo_guard == NATURAL_STILL.halo_guard
        assert tuned.wavelet == result.wavelet
