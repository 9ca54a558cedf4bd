"""
Test Suite: Enhancement Pipeline

Tests the end-to-end run on a detected synthetic moon:
- Output shapes, metrics and reproducibility record
- Progress reporting order and callback isolation
- Clipped-capture guardrails and the single halo-mitigation replay
- Fatal crop errors
- Dataset mode with per-image sidecars, fallback and skips
"""

import json
from dataclasses import replace

import cv2
import numpy as np
import pytest

from lunar_enhance import pipeline as pipeline_module
from lunar_enhance.config import DEFAULT_CONFIG, merge_config
from lunar_enhance.detector import MoonDetector
from lunar_enhance.enums import CaptureQuality, EnhancementPreset
from lunar_enhance.errors import InvalidCropError
from lunar_enhance.models import CropRect, ImageMetadata, ProcessingParameters
from lunar_enhance.pipeline import (FALLBACK_WARNING, HALO_MITIGATION_WARNING, HIGHLIGHTS_CLIPPED_WARNING,
                                    HIGHLIGHTS_SOFTENED_WARNING, MoonEnhancementPipeline)
from lunar_enhance.presets import NATURAL_STILL


class TestRun:
    def test_output_matches_crop(self, pipeline, moon_image, detection):
        output = pipeline.run(moon_image, detection, EnhancementPreset.NATURAL, 50)
        rect = detection.crop_rect

        assert output.enhanced.shape == (rect.height, rect.width, 3)
        assert output.enhanced.dtype == np.uint8
        rows, cols = rect.slices()
        assert np.array_equal(output.original_crop, moon_image[rows, cols])

    def test_metrics_and_parameters(self, pipeline, moon_image, detection):
        output = pipeline.run(moon_image, detection, EnhancementPreset.CRISP, 80, is_video=False)
        metrics = output.metrics

        assert output.parameters.preset is EnhancementPreset.CRISP
        assert output.parameters.strength == 80.0
        assert metrics.circle_confidence == detection.circle_confidence
        assert metrics.clipped_fraction == 0.0
        assert 0.0 <= metrics.median_c <= 1.0
        assert isinstance(metrics.capture_quality, CaptureQuality)
        assert metrics.halo_mitigation_runs in (0, 1)
        json.dumps(metrics.to_dict())

    def test_progress_is_ordered(self, pipeline, moon_image, detection):
        reports = []
        pipeline.run(moon_image, detection, progress=lambda stage, fraction: reports.append((stage, fraction)))

        assert reports[0] == ("Cropping", 0.05)
        assert reports[-1] == ("Done", 1.0)
        fractions = [fraction for _, fraction in reports]
        assert fractions == sorted(fractions)
        assert "Sharpening" in [stage for stage, _ in reports]

    def test_failing_progress_callback_is_ignored(self, pipeline, moon_image, detection):
        def explode(stage, fraction):
            raise RuntimeError("display went away")

        output = pipeline.run(moon_image, detection, progress=explode)
        assert output.enhanced.size > 0

    def test_deterministic(self, pipeline, moon_image, detection):
        first = pipeline.run(moon_image, detection, EnhancementPreset.CRISP, 70)
        second = pipeline.run(moon_image, detection, EnhancementPreset.CRISP, 70)

        assert np.array_equal(first.enhanced, second.enhanced)
        assert first.warnings == second.warnings
        assert first.metrics == second.metrics

    def test_clipped_capture_guardrails(self, pipeline, clipped_moon_image):
        outcome = MoonDetector().detect(clipped_moon_image)
        output = pipeline.run(clipped_moon_image, outcome.result, EnhancementPreset.NATURAL, 100)

        assert HIGHLIGHTS_CLIPPED_WARNING in output.warnings
        assert HIGHLIGHTS_SOFTENED_WARNING in output.warnings
        assert not output.metrics.deconvolution_applied

    def test_halo_mitigation_runs_once(self, pipeline, moon_image, detection, monkeypatch):
        strict = replace(NATURAL_STILL, halo_guard=replace(NATURAL_STILL.halo_guard, overshoot_threshold=-1.0))
        monkeypatch.setattr(pipeline_module, 'preset_for', lambda preset, is_video=False: strict)

        reports = []
        output = pipeline.run(moon_image, detection, progress=lambda stage, fraction: reports.append(stage))

        assert output.metrics.halo_mitigation_runs == 1
        assert not output.metrics.halo_passed
        assert output.warnings.count(HALO_MITIGATION_WARNING) == 1
        assert reports.count("Mitigating halos") == 1

    def test_deconvolution_gates(self, pipeline, moon_image, detection, monkeypatch):
        def run_with_gates(min_circle_confidence, min_median_c):
            deconvolution = replace(NATURAL_STILL.deconvolution, min_circle_confidence=min_circle_confidence,
                                    min_median_c=min_median_c)
            gated = replace(NATURAL_STILL, deconvolution=deconvolution)
            monkeypatch.setattr(pipeline_module, 'preset_for', lambda preset, is_video=False: gated)
            reports = []
            output = pipeline.run(moon_image, detection, strength=100,
                                  progress=lambda stage, fraction: reports.append(stage))
            return output.metrics.deconvolution_applied, "Deconvolving" in reports

        assert run_with_gates(0.0, 0.0) == (True, True)
        assert run_with_gates(detection.circle_confidence + 0.01, 0.0) == (False, False)
        assert run_with_gates(0.0, 1.01) == (False, False)

    def test_invalid_crop(self, pipeline, moon_image, detection):
        outside = replace(detection, crop_rect=CropRect(500, 500, 20, 20))
        with pytest.raises(InvalidCropError):
            pipeline.run(moon_image, outside)

        empty = replace(detection, crop_rect=CropRect(10, 10, 0, 5))
        with pytest.raises(InvalidCropError):
            pipeline.run(moon_image, empty)

    def test_parameters_round_trip(self, pipeline, moon_image, detection):
        output = pipeline.run(moon_image, detection, EnhancementPreset.CRISP, 35, is_video=True)
        restored = ProcessingParameters.from_dict(output.parameters.to_dict())
        assert restored == output.parameters


class TestDatasetMode:
    @pytest.fixture
    def dataset(self, tmp_path, moon_image):
        input_dir = tmp_path / "input"
        input_dir.mkdir()
        cv2.imwrite(str(input_dir / "moon.png"), cv2.cvtColor(moon_image, cv2.COLOR_RGB2BGR))
        cv2.imwrite(str(input_dir / "sky.png"), np.zeros((120, 120, 3), dtype=np.uint8))
        (input_dir / "broken.png").write_bytes(b"not an image")
        return input_dir

    def test_process_dataset(self, pipeline, dataset, tmp_path):
        output_dir = tmp_path / "output"
        stats = pipeline.process_dataset(str(dataset), str(output_dir))

        assert stats["total_files"] == 3
        assert stats["processed"] == 1
        assert stats["not_detected"] == 1
        assert stats["failed"] == 1
        assert stats["presets"] == {"natural": 1}

        assert (output_dir / "enhanced_moon.png").exists()
        with open(output_dir / "enhanced_moon.json") as f:
            sidecar = json.load(f)
        assert sidecar["parameters"]["preset"] == "natural"
        assert sidecar["parameters"]["strength"] == 50
        assert "median_c" in sidecar["metrics"]

    def test_unwritable_output_counts_as_failed(self, pipeline, dataset, tmp_path):
        pipeline.config['output_format'] = 'xyz'
        stats = pipeline.process_dataset(str(dataset), str(tmp_path / "output"))

        assert stats["processed"] == 0
        assert stats["failed"] == 2
        assert stats["not_detected"] == 1
        assert stats["presets"] == {}

    def test_rejected_write_counts_as_failed(self, pipeline, dataset, tmp_path, monkeypatch):
        monkeypatch.setattr(cv2, 'imwrite', lambda path, image: False)
        output_dir = tmp_path / "output"
        stats = pipeline.process_dataset(str(dataset), str(output_dir))

        assert stats["processed"] == 0
        assert stats["failed"] == 2
        assert not (output_dir / "enhanced_moon.json").exists()

    def test_empty_directory(self, pipeline, tmp_path):
        stats = pipeline.process_dataset(str(tmp_path), str(tmp_path / "out"))
        assert stats == {"status": "no_files", "processed": 0}

    def test_load_image_is_rgb(self, pipeline, tmp_path):
        image = np.zeros((10, 12, 3), dtype=np.uint8)
        image[..., 0] = 200
        path = tmp_path / "red.png"
        cv2.imwrite(str(path), cv2.cvtColor(image, cv2.COLOR_RGB2BGR))

        loaded, metadata = pipeline.load_image(str(path))
        assert loaded[0, 0].tolist() == [200, 0, 0]
        assert metadata.image_id == "red"
        assert metadata.resolution == (12, 10)

    def test_low_confidence_fallback(self, moon_image):
        config = merge_config(DEFAULT_CONFIG, {"preset": "crisp", "detection": {"min_confidence": 0.99}})
        fallback_pipeline = MoonEnhancementPipeline(config=config)
        metadata = ImageMetadata("moon", "moon.png", (240, 240))

        output, status = fallback_pipeline.enhance_image(moon_image, metadata)

        assert status == 'low_confidence'
        assert output.warnings[0] == FALLBACK_WARNING
        assert output.parameters.preset is EnhancementPreset.NATURAL
        assert output.parameters.strength == 25.0
