"""
Main Pipeline for the Lunar Enhancement Pipeline

This module contains the MoonEnhancementPipeline class which orchestrates
detection, confidence mapping, tonal correction, restoration, the halo guard
and its single mitigation replay, as well as batch processing of image
directories.
"""

import json
import logging
import math
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from .backend import CpuBackend, create_backend
from .confidence import ConfidenceMapBuilder, SharpnessScorer
from .config import create_default_config, load_config
from .corrector import Denoiser, HighlightCompensator, ToneMapper
from .detector import DetectionConfig, MoonDetector
from .enums import CaptureQuality, DetectionFailureReason, EnhancementPreset, PipelineStage
from .errors import InvalidCropError
from .halo_guard import HaloGuard
from .imageops import blend, dilate, histogram_percentile
from .models import (ConfidenceMap, DetectionOutcome, EnhancementMetrics, EnhancementOutput, ImageMetadata,
                     MoonDetectionResult, ProcessingParameters)
from .parallel import ParallelProcessor
from .perceptual import PerceptualMetricsEvaluator, PerceptualTuner
from .preprocessor import ColorConverter, ImageCropper
from .presets import PresetConfiguration, clipped_highlight_guardrail, halo_mitigation, preset_for
from .processor import Deconvolver, MicroContrast, WaveletSharpener

logger = logging.getLogger(__name__)

__all__ = ['MoonEnhancementPipeline', 'create_default_config']

ProgressCallback = Callable[[str, float], None]

STAGE_PROGRESS = {
    PipelineStage.CROP: 0.05,
    PipelineStage.COLOR_CONVERT: 0.10,
    PipelineStage.CONFIDENCE_MAP: 0.20,
    PipelineStage.PERCEPTUAL: 0.25,
    PipelineStage.TONE_MAP: 0.30,
    PipelineStage.DENOISE: 0.45,
    PipelineStage.HIGHLIGHT_COMPENSATE: 0.50,
    PipelineStage.DECONVOLVE: 0.60,
    PipelineStage.SHARPEN: 0.75,
    PipelineStage.MICRO_CONTRAST: 0.85,
    PipelineStage.HALO_CHECK: 0.90,
    PipelineStage.MITIGATE: 0.92,
    PipelineStage.FINALIZE: 0.95,
    PipelineStage.DONE: 1.0,
}

HIGHLIGHTS_CLIPPED_WARNING = "Highlights clipped. Kept the result natural."
HIGHLIGHTS_SOFTENED_WARNING = "Highlights softened (clipped capture)."
HALO_MITIGATION_WARNING = "Halo mitigation applied."
FALLBACK_WARNING = "Moon detection uncertain. Applied conservative enhancement."

HIGHLIGHT_TRIGGER_FRACTION = 0.01
HIGHLIGHT_CLIP_START = 0.90
HIGHLIGHT_STRENGTH = 0.6
MICRO_CONTRAST_MIN_STRENGTH = 0.015
MICRO_CONTRAST_MIN_EDGE_DENSITY = 0.02

IMAGE_PATTERNS = ['*.png', '*.jpg', '*.jpeg', '*.tif', '*.tiff']


class MoonEnhancementPipeline:
    """Detection and confidence-gated enhancement orchestrator"""

    def __init__(self, config_path: Optional[str] = None, config: Optional[Dict] = None,
                 backend: Optional[CpuBackend] = None):
        self.config = config if config is not None else load_config(config_path)
        self.backend = backend or create_backend(self.config.get('backend', 'cpu'), self.config.get('device'))

        # Initialize components
        self.detector = MoonDetector(DetectionConfig.from_dict(self.config.get('detection')))
        self.cropper = ImageCropper()
        self.color_converter = ColorConverter()
        self.confidence_builder = ConfidenceMapBuilder()
        self.sharpness_scorer = SharpnessScorer()
        self.perceptual_evaluator = PerceptualMetricsEvaluator(self.backend)
        self.perceptual_tuner = PerceptualTuner()
        self.tone_mapper = ToneMapper()
        self.denoiser = Denoiser(self.backend)
        self.highlight_compensator = HighlightCompensator(self.backend)
        self.deconvolver = Deconvolver(self.backend)
        self.wavelet_sharpener = WaveletSharpener(self.backend)
        self.micro_contrast = MicroContrast(self.backend)
        self.halo_guard = HaloGuard()
        self.parallel_processor = ParallelProcessor(self.config.get('max_workers'))

        logger.info(f"Enhancement pipeline initialized with {self.backend.name} backend")

    def detect(self, image: np.ndarray, fast: Optional[bool] = None) -> DetectionOutcome:
        return self.detector.detect(image, fast=fast)

    def run(self, image: np.ndarray, detection: MoonDetectionResult,
            preset: EnhancementPreset = EnhancementPreset.NATURAL, strength: float = 50.0,
            is_video: bool = False, progress: Optional[ProgressCallback] = None) -> EnhancementOutput:
        """Enhance the moon in ``image`` (the full frame the detection was made on).

        Raises InvalidCropError / ConversionFailure when the crop cannot be
        processed; no partial output is returned in that case.
        """
        parameters = ProcessingParameters(preset=preset, strength=float(strength), is_video=is_video)
        warnings = []

        # Crop
        self._report(progress, PipelineStage.CROP)
        if detection.crop_rect.is_empty:
            raise InvalidCropError(detection.crop_rect, image.shape)
        rect = self.cropper.clamped_rect(detection.crop_rect, image.shape)
        if rect is None:
            raise InvalidCropError(detection.crop_rect, image.shape)
        original_crop = self.cropper.crop(image, rect)

        # Color conversion
        self._report(progress, PipelineStage.COLOR_CONVERT)
        luma, cb, cr = self.color_converter.rgb_to_ycbcr(original_crop)
        height, width = luma.shape
        moon_mask = detection.moon_mask.resized(width, height).data
        limb_ring = detection.limb_ring_mask.resized(width, height).data

        # Confidence map
        self._report(progress, PipelineStage.CONFIDENCE_MAP)
        confidence = self.confidence_builder.build(luma, moon_mask, limb_ring)
        sharpness = self.sharpness_scorer.score(luma, moon_mask)

        # Perceptual analysis and parameter shaping
        self._report(progress, PipelineStage.PERCEPTUAL)
        perceptual = self.perceptual_evaluator.evaluate(luma, moon_mask, limb_ring)

        clipped = detection.clipped_highlight_fraction
        config = preset_for(preset, is_video).with_strength(strength)
        if clipped > config.deconvolution.max_clipped_fraction:
            logger.warning(f"Clipped highlights ({clipped:.4f}): reducing gains and disabling deconvolution")
            config = clipped_highlight_guardrail(config)
            warnings.append(HIGHLIGHTS_CLIPPED_WARNING)

        tuning = self.perceptual_tuner.tune(config, perceptual, sharpness)
        config = tuning.apply_to(config)
        warnings.extend(tuning.warnings)

        # Tone mapping
        self._report(progress, PipelineStage.TONE_MAP)
        white_point = max(0.001, histogram_percentile(luma, 0.99, mask=moon_mask))
        luma = self.tone_mapper.apply(luma, config.tone, white_point, moon_mask)

        # Denoise
        self._report(progress, PipelineStage.DENOISE)
        luma, cb, cr = self.denoiser.apply(luma, cb, cr, config.denoise, confidence.map)

        if clipped > HIGHLIGHT_TRIGGER_FRACTION:
            self._report(progress, PipelineStage.HIGHLIGHT_COMPENSATE)
            luma = self.highlight_compensator.apply(luma, moon_mask, HIGHLIGHT_CLIP_START, HIGHLIGHT_STRENGTH)
            warnings.append(HIGHLIGHTS_SOFTENED_WARNING)

        # Restoration: deconvolution, sharpening, micro-contrast
        base_luma = luma
        apply_micro_contrast = (config.micro_contrast.strength > MICRO_CONTRAST_MIN_STRENGTH
                                and confidence.median_c >= config.micro_contrast.min_c * 0.8
                                and perceptual.edge_density > MICRO_CONTRAST_MIN_EDGE_DENSITY)
        luma, deconvolved = self._restore(base_luma, config, detection, confidence, moon_mask, limb_ring,
                                          apply_micro_contrast, progress)

        # Halo check, with at most one mitigation replay
        self._report(progress, PipelineStage.HALO_CHECK)
        local_circle = detection.circle.translated(-rect.x, -rect.y)
        halo = self.halo_guard.evaluate(luma, local_circle, config.halo_guard)
        mitigation_runs = 0

        if not halo.passed:
            logger.warning(f"Halo overshoot {halo.overshoot_metric:.4f} exceeds "
                           f"{config.halo_guard.overshoot_threshold}; mitigating once")
            warnings.append(HALO_MITIGATION_WARNING)
            self._report(progress, PipelineStage.MITIGATE)

            mitigated = halo_mitigation(config)
            expanded_limb = dilate(limb_ring, int(math.ceil(config.halo_guard.limb_ring_expansion)))
            luma, deconvolved = self._restore(base_luma, mitigated, detection, confidence, moon_mask,
                                              expanded_limb, apply_micro_contrast, None)
            halo = self.halo_guard.evaluate(luma, local_circle, config.halo_guard)
            mitigation_runs = 1

        # Finalize
        self._report(progress, PipelineStage.FINALIZE)
        enhanced = self.color_converter.ycbcr_to_rgb(luma, cb, cr)

        metrics = EnhancementMetrics(
            circle_confidence=detection.circle_confidence,
            clipped_fraction=clipped,
            median_c=confidence.median_c,
            sharpness_score=sharpness,
            overshoot_metric=halo.overshoot_metric,
            blur_probability=perceptual.blur_probability,
            ringing_score=perceptual.ringing_score,
            noise_visibility=perceptual.noise_visibility,
            local_contrast=perceptual.local_contrast,
            phase_contrast=perceptual.phase_contrast,
            edge_density=perceptual.edge_density,
            capture_quality=CaptureQuality.from_scores(confidence.median_c, clipped, sharpness),
            deconvolution_applied=deconvolved,
            micro_contrast_applied=apply_micro_contrast,
            halo_passed=halo.passed,
            halo_mitigation_runs=mitigation_runs,
        )
        self._report(progress, PipelineStage.DONE)

        logger.info(f"Enhancement complete: {preset.display_name} @ {strength:g}, "
                    f"overshoot {halo.overshoot_metric:.4f}, {len(warnings)} warnings")

        return EnhancementOutput(
            enhanced=enhanced,
            original_crop=original_crop,
            warnings=warnings,
            metrics=metrics,
            parameters=parameters,
        )

    def _restore(self, base_luma: np.ndarray, config: PresetConfiguration, detection: MoonDetectionResult,
                 confidence: ConfidenceMap, moon_mask: np.ndarray, limb_ring: np.ndarray,
                 apply_micro_contrast: bool, progress: Optional[ProgressCallback]) -> Tuple[np.ndarray, bool]:
        """Deconvolve (if allowed), sharpen and micro-contrast from base_luma, blended by the moon mask"""
        luma = base_luma
        params = config.deconvolution
        deconvolve = (params.enabled
                      and detection.circle_confidence >= params.min_circle_confidence
                      and confidence.median_c >= params.min_median_c
                      and detection.clipped_highlight_fraction <= params.max_clipped_fraction)

        if deconvolve:
            self._report(progress, PipelineStage.DECONVOLVE)
            luma = self.deconvolver.apply(luma, params, confidence.map, limb_ring)

        self._report(progress, PipelineStage.SHARPEN)
        luma = self.wavelet_sharpener.apply(luma, config.wavelet, confidence.map, limb_ring, confidence.snr_map)

        if apply_micro_contrast:
            self._report(progress, PipelineStage.MICRO_CONTRAST)
            luma = self.micro_contrast.apply(luma, config.micro_contrast, confidence.map, limb_ring)

        return np.clip(blend(base_luma, luma, moon_mask), 0.0, 1.0), deconvolve

    @staticmethod
    def _report(progress: Optional[ProgressCallback], stage: PipelineStage):
        if progress is None:
            return
        try:
            progress(stage.value, STAGE_PROGRESS[stage])
        except Exception as e:
            logger.warning(f"Progress callback failed at '{stage.value}': {e}")

    # ------------------------------------------------------------------
    # Dataset mode
    # ------------------------------------------------------------------

    def load_image(self, file_path: str) -> Tuple[Optional[np.ndarray], Optional[ImageMetadata]]:
        """Load an image as RGB (or grayscale) with its metadata"""
        logger.info(f"Loading image: {file_path}")

        image = cv2.imread(str(file_path), cv2.IMREAD_UNCHANGED)
        if image is not None:
            if image.ndim == 3 and image.shape[2] == 4:
                image = cv2.cvtColor(image, cv2.COLOR_BGRA2RGB)
            elif image.ndim == 3 and image.shape[2] == 3:
                image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
        else:
            # Try PIL as fallback
            try:
                with Image.open(file_path) as pil_image:
                    if pil_image.mode not in ('L', 'RGB', 'I;16'):
                        pil_image = pil_image.convert('RGB')
                    image = np.array(pil_image)
            except OSError as e:
                logger.error(f"Could not load image {file_path}: {e}")
                return None, None

        if image.ndim == 3 and image.shape[2] == 1:
            image = image.squeeze(axis=2)
        if image.ndim not in (2, 3):
            logger.error(f"Unsupported image shape: {image.shape}")
            return None, None

        metadata = ImageMetadata(
            image_id=Path(file_path).stem,
            file_path=str(file_path),
            resolution=(image.shape[1], image.shape[0]),
            is_video=bool(self.config.get('is_video', False)),
        )
        logger.info(f"Loaded image shape: {image.shape}, dtype: {image.dtype}")
        return image, metadata

    def enhance_image(self, image: np.ndarray, metadata: ImageMetadata) -> Tuple[Optional[EnhancementOutput], str]:
        """Detect and enhance one image; returns (output, status)"""
        outcome = self.detect(image)

        if outcome.result is None:
            logger.warning(f"Moon not detected in {metadata.image_id}: {outcome.failure.value}")
            return None, 'not_detected'

        if outcome.failure is DetectionFailureReason.LOW_CONFIDENCE:
            output = self.run(image, outcome.result, EnhancementPreset.NATURAL,
                              self.config.get('fallback_strength', 25), metadata.is_video)
            return replace(output, warnings=[FALLBACK_WARNING] + output.warnings), 'low_confidence'

        preset = EnhancementPreset(self.config.get('preset', 'natural'))
        output = self.run(image, outcome.result, preset, self.config.get('strength', 50), metadata.is_video)
        return output, 'processed'

    def save_output(self, output: EnhancementOutput, metadata: ImageMetadata, output_path: str) -> Path:
        """Write the enhanced crop and, when configured, its JSON sidecar"""
        output_dir = Path(output_path)
        extension = self.config.get('output_format', 'png')
        image_file = output_dir / f"enhanced_{metadata.image_id}.{extension}"
        if not cv2.imwrite(str(image_file), cv2.cvtColor(output.enhanced, cv2.COLOR_RGB2BGR)):
            raise OSError(f"Could not write {image_file}")

        if self.config.get('save_metrics', True):
            sidecar = {
                'image_id': metadata.image_id,
                'source': metadata.file_path,
                'parameters': output.parameters.to_dict(),
                'warnings': output.warnings,
                'metrics': output.metrics.to_dict(),
            }
            with open(output_dir / f"enhanced_{metadata.image_id}.json", 'w') as f:
                json.dump(sidecar, f, indent=2)

        return image_file

    def process_dataset(self, dataset_path: str, output_path: str) -> Dict:
        """Process a directory (or single file) of moon photos with parallel batches"""
        logger.info(f"Starting dataset processing: {dataset_path}")
        Path(output_path).mkdir(parents=True, exist_ok=True)

        dataset_path = Path(dataset_path)
        if dataset_path.is_file():
            image_files = [str(dataset_path)]
        else:
            image_files = sorted(str(f) for pattern in IMAGE_PATTERNS for f in dataset_path.glob(pattern))

        if not image_files:
            logger.warning(f"No image files found in {dataset_path}")
            return {"status": "no_files", "processed": 0}

        processing_stats = {
            "total_files": len(image_files),
            "processed": 0,
            "failed": 0,
            "not_detected": 0,
            "low_confidence": 0,
            "processing_time": 0,
            "presets": {},
        }

        start_time = time.time()
        batch_size = self.config.get('batch_size', 8)

        for i in range(0, len(image_files), batch_size):
            batch_data = []
            for file_path in image_files[i:i + batch_size]:
                image, metadata = self.load_image(file_path)
                if image is None:
                    processing_stats["failed"] += 1
                else:
                    batch_data.append((image, metadata))

            results = self.parallel_processor.process_batch_parallel(batch_data, self._process_wrapper)

            for (_, metadata), (output, status) in zip(batch_data, results):
                if output is None:
                    processing_stats["not_detected" if status == 'not_detected' else "failed"] += 1
                    continue

                try:
                    self.save_output(output, metadata, output_path)
                except Exception:
                    logger.exception(f"Failed to save output for {metadata.image_id}")
                    processing_stats["failed"] += 1
                    continue

                processing_stats["processed"] += 1
                if status == 'low_confidence':
                    processing_stats["low_confidence"] += 1

                preset_name = output.parameters.preset.value
                processing_stats["presets"][preset_name] = processing_stats["presets"].get(preset_name, 0) + 1

        processing_stats["processing_time"] = time.time() - start_time

        logger.info(f"Processing complete. Processed: {processing_stats['processed']}, "
                    f"Failed: {processing_stats['failed']}, Not detected: {processing_stats['not_detected']}")
        logger.info(f"Total processing time: {processing_stats['processing_time']:.2f} seconds")

        return processing_stats

    def _process_wrapper(self, image: np.ndarray, metadata: ImageMetadata):
        """Per-image job for the thread pool; failures are logged and reported as status"""
        try:
            return self.enhance_image(image, metadata)
        except Exception:
            logger.exception(f"Failed to process {metadata.image_id}")
            return None, 'failed'
