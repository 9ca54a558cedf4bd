"""
Data models for the Lunar Enhancement Pipeline

This module contains the value objects passed between detection and
enhancement: fitted circles, masks, detection results, confidence maps,
diagnostic metrics and the reproducibility record.
"""

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import numpy as np

from .enums import CaptureQuality, DetectionFailureReason, EnhancementPreset


def _frozen_plane(data: np.ndarray) -> np.ndarray:
    plane = np.array(data, dtype=np.float32, copy=True)
    plane.setflags(write=False)
    return plane


@dataclass(frozen=True)
class FittedCircle:
    """A fitted circle with center, radius and RMS residual"""
    center_x: float
    center_y: float
    radius: float
    residual_error: float = 0.0

    def __post_init__(self):
        values = (self.center_x, self.center_y, self.radius, self.residual_error)
        if not all(math.isfinite(v) for v in values):
            raise ValueError(f"Circle parameters must be finite: {values}")
        if self.radius <= 0:
            raise ValueError(f"Circle radius must be positive, got {self.radius}")

    @property
    def center(self) -> Tuple[float, float]:
        return self.center_x, self.center_y

    def contains(self, x: float, y: float) -> bool:
        return self.distance_to_edge(x, y) <= 0

    def distance_to_edge(self, x: float, y: float) -> float:
        """Distance from point to the circle edge (negative if inside)"""
        return math.hypot(x - self.center_x, y - self.center_y) - self.radius

    def scaled(self, factor: float) -> "FittedCircle":
        return FittedCircle(
            center_x=self.center_x * factor,
            center_y=self.center_y * factor,
            radius=self.radius * factor,
            residual_error=self.residual_error * factor,
        )

    def translated(self, dx: float, dy: float) -> "FittedCircle":
        return FittedCircle(self.center_x + dx, self.center_y + dy, self.radius, self.residual_error)


@dataclass(frozen=True)
class CropRect:
    """Integer pixel rectangle inside an image"""
    x: int
    y: int
    width: int
    height: int

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def slices(self) -> Tuple[slice, slice]:
        """Row and column slices for numpy indexing"""
        return slice(self.y, self.y + self.height), slice(self.x, self.x + self.width)


@dataclass(frozen=True, eq=False)
class MaskBuffer:
    """Read-only float mask with values in [0, 1]"""
    data: np.ndarray

    def __post_init__(self):
        if self.data.ndim != 2:
            raise ValueError(f"Mask must be 2-D, got shape {self.data.shape}")
        object.__setattr__(self, 'data', _frozen_plane(np.clip(self.data, 0.0, 1.0)))

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @classmethod
    def empty(cls, width: int, height: int) -> "MaskBuffer":
        return cls(np.zeros((height, width), dtype=np.float32))

    @classmethod
    def filled(cls, width: int, height: int, value: float = 1.0) -> "MaskBuffer":
        return cls(np.full((height, width), value, dtype=np.float32))

    def value(self, x: int, y: int) -> float:
        if 0 <= x < self.width and 0 <= y < self.height:
            return float(self.data[y, x])
        return 0.0

    def resized(self, width: int, height: int) -> "MaskBuffer":
        """Nearest-neighbour resize; returns a new buffer"""
        if self.width == 0 or self.height == 0 or width <= 0 or height <= 0:
            return MaskBuffer.empty(max(width, 0), max(height, 0))
        if width == self.width and height == self.height:
            return self

        src_y = (np.arange(height) / height * (self.height - 1)).astype(np.int64)
        src_x = (np.arange(width) / width * (self.width - 1)).astype(np.int64)
        return MaskBuffer(self.data[np.ix_(src_y, src_x)])


@dataclass(frozen=True)
class DetectionConfidence:
    """Composite detection confidence and its four sub-scores"""
    circle_confidence: float
    fit_quality: float
    size_score: float
    brightness_consistency: float
    circularity: float


@dataclass(frozen=True, eq=False)
class BlobInfo:
    """Connected component statistics"""
    label: int
    area: int
    bounding_box: CropRect
    centroid: Tuple[float, float]
    circularity: float
    edge_points: np.ndarray  # (N, 2) array of (x, y)

    @property
    def perimeter(self) -> int:
        return len(self.edge_points)


@dataclass(frozen=True, eq=False)
class MoonDetectionResult:
    """Immutable snapshot of a detected moon, consumed by enhancement"""
    circle: FittedCircle
    crop_rect: CropRect
    moon_mask: MaskBuffer
    limb_ring_mask: MaskBuffer
    confidence: DetectionConfidence
    clipped_highlight_fraction: float

    @property
    def circle_confidence(self) -> float:
        return self.confidence.circle_confidence


@dataclass(frozen=True, eq=False)
class DetectionOutcome:
    """Tagged detection result: a moon, a failure reason, or both for low confidence"""
    result: Optional[MoonDetectionResult] = None
    failure: Optional[DetectionFailureReason] = None

    @property
    def detected(self) -> bool:
        return self.result is not None and self.failure is None

    @classmethod
    def success(cls, result: MoonDetectionResult) -> "DetectionOutcome":
        return cls(result=result)

    @classmethod
    def failed(cls, reason: DetectionFailureReason,
               result: Optional[MoonDetectionResult] = None) -> "DetectionOutcome":
        return cls(result=result, failure=reason)


@dataclass(frozen=True, eq=False)
class ConfidenceMap:
    """Per-pixel detail confidence with its median over the moon"""
    map: np.ndarray
    median_c: float
    snr_map: Optional[np.ndarray] = None


@dataclass(frozen=True)
class PerceptualMetrics:
    """Perceptual quality measurements, each in [0, 1]"""
    blur_probability: float   # higher = blurrier
    ringing_score: float      # higher = more visible ringing
    noise_visibility: float   # higher = more visible noise
    local_contrast: float     # higher = more contrast already present
    edge_density: float       # fraction of strong edges
    phase_contrast: float     # low = full moon, high = terminator present


@dataclass(frozen=True)
class EnhancementMetrics:
    """Diagnostics attached to an enhancement output for QA and logging"""
    circle_confidence: float
    clipped_fraction: float
    median_c: float
    sharpness_score: float
    overshoot_metric: float
    blur_probability: float
    ringing_score: float
    noise_visibility: float
    local_contrast: float
    phase_contrast: float
    edge_density: float
    capture_quality: CaptureQuality
    deconvolution_applied: bool
    micro_contrast_applied: bool
    halo_passed: bool
    halo_mitigation_runs: int

    def to_dict(self) -> Dict:
        values = asdict(self)
        values['capture_quality'] = self.capture_quality.value
        return values


@dataclass(frozen=True)
class ProcessingParameters:
    """Reproducibility record: enough to regenerate a result from the same input"""
    preset: EnhancementPreset
    strength: float
    is_video: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict:
        return {
            'preset': self.preset.value,
            'strength': self.strength,
            'is_video': self.is_video,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ProcessingParameters":
        return cls(
            preset=EnhancementPreset(data['preset']),
            strength=float(data['strength']),
            is_video=bool(data.get('is_video', False)),
            timestamp=data['timestamp'],
        )


@dataclass(frozen=True, eq=False)
class EnhancementOutput:
    """Result of one enhancement run"""
    enhanced: np.ndarray
    original_crop: np.ndarray
    warnings: List[str]
    metrics: EnhancementMetrics
    parameters: ProcessingParameters


@dataclass
class ImageMetadata:
    """Metadata for an image processed in dataset mode"""
    image_id: str
    file_path: str
    resolution: Tuple[int, int]
    is_video: bool = False
