"""
Shared fixtures: synthetic night-sky frames with a textured moon disk.
"""

import numpy as np
import pytest

from lunar_enhance.config import DEFAULT_CONFIG, merge_config
from lunar_enhance.detector import MoonDetector
from lunar_enhance.pipeline import MoonEnhancementPipeline

MOON_CENTER = (120.0, 116.0)
MOON_RADIUS = 40.0


def make_moon_luma(size=240, center=MOON_CENTER, radius=MOON_RADIUS, level=0.55, amplitude=0.15,
                   background=0.05, noise=0.01, seed=42):
    """Float luma plane: noisy dark sky with a sinusoidally textured disk"""
    rng = np.random.default_rng(seed)
    ys, xs = np.mgrid[0:size, 0:size].astype(np.float64)
    luma = background + rng.normal(0.0, noise, (size, size))

    disk = (xs - center[0]) ** 2 + (ys - center[1]) ** 2 <= radius ** 2
    texture = level + amplitude * np.sin(xs / 3.0) * np.cos(ys / 4.0)
    luma[disk] = texture[disk]
    return np.clip(luma, 0.0, 1.0)


def to_rgb8(luma):
    gray = (np.clip(luma, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
    return np.stack([gray, gray, gray], axis=-1)


@pytest.fixture
def moon_luma():
    return make_moon_luma().astype(np.float32)


@pytest.fixture
def moon_image():
    return to_rgb8(make_moon_luma())


@pytest.fixture
def clipped_moon_image():
    # Bright exposure: a sizeable share of the disk saturates
    return to_rgb8(make_moon_luma(level=0.9, amplitude=0.15))


@pytest.fixture
def detection(moon_image):
    outcome = MoonDetector().detect(moon_image)
    assert outcome.detected
    return outcome.result


@pytest.fixture
def pipeline():
    config = merge_config(DEFAULT_CONFIG, {"max_workers": 2, "backend": "cpu"})
    return MoonEnhancementPipeline(config=config)
