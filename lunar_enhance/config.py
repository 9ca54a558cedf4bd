"""
Configuration for the Lunar Enhancement Pipeline

Configuration lives in a JSON file. Files may be partial: whatever they set is
deep-merged over DEFAULT_CONFIG. Enhancement presets are code constants (see
``presets``) and are not configurable here.
"""

import copy
import json
import logging
import os
from typing import Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config.json'

DEFAULT_CONFIG = {
    "batch_size": 8,
    "max_workers": None,
    "backend": "cpu",
    "device": None,
    "preset": "natural",
    "strength": 50,
    "is_video": False,
    "output_format": "png",
    "save_metrics": True,
    "log_level": "INFO",
    "fallback_strength": 25,
    "detection": {
        "min_blob_area_fraction": 0.001,
        "max_blob_area_fraction": 0.8,
        "min_circularity": 0.6,
        "mask_feather_width": 3.0,
        "limb_ring_width": 9.0,
        "crop_padding_factor": 1.3,
        "min_confidence": 0.5,
        "fast": False,
        "fast_target_width": 512,
        "use_ransac": False,
        "ransac_iterations": 100,
        "ransac_inlier_threshold": 2.0,
        "ransac_seed": 0
    }
}


def merge_config(base: Dict, overrides: Dict) -> Dict:
    """Recursively merge overrides into a copy of base"""
    merged = copy.deepcopy(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict:
    """Load a JSON config over the defaults; defaults alone when no path is given"""
    if config_path is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(config_path, 'r') as f:
        overrides = json.load(f)

    logger.info(f"Loaded configuration from {config_path}")
    return merge_config(DEFAULT_CONFIG, overrides)


def create_default_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict:
    """Write the default configuration file and return it"""
    config = copy.deepcopy(DEFAULT_CONFIG)

    directory = os.path.dirname(config_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config, f, indent=2)

    return config
