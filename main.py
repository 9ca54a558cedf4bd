#!/usr/bin/env python3
"""
Main entry point for the Lunar Enhancement Pipeline

This script runs moon detection and enhancement over a directory of photos
using the settings in config.json.
"""

import json
import logging
import os
import sys
from pathlib import Path

from lunar_enhance.config import load_config
from lunar_enhance.pipeline import MoonEnhancementPipeline, create_default_config

logger = logging.getLogger(__name__)


def setup_logging(level: str):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO),
                        format='%(asctime)s - %(levelname)s - %(message)s')


def main():
    """Main function to run the Lunar Enhancement Pipeline"""
    config_path = 'config.json'

    # Create default configuration if it doesn't exist
    if not os.path.exists(config_path):
        config = create_default_config(config_path)
        setup_logging(config['log_level'])
        logger.info(f"Default configuration created: {config_path}")
    else:
        config = load_config(config_path)
        setup_logging(config['log_level'])
        logger.info(f"Using existing configuration file: {config_path}")

    dataset_path = sys.argv[1] if len(sys.argv) > 1 else "./data/input"
    output_path = sys.argv[2] if len(sys.argv) > 2 else "./data/output"

    if not os.path.exists(dataset_path):
        logger.warning(f"Input path does not exist: {dataset_path}")
        Path(dataset_path).mkdir(parents=True, exist_ok=True)
        logger.info(f"Please place your moon photos in: {dataset_path}")
        return 1

    try:
        pipeline = MoonEnhancementPipeline(config=config)
        results = pipeline.process_dataset(dataset_path, output_path)
    except Exception:
        logger.exception("Pipeline execution failed")
        return 1

    print("\n" + "=" * 50)
    print("PROCESSING RESULTS:")
    print("=" * 50)
    print(json.dumps(results, indent=2))

    if results.get("processed", 0) > 0:
        print(f"\nSuccessfully enhanced {results['processed']} image(s)")
        print(f"Output saved to: {output_path}")

        if results.get("presets"):
            print("\nPresets:")
            for preset, count in results["presets"].items():
                print(f"   - {preset}: {count}")

        if results.get("low_confidence"):
            print(f"\nConservative fallback used for {results['low_confidence']} image(s)")
        if results.get("not_detected"):
            print(f"No moon found in {results['not_detected']} image(s)")

        print(f"\nTotal processing time: {results['processing_time']:.2f} seconds")
        return 0

    print("\nNo images were successfully enhanced")
    print("Check the logs above for detailed error information")
    return 1


if __name__ == "__main__":
    sys.exit(main())
