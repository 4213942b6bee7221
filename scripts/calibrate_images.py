#!/usr/bin/env python3
"""Recommend a similarity threshold from fresh photos of an enrolled person.

The photos are embedded and compared with the person's own gallery entry and
with everyone else's; the recommended THRESH value is printed and can be
copied into .env.

Usage:
    python scripts/calibrate_images.py --name ALICE --images data/alice_today/*.jpg
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterator, List

import cv2
import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from faceid.backends.factory import create_backend
from faceid.calibration import Calibrator
from faceid.config import Config
from faceid.errors import InsufficientSamples
from faceid.gallery_store import FaissGalleryStore
from faceid.logging_config import setup_logging
from faceid.services.calibration import CalibrationService
from faceid.services.pipeline import FacePipeline

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Calibrate the similarity threshold from image files",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--name", type=str, required=True, help="Enrolled identity")

    parser.add_argument(
        "--images", type=str, nargs="+", required=True, help="Photos of the person"
    )

    parser.add_argument(
        "--gallery-dir",
        type=str,
        default=None,
        help="Gallery directory (overrides .env GALLERY_DIR)",
    )

    parser.add_argument(
        "--detector",
        choices=["retinaface", "scrfd"],
        default=None,
        help="Detector backend (overrides .env DETECTOR_BACKEND)",
    )

    return parser.parse_args()


def read_images(paths: List[str]) -> Iterator[np.ndarray]:
    """Yield readable images, logging the ones that fail to load."""
    for path in paths:
        image = cv2.imread(path)
        if image is None:
            logger.warning(f"Could not read image: {path}")
            continue
        yield image


def main() -> int:
    """Main function."""
    args = parse_args()

    config = Config.from_env()
    gallery_dir = Path(args.gallery_dir) if args.gallery_dir else config.gallery_dir

    components = create_backend(config, detector_backend=args.detector)
    store = FaissGalleryStore(gallery_dir, dimension=components.embedding_dim)

    with FacePipeline(components.detector, components.aligner, components.embedder) as pipeline:
        service = CalibrationService(
            pipeline,
            store,
            calibrator=Calibrator(matcher=components.matcher),
            num_samples=config.calibration_samples,
        )

        try:
            report = service.calibrate(args.name, read_images(args.images))
        except KeyError:
            print(f"Error: '{args.name}' is not enrolled")
            return 1
        except InsufficientSamples as e:
            logger.error(str(e))
            print(f"Error: {e}")
            return 1

    print(f"Samples used:      {report.num_samples}")
    print(f"Min self score:    {report.min_self_score:.3f}")
    print(f"Max other score:   {report.max_other_score:.3f}")
    print(f"Gap:               {report.gap:.3f}")
    print(f"Current THRESH:    {config.thresh:.3f}")
    print(f"Recommended:       THRESH={report.threshold:.3f}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
