#!/usr/bin/env python3
"""Identify the faces in static images against the gallery.

Liveness cannot be checked on still images, so the blink gate is not used
here. Images are processed in order; matched people are checked in, and a
person matched again within CHECKIN_COOLDOWN_MS is not checked in twice.

Usage:
    python scripts/identify_image.py --image photo.jpg
    python scripts/identify_image.py --image a.jpg b.jpg --threshold 0.6 --top 3
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import cv2

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from faceid.backends.factory import create_backend
from faceid.config import Config
from faceid.gallery_store import FaissGalleryStore
from faceid.inference import QueuePolicy
from faceid.logging_config import setup_logging
from faceid.services.attendance import AttendanceLog
from faceid.services.pipeline import FacePipeline
from faceid.services.recognition import (
    IdentificationResult,
    IdentificationService,
    IdentificationStatus,
)

logger = setup_logging(__name__)


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Identify faces in static images",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--image", type=str, nargs="+", required=True, help="Path(s) to input images"
    )

    parser.add_argument(
        "--threshold",
        type=float,
        default=None,
        help="Similarity threshold (overrides .env THRESH value)",
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

    parser.add_argument("--top", type=int, default=2, help="Number of best scores to show")

    return parser.parse_args()


def print_result(image_path: Path, result: IdentificationResult) -> None:
    """Print one identification result."""
    print(f"{image_path}")
    print(f"  Status:      {result.status.value}")
    if result.hint:
        print(f"  Hint:        {result.hint}")
    if result.detection is not None:
        box = result.detection.box
        print(
            f"  Face:        ({box.x_min:.0f}, {box.y_min:.0f}) {box.width:.0f}x{box.height:.0f}, "
            f"score {result.detection.score:.2f}"
        )
    for rank, (identity, score) in enumerate(result.top_matches or [], 1):
        print(f"    #{rank} {identity:<20} {score:.3f}")

    if result.status is IdentificationStatus.MATCHED:
        print(f"  Identified:  {result.identity} ({result.score:.2f})")
    else:
        print(f"  Unknown person (max similarity: {result.score:.2f})")


def main() -> int:
    """Main function."""
    args = parse_args()

    config = Config.from_env()
    gallery_dir = Path(args.gallery_dir) if args.gallery_dir else config.gallery_dir

    components = create_backend(config, detector_backend=args.detector)
    if args.threshold is not None:
        components.matcher.threshold = args.threshold

    store = FaissGalleryStore(gallery_dir, dimension=components.embedding_dim)
    attendance = AttendanceLog(cooldown=config.checkin_cooldown_ms / 1000.0)

    print(f"Gallery:       {gallery_dir} ({len(store)} identities)")
    print(f"Threshold:     {components.matcher.threshold:.2f}")
    print(f"Min margin:    {components.matcher.min_margin:.2f}")
    print()

    matched = 0
    with FacePipeline(components.detector, components.aligner, components.embedder) as pipeline:
        service = IdentificationService(pipeline, store, components.matcher, top_n=args.top)

        for image in args.image:
            image_path = Path(image)
            frame = cv2.imread(str(image_path))
            if frame is None:
                logger.error(f"Failed to read image: {image_path}")
                print(f"Error: could not read image file: {image_path}")
                continue

            result = service.identify(frame, policy=QueuePolicy.QUEUE)
            print_result(image_path, result)

            if result.status is IdentificationStatus.MATCHED:
                matched += 1
                attendance.record(
                    result.identity, result.score, photo=result.capture.thumbnail()
                )

    if len(attendance):
        print()
        print("Check-ins:")
        for record in attendance.records:
            print(f"  {record.identity:<20} {record.score:.2f}")

    return 0 if matched else 2


if __name__ == "__main__":
    sys.exit(main())
