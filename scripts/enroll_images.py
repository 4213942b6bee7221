#!/usr/bin/env python3
"""Enroll a person into the gallery from image files.

Every image is run through detection, alignment and embedding; the
embeddings are averaged into one template stored under the given name.

Usage:
    python scripts/enroll_images.py --name ALICE --images data/alice/*.jpg
    python scripts/enroll_images.py --name ALICE --images data/alice --quality-check
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
from faceid.config import Config
from faceid.errors import InsufficientSamples
from faceid.gallery_store import FaissGalleryStore
from faceid.logging_config import setup_logging
from faceid.services.enrollment import EnrollmentService
from faceid.services.pipeline import FacePipeline

logger = setup_logging(__name__)

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".bmp"}


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Enroll a person from image files",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--name", type=str, required=True, help="Identity to enroll")

    parser.add_argument(
        "--images",
        type=str,
        nargs="+",
        required=True,
        help="Image files or directories containing images",
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

    parser.add_argument(
        "--quality-check",
        action="store_true",
        help="Reject badly framed faces like live enrollment does",
    )

    return parser.parse_args()


def expand_images(inputs: List[str]) -> List[Path]:
    """Expand directories into the image files they contain."""
    paths: List[Path] = []
    for item in inputs:
        path = Path(item)
        if path.is_dir():
            paths.extend(
                sorted(p for p in path.iterdir() if p.suffix.lower() in IMAGE_SUFFIXES)
            )
        elif path.exists():
            paths.append(path)
        else:
            logger.warning(f"Skipping missing path: {path}")
    return paths


def read_images(paths: List[Path]) -> Iterator[np.ndarray]:
    """Yield readable images, logging the ones that fail to load."""
    for path in paths:
        image = cv2.imread(str(path))
        if image is None:
            logger.warning(f"Could not read image: {path}")
            continue
        logger.debug(f"Read {path} ({image.shape[1]}x{image.shape[0]})")
        yield image


def main() -> int:
    """Main function."""
    args = parse_args()

    config = Config.from_env()
    gallery_dir = Path(args.gallery_dir) if args.gallery_dir else config.gallery_dir

    paths = expand_images(args.images)
    if not paths:
        print("Error: no images found")
        return 1

    print(f"Identity:      {args.name}")
    print(f"Images:        {len(paths)}")
    print(f"Gallery:       {gallery_dir}")
    print()

    components = create_backend(config, detector_backend=args.detector)
    store = FaissGalleryStore(gallery_dir, dimension=components.embedding_dim)

    with FacePipeline(components.detector, components.aligner, components.embedder) as pipeline:
        service = EnrollmentService(
            pipeline,
            store,
            min_samples=config.min_enroll_samples,
            max_samples=config.max_enroll_samples,
        )

        try:
            captures = service.collect(read_images(paths), check_quality=args.quality_check)
            entry = service.enroll_captures(args.name, captures)
        except InsufficientSamples as e:
            logger.error(str(e))
            print(f"Error: {e}")
            print("Tip: use clear, frontal photos with one face each")
            return 1

    print(f"Enrolled '{entry.identity}' from {len(captures)} image(s)")
    print(f"Gallery now holds {len(store.list())} identities")
    return 0


if __name__ == "__main__":
    sys.exit(main())
