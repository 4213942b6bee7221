"""Enrollment service for registering new persons.

Collects several embeddings of one person (live frames or uploaded images),
averages them into a single template and stores it in the gallery together
with a thumbnail.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import numpy as np

from faceid.errors import InsufficientSamples, LowQuality, NoFaceDetected
from faceid.inference import QueuePolicy
from faceid.interfaces import GalleryEntry, GalleryStore
from faceid.logging_config import get_logger
from faceid.matcher_faiss import average_embeddings
from faceid.services.pipeline import FaceCapture, FacePipeline

logger = get_logger(__name__)


class EnrollmentService:
    """Service for capturing and enrolling new persons.

    Workflow:
    1. Read frames (or images) one by one
    2. Detect, quality-check, align and embed the most confident face
    3. Skip frames with no face or a badly framed face
    4. Average the collected embeddings and upsert them into the gallery

    Attributes:
        pipeline: Capture pipeline
        store: Gallery store
        min_samples: Fewest valid captures accepted
        max_samples: Most captures averaged into one template

    Example:
        >>> service = EnrollmentService(pipeline, store)
        >>> entry = service.enroll_from_frames("alice", camera_frames)
        >>> print(entry)
    """

    def __init__(
        self,
        pipeline: FacePipeline,
        store: GalleryStore,
        min_samples: int = 3,
        max_samples: int = 10,
    ):
        """Initialize enrollment service.

        Raises:
            ValueError: If the sample bounds are inconsistent.
        """
        if min_samples < 1:
            raise ValueError(f"min_samples must be >= 1, got {min_samples}")
        if max_samples < min_samples:
            raise ValueError(
                f"max_samples must be >= min_samples, got {max_samples} < {min_samples}"
            )

        self.pipeline = pipeline
        self.store = store
        self.min_samples = min_samples
        self.max_samples = max_samples

        logger.info(
            f"Initialized EnrollmentService (samples {min_samples}..{max_samples})"
        )

    def collect(
        self,
        frames: Iterable[np.ndarray],
        check_quality: bool = True,
    ) -> List[FaceCapture]:
        """Capture faces from frames until max_samples are collected.

        Frames without a face, or failing the quality checks, are skipped.

        Args:
            frames: BGR frames
            check_quality: Apply the framing/size/centering checks

        Returns:
            Valid captures, at most max_samples.
        """
        captures: List[FaceCapture] = []
        skipped = 0

        for i, frame in enumerate(frames):
            try:
                capture = self.pipeline.capture(
                    frame, policy=QueuePolicy.QUEUE, check_quality=check_quality
                )
            except NoFaceDetected:
                logger.debug(f"Frame {i}: no face, skipped")
                skipped += 1
                continue
            except LowQuality as e:
                logger.debug(f"Frame {i}: {e.hint}, skipped")
                skipped += 1
                continue

            captures.append(capture)
            logger.debug(f"Frame {i}: captured ({len(captures)}/{self.max_samples})")

            if len(captures) >= self.max_samples:
                break

        logger.info(f"Collected {len(captures)} captures ({skipped} frames skipped)")
        return captures

    def enroll_captures(
        self,
        identity: str,
        captures: Sequence[FaceCapture],
    ) -> GalleryEntry:
        """Average captures and store them under identity.

        The thumbnail is taken from the most confident capture.

        Raises:
            InsufficientSamples: If fewer than min_samples captures are given.
        """
        if len(captures) < self.min_samples:
            raise InsufficientSamples(
                required=self.min_samples,
                received=len(captures),
                what="enrollment captures",
            )

        selected = list(captures)[: self.max_samples]
        template = average_embeddings([c.embedding for c in selected])
        best = max(selected, key=lambda c: c.detection.score)

        entry = self.store.upsert(identity, template, thumbnail=best.thumbnail())
        logger.info(f"Enrolled '{identity}' from {len(selected)} captures")
        return entry

    def enroll_from_frames(
        self,
        identity: str,
        frames: Iterable[np.ndarray],
        check_quality: bool = True,
    ) -> GalleryEntry:
        """Capture faces from live frames and enroll them.

        Args:
            identity: Person name
            frames: BGR frames; consumed until max_samples faces are captured
            check_quality: Apply the framing checks (False to force capture)

        Returns:
            The stored GalleryEntry.

        Raises:
            InsufficientSamples: If too few usable faces were found.
        """
        captures = self.collect(frames, check_quality=check_quality)
        return self.enroll_captures(identity, captures)

    def enroll_from_images(
        self,
        identity: str,
        images: Iterable[Optional[np.ndarray]],
    ) -> GalleryEntry:
        """Enroll from uploaded photos. No framing checks; unreadable images are skipped."""
        readable = (image for image in images if image is not None and image.size > 0)
        return self.enroll_from_frames(identity, readable, check_quality=False)

    def __repr__(self) -> str:
        """String representation of service."""
        return (
            f"EnrollmentService(min_samples={self.min_samples}, "
            f"max_samples={self.max_samples})"
        )
