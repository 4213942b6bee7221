"""Calibration service: tune the similarity threshold for this camera.

The enrolled person stands in front of the camera while a few frames are
embedded; the Calibrator compares them with the gallery and the matcher's
threshold is updated with the recommendation.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

import numpy as np

from faceid.calibration import CalibrationReport, Calibrator
from faceid.errors import LowQuality, NoFaceDetected
from faceid.inference import QueuePolicy
from faceid.interfaces import GalleryStore
from faceid.logging_config import get_logger
from faceid.matcher_faiss import EmbeddingMatcher
from faceid.services.pipeline import FacePipeline

logger = get_logger(__name__)


class CalibrationService:
    """Samples frames of an enrolled person and recalibrates the matcher.

    Attributes:
        pipeline: Capture pipeline
        store: Gallery store
        calibrator: Threshold rule
        num_samples: Frames sampled per calibration

    Example:
        >>> service = CalibrationService(pipeline, store)
        >>> report = service.calibrate("alice", camera_frames, matcher=matcher)
        >>> print(f"New threshold: {report.threshold:.3f}")
    """

    def __init__(
        self,
        pipeline: FacePipeline,
        store: GalleryStore,
        calibrator: Optional[Calibrator] = None,
        num_samples: int = 5,
    ):
        self.pipeline = pipeline
        self.store = store
        self.calibrator = calibrator or Calibrator()
        self.num_samples = num_samples

    def sample(self, frames: Iterable[np.ndarray]) -> List[Optional[np.ndarray]]:
        """Embed up to num_samples frames.

        Frames without a usable face yield None (a neutral non-sample).
        """
        samples: List[Optional[np.ndarray]] = []

        for i, frame in enumerate(frames):
            if len(samples) >= self.num_samples:
                break

            logger.info(f"Calibration sample {i + 1}/{self.num_samples}")
            try:
                capture = self.pipeline.capture(frame, policy=QueuePolicy.QUEUE)
            except (NoFaceDetected, LowQuality) as e:
                logger.debug(f"Calibration frame {i}: {e}")
                samples.append(None)
                continue

            samples.append(capture.embedding if capture is not None else None)

        return samples

    def calibrate(
        self,
        identity: str,
        frames: Iterable[np.ndarray],
        matcher: Optional[EmbeddingMatcher] = None,
    ) -> CalibrationReport:
        """Calibrate the threshold against an enrolled identity.

        Args:
            identity: Person currently in front of the camera
            frames: BGR frames to sample
            matcher: If given, its threshold is set to the recommendation

        Returns:
            CalibrationReport

        Raises:
            KeyError: If identity is not enrolled.
            InsufficientSamples: If too few frames produced an embedding.
        """
        gallery = self.store.list()
        self_entry = next((e for e in gallery if e.identity == identity), None)
        if self_entry is None:
            raise KeyError(f"Identity '{identity}' is not enrolled")

        others = [e for e in gallery if e.identity != identity]
        samples = self.sample(frames)

        report = self.calibrator.analyze(samples, self_entry, others)

        if matcher is not None:
            logger.info(
                f"Threshold updated: {matcher.threshold:.3f} -> {report.threshold:.3f}"
            )
            matcher.threshold = report.threshold

        return report

    def __repr__(self) -> str:
        """String representation of service."""
        return f"CalibrationService(num_samples={self.num_samples}, {self.calibrator!r})"
