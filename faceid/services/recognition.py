"""Identification service: who is in front of the camera?

Combines the capture pipeline, the gallery store and the matcher, gated by
blink liveness. Per-frame problems never raise; they are reported through
IdentificationStatus so a live loop can keep polling.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from faceid.errors import LowQuality, NoFaceDetected
from faceid.inference import QueuePolicy
from faceid.interfaces import Detection, GalleryStore, MatchResult
from faceid.liveness import LivenessTracker
from faceid.logging_config import get_logger
from faceid.matcher_faiss import EmbeddingMatcher
from faceid.services.pipeline import FaceCapture, FacePipeline

logger = get_logger(__name__)


class IdentificationStatus(str, Enum):
    """Outcome of one identification attempt."""

    MATCHED = "matched"
    NO_MATCH = "no_match"
    NOT_LIVE = "not_live"
    NO_FACE = "no_face"
    LOW_QUALITY = "low_quality"
    SKIPPED = "skipped"  # detector busy, frame dropped


@dataclass
class IdentificationResult:
    """Result of identifying one frame.

    Attributes:
        status: What happened
        match: Matcher output (None unless a face was embedded)
        capture: The embedded face (None unless a face was embedded)
        top_matches: Best (identity, score) pairs for display
        hint: Operator hint for LOW_QUALITY

    Example:
        >>> result = service.identify(frame)
        >>> if result.status is IdentificationStatus.MATCHED:
        ...     print(f"{result.identity}: {result.score:.2f}")
    """

    status: IdentificationStatus
    match: Optional[MatchResult] = None
    capture: Optional[FaceCapture] = None
    top_matches: Optional[List[Tuple[str, float]]] = None
    hint: Optional[str] = None

    @property
    def identity(self) -> Optional[str]:
        """Accepted identity, or None."""
        return self.match.identity if self.match is not None else None

    @property
    def score(self) -> float:
        """Best similarity score (0.0 when nothing was matched)."""
        return self.match.score if self.match is not None else 0.0

    @property
    def detection(self) -> Optional[Detection]:
        return self.capture.detection if self.capture is not None else None

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"IdentificationResult(status={self.status.value}, "
            f"identity={self.identity}, score={self.score:.3f})"
        )


class IdentificationService:
    """Liveness-gated face identification against the gallery.

    Workflow per identify() call:
    1. Require a recent blink (if liveness is enabled)
    2. Take a fresh gallery snapshot; empty gallery is a plain no-match
    3. Detect, align and embed the most confident face
    4. Match with threshold and runner-up margin
    5. On acceptance, reset liveness so the next person must blink again

    Attributes:
        pipeline: Capture pipeline
        store: Gallery store
        matcher: Embedding matcher
        liveness: Blink tracker, or None to disable the liveness gate
        top_n: Number of (identity, score) pairs reported for display

    Example:
        >>> service = IdentificationService(pipeline, store, matcher, LivenessTracker())
        >>> for frame, ear in camera:
        ...     service.observe(ear)
        ...     result = service.identify(frame)
    """

    def __init__(
        self,
        pipeline: FacePipeline,
        store: GalleryStore,
        matcher: EmbeddingMatcher,
        liveness: Optional[LivenessTracker] = None,
        top_n: int = 2,
    ):
        self.pipeline = pipeline
        self.store = store
        self.matcher = matcher
        self.liveness = liveness
        self.top_n = top_n

        logger.info(
            f"Initialized IdentificationService with {matcher!r}, "
            f"liveness={'on' if liveness is not None else 'off'}"
        )

    def observe(self, ear: Optional[float], now: Optional[float] = None) -> bool:
        """Feed one frame's eye aspect ratio to the liveness tracker.

        Returns:
            True if the frame completed a blink.
        """
        if self.liveness is None:
            return False
        return self.liveness.update(ear, now=now)

    def is_live(self, now: Optional[float] = None) -> bool:
        """True if liveness is disabled or a recent blink was seen."""
        return self.liveness is None or self.liveness.is_live(now=now)

    def identify(
        self,
        frame: np.ndarray,
        policy: QueuePolicy = QueuePolicy.DROP_IF_BUSY,
        now: Optional[float] = None,
    ) -> IdentificationResult:
        """Identify the most confident face in a frame.

        Args:
            frame: BGR frame, shape [H, W, 3]
            policy: Detection queue policy (live loops drop when busy)
            now: Time for the liveness check; defaults to the tracker clock

        Returns:
            IdentificationResult; never raises for per-frame conditions.
        """
        if not self.is_live(now=now):
            logger.debug("Identification blocked: no recent blink")
            return IdentificationResult(status=IdentificationStatus.NOT_LIVE)

        gallery = self.store.list()
        if not gallery:
            logger.debug("Identification skipped: gallery is empty")
            return IdentificationResult(
                status=IdentificationStatus.NO_MATCH,
                match=MatchResult(best=None, runner_up=None, accepted=False),
            )

        try:
            capture = self.pipeline.capture(frame, policy=policy)
        except NoFaceDetected:
            return IdentificationResult(status=IdentificationStatus.NO_FACE)
        except LowQuality as e:
            return IdentificationResult(status=IdentificationStatus.LOW_QUALITY, hint=e.hint)

        if capture is None:
            return IdentificationResult(status=IdentificationStatus.SKIPPED)

        match = self.matcher.match(capture.embedding, gallery)
        top_matches = self.matcher.score(capture.embedding, gallery, topk=self.top_n)

        if not match.accepted:
            logger.info(f"Identify failed: unknown (max: {match.score:.2f})")
            return IdentificationResult(
                status=IdentificationStatus.NO_MATCH,
                match=match,
                capture=capture,
                top_matches=top_matches,
            )

        logger.info(f"Identify success: {match.identity} ({match.score:.2f})")
        if self.liveness is not None:
            self.liveness.reset()

        return IdentificationResult(
            status=IdentificationStatus.MATCHED,
            match=match,
            capture=capture,
            top_matches=top_matches,
        )

    def __repr__(self) -> str:
        """String representation of service."""
        return f"IdentificationService(matcher={self.matcher!r}, liveness={self.liveness!r})"
