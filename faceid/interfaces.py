"""Core interfaces and data structures for the face identification pipeline.

This module defines the data classes passed between pipeline stages and the
Protocols for the external collaborators (detector and embedding models,
gallery store), so concrete backends can be swapped freely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Protocol, Tuple, runtime_checkable

import numpy as np

if TYPE_CHECKING:
    from faceid.aligner_fivept import InputFormat


@dataclass(frozen=True)
class FaceBox:
    """Axis-aligned face box in pixel units of one specific image.

    Attributes:
        x_min: Left edge x-coordinate
        y_min: Top edge y-coordinate
        width: Box width (> 0)
        height: Box height (> 0)
    """

    x_min: float
    y_min: float
    width: float
    height: float

    def __post_init__(self) -> None:
        """Validate box extents."""
        if not (self.width > 0 and self.height > 0):
            raise ValueError(
                f"FaceBox width and height must be > 0, got {self.width}x{self.height}"
            )

    @classmethod
    def from_xyxy(cls, x1: float, y1: float, x2: float, y2: float) -> FaceBox:
        """Build a box from corner coordinates."""
        return cls(x_min=x1, y_min=y1, width=x2 - x1, height=y2 - y1)

    @property
    def x_max(self) -> float:
        """Right edge x-coordinate."""
        return self.x_min + self.width

    @property
    def y_max(self) -> float:
        """Bottom edge y-coordinate."""
        return self.y_min + self.height

    @property
    def area(self) -> float:
        """Box area in square pixels."""
        return self.width * self.height

    @property
    def center(self) -> Tuple[float, float]:
        """Center point (x, y) of the box."""
        return (self.x_min + self.width / 2, self.y_min + self.height / 2)

    def to_xyxy(self) -> Tuple[float, float, float, float]:
        """Return (x_min, y_min, x_max, y_max)."""
        return (self.x_min, self.y_min, self.x_max, self.y_max)

    def clamp(self, img_width: int, img_height: int) -> FaceBox:
        """Clamp the box to image boundaries.

        The result always lies inside the image and is at least one pixel wide
        and tall, so it can be cropped directly.

        Args:
            img_width: Image width in pixels
            img_height: Image height in pixels

        Returns:
            New FaceBox inside [0, img_width] x [0, img_height].
        """
        x_min = max(0.0, min(img_width - 1.0, self.x_min))
        y_min = max(0.0, min(img_height - 1.0, self.y_min))
        x_max = max(x_min + 1.0, min(float(img_width), self.x_max))
        y_max = max(y_min + 1.0, min(float(img_height), self.y_max))
        return FaceBox(
            x_min=x_min,
            y_min=y_min,
            width=max(1.0, x_max - x_min),
            height=max(1.0, y_max - y_min),
        )

    def __repr__(self) -> str:
        """String representation of the box."""
        return (
            f"FaceBox(x_min={self.x_min:.1f}, y_min={self.y_min:.1f}, "
            f"width={self.width:.1f}, height={self.height:.1f})"
        )


@dataclass
class Detection:
    """Face detection result with box, landmarks, and confidence.

    Attributes:
        score: Detection confidence score (0.0 to 1.0)
        box: Face box
        landmarks: Optional 5-point landmarks (shape: [5, 2]) in the same
                   coordinate space as the box.
                   Order: left_eye, right_eye, nose, left_mouth, right_mouth
    """

    score: float
    box: FaceBox
    landmarks: Optional[np.ndarray] = None  # shape (5, 2)

    def __post_init__(self) -> None:
        """Validate detection data after initialization."""
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"Detection score must be in [0, 1], got {self.score}")

        if self.landmarks is not None:
            if not isinstance(self.landmarks, np.ndarray):
                raise TypeError(
                    f"landmarks must be numpy array, got {type(self.landmarks)}"
                )
            if self.landmarks.shape != (5, 2):
                raise ValueError(
                    f"landmarks must have shape (5, 2), got {self.landmarks.shape}"
                )

    def __repr__(self) -> str:
        """String representation of detection."""
        lm_str = "None" if self.landmarks is None else f"array{self.landmarks.shape}"
        return f"Detection(box={self.box}, score={self.score:.3f}, landmarks={lm_str})"


@dataclass(frozen=True)
class GalleryEntry:
    """One enrolled identity.

    Attributes:
        identity: Unique identity key (person name)
        embedding: L2-normalized embedding, shape [D]
        enrolled_at: Enrollment time (epoch seconds)
        thumbnail: Optional JPEG bytes shown to the operator
    """

    identity: str
    embedding: np.ndarray
    enrolled_at: float
    thumbnail: Optional[bytes] = None

    def __repr__(self) -> str:
        """String representation of the entry."""
        return (
            f"GalleryEntry(identity='{self.identity}', "
            f"dim={self.embedding.shape[-1]}, enrolled_at={self.enrolled_at:.0f})"
        )


@dataclass(frozen=True)
class MatchResult:
    """Outcome of matching one probe against a gallery snapshot.

    Attributes:
        best: (identity, score) of the highest-scoring entry, or None
        runner_up: Score of the second-best entry, or None
        accepted: True if best passes both the threshold and margin rules
    """

    best: Optional[Tuple[str, float]]
    runner_up: Optional[float]
    accepted: bool

    @property
    def identity(self) -> Optional[str]:
        """Accepted identity, or None when the match was rejected."""
        if not self.accepted or self.best is None:
            return None
        return self.best[0]

    @property
    def score(self) -> float:
        """Best score (0.0 when the gallery was empty)."""
        return self.best[1] if self.best is not None else 0.0

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"MatchResult(best={self.best}, runner_up={self.runner_up}, "
            f"accepted={self.accepted})"
        )


@runtime_checkable
class Detector(Protocol):
    """Protocol for face detection model invocations.

    A Detector takes a BGR frame and returns detections in the frame's pixel
    coordinates, best score first.
    """

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        """Detect faces in an image.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            List of Detection objects, sorted by score (descending).
            Empty if no face was found.
        """
        ...


@runtime_checkable
class Embedder(Protocol):
    """Protocol for embedding model invocations.

    The embedder advertises the planar input format it expects and maps one
    preprocessed aligned face to a raw (not yet normalized) feature vector.
    """

    input_format: InputFormat

    def embed(self, planes: np.ndarray) -> np.ndarray:
        """Extract a raw embedding.

        Args:
            planes: Aligned face as float32 channel planes, shape [3, 112, 112]

        Returns:
            Raw feature vector, shape [D].
        """
        ...


@runtime_checkable
class GalleryStore(Protocol):
    """Protocol for persistence of enrolled identities (CRUD only)."""

    def list(self) -> List[GalleryEntry]:
        """Return a fresh snapshot of all entries."""
        ...

    def get(self, identity: str) -> Optional[GalleryEntry]:
        """Return one entry or None."""
        ...

    def upsert(
        self,
        identity: str,
        embedding: np.ndarray,
        thumbnail: Optional[bytes] = None,
    ) -> GalleryEntry:
        """Insert or replace the entry for identity."""
        ...

    def delete(self, identity: str) -> bool:
        """Delete an entry. Returns False if it did not exist."""
        ...

    def rename(self, old_identity: str, new_identity: str) -> bool:
        """Rename an entry. Returns False if old_identity did not exist."""
        ...
