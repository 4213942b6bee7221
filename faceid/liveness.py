"""Blink-based liveness detection.

A printed photo or a screen replay does not blink. The tracker consumes one
eye aspect ratio (EAR) per frame and records a blink on every closed-to-open
transition; the subject counts as live for a short window after the last
blink.

EAR helpers for a 468-point face mesh (MediaPipe FaceMesh layout) are
provided as well, together with the derivation of ArcFace 5-point landmarks
from such a mesh.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import numpy as np

from faceid.logging_config import get_logger

logger = get_logger(__name__)

BLINK_THRESHOLD = 0.22
VALID_WINDOW = 3.0  # seconds

# p1..p6 of each eye, p1/p4 the corners
MESH_BLINK_RIGHT = (33, 160, 158, 133, 153, 144)
MESH_BLINK_LEFT = (362, 385, 387, 263, 373, 380)

MESH_RIGHT_EYE = (33, 133, 159, 145)
MESH_LEFT_EYE = (263, 362, 386, 374)
MESH_NOSE = 1
MESH_MOUTH = (61, 291)


def eye_aspect_ratio(eye_points: np.ndarray) -> float:
    """Eye aspect ratio of six eye contour points.

    EAR = (|p2 - p6| + |p3 - p5|) / (2 * |p1 - p4|)

    Args:
        eye_points: Points p1..p6, shape [6, 2]

    Returns:
        EAR value; 0.0 for a degenerate eye (coincident corners).
    """
    p = np.asarray(eye_points, dtype=np.float64)[:, :2]
    horizontal = np.linalg.norm(p[0] - p[3])
    if horizontal == 0:
        return 0.0
    vertical = np.linalg.norm(p[1] - p[5]) + np.linalg.norm(p[2] - p[4])
    return float(vertical / (2.0 * horizontal))


def mesh_eye_aspect_ratio(mesh: Optional[np.ndarray]) -> Optional[float]:
    """Average EAR of both eyes from a face mesh.

    Args:
        mesh: Face mesh landmarks, shape [N, 2] or [N, 3] (N >= 468)

    Returns:
        Mean EAR of the two eyes, or None when the mesh is missing or too short.
    """
    if mesh is None:
        return None
    mesh = np.asarray(mesh, dtype=np.float64)
    if mesh.ndim != 2 or len(mesh) <= max(max(MESH_BLINK_RIGHT), max(MESH_BLINK_LEFT)):
        return None

    right = eye_aspect_ratio(mesh[list(MESH_BLINK_RIGHT)])
    left = eye_aspect_ratio(mesh[list(MESH_BLINK_LEFT)])
    return (right + left) / 2.0


def landmarks_from_mesh(
    mesh: Optional[np.ndarray],
    width: int,
    height: int,
) -> Optional[np.ndarray]:
    """Derive ArcFace 5-point landmarks from a normalized face mesh.

    Eye centers are the mean of four contour points per eye. Eyes and mouth
    corners are ordered by x so the output follows the template order
    regardless of which side the mesh calls "left".

    Args:
        mesh: Landmarks in [0, 1] image coordinates, shape [N, 2] or [N, 3]
        width: Image width in pixels
        height: Image height in pixels

    Returns:
        float32 array of shape [5, 2] in pixels, or None if the mesh is incomplete.
    """
    if mesh is None:
        return None
    mesh = np.asarray(mesh, dtype=np.float64)
    needed = max(MESH_RIGHT_EYE + MESH_LEFT_EYE + MESH_MOUTH + (MESH_NOSE,))
    if mesh.ndim != 2 or len(mesh) <= needed:
        return None

    scale = np.array([width, height], dtype=np.float64)
    points = mesh[:, :2] * scale

    eyes = np.stack(
        [points[list(MESH_LEFT_EYE)].mean(axis=0), points[list(MESH_RIGHT_EYE)].mean(axis=0)]
    )
    mouth = points[list(MESH_MOUTH)]

    eyes = eyes[np.argsort(eyes[:, 0], kind="stable")]
    mouth = mouth[np.argsort(mouth[:, 0], kind="stable")]

    return np.vstack([eyes, points[MESH_NOSE][None, :], mouth]).astype(np.float32)


class LivenessTracker:
    """EAR-driven blink state machine.

    Attributes:
        blink_threshold: EAR below which the eyes count as closed
        valid_window: Seconds a blink keeps the subject live
        min_closed_frames: Closed frames required before a reopening counts

    Example:
        >>> tracker = LivenessTracker()
        >>> for ear in ear_stream:
        ...     tracker.update(ear)
        >>> if tracker.is_live():
        ...     identify()
        ...     tracker.reset()
    """

    def __init__(
        self,
        blink_threshold: float = BLINK_THRESHOLD,
        valid_window: float = VALID_WINDOW,
        min_closed_frames: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if blink_threshold <= 0:
            raise ValueError(f"blink_threshold must be > 0, got {blink_threshold}")
        if valid_window <= 0:
            raise ValueError(f"valid_window must be > 0, got {valid_window}")
        if min_closed_frames < 1:
            raise ValueError(f"min_closed_frames must be >= 1, got {min_closed_frames}")

        self.blink_threshold = blink_threshold
        self.valid_window = valid_window
        self.min_closed_frames = min_closed_frames
        self._clock = clock

        self._last_blink_at: Optional[float] = None
        self._closed_streak = 0
        self._blink_count = 0

    @property
    def last_blink_at(self) -> Optional[float]:
        return self._last_blink_at

    @property
    def closed_streak(self) -> int:
        return self._closed_streak

    @property
    def blink_count(self) -> int:
        """Blinks recorded since construction (not cleared by reset)."""
        return self._blink_count

    def update(self, ear: Optional[float], now: Optional[float] = None) -> bool:
        """Feed one frame's eye aspect ratio.

        Args:
            ear: Eye aspect ratio, or None when no face/mesh was tracked
                 (state is left untouched)
            now: Frame time in seconds; defaults to the tracker clock

        Returns:
            True if this frame completed a blink.
        """
        if ear is None:
            return False

        if ear < self.blink_threshold:
            self._closed_streak += 1
            return False

        if self._closed_streak >= self.min_closed_frames:
            self._last_blink_at = self._clock() if now is None else now
            self._blink_count += 1
            self._closed_streak = 0
            logger.debug(f"Blink #{self._blink_count} at {self._last_blink_at:.3f}")
            return True

        self._closed_streak = 0
        return False

    def is_live(self, now: Optional[float] = None) -> bool:
        """True while the last blink is younger than valid_window."""
        if self._last_blink_at is None:
            return False
        now = self._clock() if now is None else now
        return now - self._last_blink_at < self.valid_window

    def reset(self) -> None:
        """Forget the last blink so a new one is required."""
        self._last_blink_at = None
        self._closed_streak = 0

    def __repr__(self) -> str:
        """String representation of tracker."""
        return (
            f"LivenessTracker(threshold={self.blink_threshold}, "
            f"window={self.valid_window}s, blinks={self._blink_count})"
        )
