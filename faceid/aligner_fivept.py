"""5-point face alignment for normalization to 112x112.

This module warps a detected face to a canonical pose using a similarity
transform (rotation + uniform scale + translation) estimated from the five
facial landmarks, and converts the aligned crop into the planar float layout
expected by the embedding model.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from faceid.errors import AlignmentDegenerate
from faceid.interfaces import FaceBox
from faceid.logging_config import get_logger
from faceid.utils import compute_mean_luminance

logger = get_logger(__name__)


# Standard 5-point landmark positions for 112x112 aligned face
# Order: left eye, right eye, nose tip, left mouth corner, right mouth corner
# Based on ArcFace alignment
ARCFACE_DST = np.array(
    [
        [38.2946, 51.6963],  # left eye
        [73.5318, 51.5014],  # right eye
        [56.0252, 71.7366],  # nose tip
        [41.5493, 92.3655],  # left mouth corner
        [70.7299, 92.2041],  # right mouth corner
    ],
    dtype=np.float32,
)

ALIGNED_SIZE = 112

# Aligned crops darker than this (0-255 gray) come from a bad transform
DARK_FLOOR = 8.0

CHANNEL_ORDERS = ("rgb", "bgr")
NORMALIZATIONS = ("raw", "unit", "symmetric")


@dataclass(frozen=True)
class InputFormat:
    """Planar input layout expected by an embedding model.

    Attributes:
        channel_order: "rgb" or "bgr"
        normalization: "raw" (0..255), "unit" (0..1) or "symmetric" (-1..1)
    """

    channel_order: str = "rgb"
    normalization: str = "raw"

    def __post_init__(self) -> None:
        """Validate format fields."""
        if self.channel_order not in CHANNEL_ORDERS:
            raise ValueError(
                f"channel_order must be one of {CHANNEL_ORDERS}, got {self.channel_order}"
            )
        if self.normalization not in NORMALIZATIONS:
            raise ValueError(
                f"normalization must be one of {NORMALIZATIONS}, got {self.normalization}"
            )

    def to_planes(self, face_bgr: np.ndarray) -> np.ndarray:
        """Convert an aligned BGR uint8 crop to contiguous float32 planes.

        Args:
            face_bgr: Aligned face, shape [H, W, 3], BGR uint8

        Returns:
            float32 array of shape [3, H, W], one contiguous plane per channel.
        """
        if face_bgr.ndim != 3 or face_bgr.shape[2] != 3:
            raise ValueError(f"Expected [H, W, 3] image, got {face_bgr.shape}")

        pixels = face_bgr[:, :, ::-1] if self.channel_order == "rgb" else face_bgr
        pixels = pixels.astype(np.float32)

        if self.normalization == "unit":
            pixels = pixels / 255.0
        elif self.normalization == "symmetric":
            pixels = (pixels - 127.5) / 127.5

        return np.ascontiguousarray(pixels.transpose(2, 0, 1))


def estimate_similarity_transform(
    src_points: np.ndarray,
    dst_points: np.ndarray,
) -> np.ndarray:
    """Least-squares similarity transform (Procrustes) from src to dst.

    Args:
        src_points: Source landmarks, shape [K, 2]
        dst_points: Destination landmarks, shape [K, 2]

    Returns:
        2x3 forward matrix mapping src to dst, as used by cv2.warpAffine.

    Raises:
        AlignmentDegenerate: If the source points have zero variance or the
            rotation cannot be determined.
    """
    src = np.asarray(src_points, dtype=np.float64)
    dst = np.asarray(dst_points, dtype=np.float64)
    if src.shape != dst.shape or len(src) == 0:
        raise AlignmentDegenerate(
            f"Point sets do not correspond: {src.shape} vs {dst.shape}"
        )

    src_mean = src.mean(axis=0)
    dst_mean = dst.mean(axis=0)
    s = src - src_mean
    d = dst - dst_mean

    var_src = float((s ** 2).sum())
    a = float((s[:, 0] * d[:, 0] + s[:, 1] * d[:, 1]).sum())
    b = float((s[:, 0] * d[:, 1] - s[:, 1] * d[:, 0]).sum())

    if var_src == 0:
        raise AlignmentDegenerate("Source landmarks have zero variance")
    norm = float(np.hypot(a, b))
    if norm == 0:
        raise AlignmentDegenerate("Rotation is undetermined")

    scale_cos = a / var_src
    scale_sin = b / var_src

    linear = np.array([[scale_cos, -scale_sin], [scale_sin, scale_cos]])
    translation = dst_mean - linear @ src_mean

    return np.hstack([linear, translation[:, None]]).astype(np.float32)


def estimate_eye_transform(
    first_eye: np.ndarray,
    second_eye: np.ndarray,
    dst_points: np.ndarray = ARCFACE_DST,
) -> np.ndarray:
    """Similarity transform from the two eye points alone.

    The first eye is pinned to the template's first eye, the inter-eye segment
    is rotated level and scaled to the template's horizontal eye distance.

    Raises:
        AlignmentDegenerate: If the eyes coincide.
    """
    first_eye = np.asarray(first_eye, dtype=np.float64)
    second_eye = np.asarray(second_eye, dtype=np.float64)

    dx, dy = second_eye - first_eye
    distance = float(np.hypot(dx, dy))
    if distance == 0:
        raise AlignmentDegenerate("Eye landmarks coincide")

    angle = np.arctan2(dy, dx)
    desired = float(dst_points[1][0] - dst_points[0][0])
    scale = desired / distance

    cos, sin = np.cos(angle), np.sin(angle)
    linear = scale * np.array([[cos, sin], [-sin, cos]])
    translation = np.asarray(dst_points[0], dtype=np.float64) - linear @ first_eye

    return np.hstack([linear, translation[:, None]]).astype(np.float32)


class FaceAligner:
    """Face aligner using 5-point landmarks with box-only fallbacks.

    Alignment strategy, from best to simplest:
    1. Five landmarks: least-squares similarity onto the ArcFace template
    2. Two to four landmarks (or a degenerate five-point fit): eyes only
    3. No usable landmarks: crop the clamped box and resize

    A crop that comes out nearly black is redone with strategy 3.

    Attributes:
        dst_points: Target landmark positions in output space
        output_size: Output side length in pixels
        dark_floor: Mean gray level below which an aligned crop is rejected

    Example:
        >>> aligner = FaceAligner()
        >>> aligned = aligner.align(frame, detection.box, detection.landmarks)
        >>> assert aligned.shape == (112, 112, 3)
    """

    def __init__(
        self,
        dst_points: Optional[np.ndarray] = None,
        output_size: int = ALIGNED_SIZE,
        dark_floor: float = DARK_FLOOR,
    ):
        """Initialize face aligner.

        Args:
            dst_points: Target landmark positions, shape [5, 2].
                       If None, uses ArcFace standard positions.
            output_size: Output side length (default 112 for ArcFace)
            dark_floor: Darkness floor triggering the box-only retry
        """
        self.output_size = output_size
        self.dst_points = dst_points if dst_points is not None else ARCFACE_DST.copy()
        self.dark_floor = dark_floor

        logger.debug(
            f"Initialized FaceAligner with output_size={output_size}, "
            f"dark_floor={dark_floor}"
        )

    @property
    def _dsize(self) -> Tuple[int, int]:
        return (self.output_size, self.output_size)

    def align(
        self,
        image: np.ndarray,
        box: FaceBox,
        landmarks: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """Align a face to the canonical pose and size.

        Args:
            image: Source image in BGR (or grayscale), shape [H, W, 3]
            box: Face box in image pixel coordinates
            landmarks: Optional landmarks in pixel coords, shape [K, 2].
                       Order: left_eye, right_eye, nose, left_mouth, right_mouth

        Returns:
            Aligned face crop in BGR, shape [size, size, 3], dtype uint8.
        """
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)

        points = self._usable_points(landmarks)
        if points is None:
            return self.crop_box(image, box)

        try:
            matrix = self._estimate(points)
        except AlignmentDegenerate as e:
            logger.debug(f"Landmark alignment degenerate ({e}); using box crop")
            return self.crop_box(image, box)

        aligned = cv2.warpAffine(
            image,
            matrix,
            self._dsize,
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0),
        )

        luminance = compute_mean_luminance(aligned)
        if luminance < self.dark_floor:
            logger.debug(
                f"Aligned crop too dark (mean={luminance:.1f} < {self.dark_floor}); "
                f"retrying with box crop"
            )
            return self.crop_box(image, box)

        return aligned

    def crop_box(self, image: np.ndarray, box: FaceBox) -> np.ndarray:
        """Crop the box (clamped to the image) and resize to the output size."""
        h, w = image.shape[:2]
        safe = box.clamp(w, h)
        x1, y1 = int(safe.x_min), int(safe.y_min)
        x2 = max(x1 + 1, min(w, int(round(safe.x_max))))
        y2 = max(y1 + 1, min(h, int(round(safe.y_max))))

        crop = image[y1:y2, x1:x2]
        if image.ndim == 2:
            crop = cv2.cvtColor(crop, cv2.COLOR_GRAY2BGR)
        return cv2.resize(crop, self._dsize, interpolation=cv2.INTER_LINEAR)

    def _estimate(self, points: np.ndarray) -> np.ndarray:
        if len(points) >= 5:
            try:
                return estimate_similarity_transform(points[:5], self.dst_points)
            except AlignmentDegenerate as e:
                logger.debug(f"Five-point fit degenerate ({e}); using eyes only")

        return estimate_eye_transform(points[0], points[1], self.dst_points)

    @staticmethod
    def _usable_points(landmarks: Optional[np.ndarray]) -> Optional[np.ndarray]:
        if landmarks is None:
            return None
        points = np.asarray(landmarks, dtype=np.float32).reshape(-1, 2)
        if len(points) < 2 or not np.all(np.isfinite(points)):
            return None
        return points

    def __repr__(self) -> str:
        """String representation of aligner."""
        return f"FaceAligner(output_size={self.output_size})"
