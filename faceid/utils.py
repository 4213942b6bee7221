"""Utility functions for the face identification pipeline.

This module provides geometric helpers (IoU), vector helpers (L2
normalization, cosine similarity), and image quality assessment used to
decide whether a captured face is usable.
"""

from __future__ import annotations

from typing import Optional, Sequence

import cv2
import numpy as np

from faceid.interfaces import Detection
from faceid.logging_config import get_logger

logger = get_logger(__name__)

# Framing heuristics for a usable capture
QUALITY_MIN_SCORE = 0.7
QUALITY_MIN_WIDTH_RATIO = 0.15
QUALITY_MAX_WIDTH_RATIO = 0.9
QUALITY_MAX_CENTER_OFFSET = 0.45
QUALITY_MIN_BOX_SIZE = 50


def compute_iou(box1: Sequence[float], box2: Sequence[float]) -> float:
    """Compute Intersection over Union (IoU) between two boxes.

    Args:
        box1: First box as (x1, y1, x2, y2)
        box2: Second box as (x1, y1, x2, y2)

    Returns:
        IoU score in range [0, 1]. Higher = more overlap.

    Example:
        >>> compute_iou((0, 0, 10, 10), (5, 0, 15, 10))
        0.3333333333333333
    """
    x1_1, y1_1, x2_1, y2_1 = box1
    x1_2, y1_2, x2_2, y2_2 = box2

    inter_w = max(0.0, min(x2_1, x2_2) - max(x1_1, x1_2))
    inter_h = max(0.0, min(y2_1, y2_2) - max(y1_1, y1_2))
    intersection = inter_w * inter_h

    area1 = max(0.0, x2_1 - x1_1) * max(0.0, y2_1 - y1_1)
    area2 = max(0.0, x2_2 - x1_2) * max(0.0, y2_2 - y1_2)
    union = area1 + area2 - intersection

    if union <= 0:
        return 0.0

    return float(intersection / union)


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """L2-normalize a vector or batch of vectors.

    Rows with zero norm are divided by 1, i.e. returned unchanged.

    Args:
        vec: Vector(s) to normalize, shape [D] or [N, D]

    Returns:
        float32 array with the same shape.
    """
    vec = np.asarray(vec, dtype=np.float32)
    norm = np.linalg.norm(vec, axis=-1, keepdims=True)
    norm = np.where(norm == 0, 1.0, norm).astype(np.float32)
    return vec / norm


def compute_cosine_similarity(vec1: np.ndarray, vec2: np.ndarray) -> float:
    """Compute cosine similarity between two L2-normalized vectors.

    Args:
        vec1: First vector, shape [D]
        vec2: Second vector, shape [D]

    Returns:
        Similarity in range [-1, 1]; for unit vectors this is the dot product.
    """
    dot_product = np.dot(np.asarray(vec1, dtype=np.float32), np.asarray(vec2, dtype=np.float32))
    return float(np.clip(dot_product, -1.0, 1.0))


def compute_mean_luminance(image: np.ndarray) -> float:
    """Mean gray level of a BGR or grayscale uint8 image (0-255)."""
    if image.ndim == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    else:
        gray = image
    return float(gray.mean())


def compute_sharpness(image: np.ndarray) -> float:
    """Compute image sharpness using Laplacian variance.

    Args:
        image: Input image in BGR or grayscale, shape [H, W] or [H, W, 3]

    Returns:
        Sharpness score (Laplacian variance). Higher = sharper.
    """
    if image.ndim == 3:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    else:
        gray = image

    return float(cv2.Laplacian(gray, cv2.CV_64F).var())


def assess_quality(
    detection: Detection,
    frame_width: int,
    frame_height: int,
) -> Optional[str]:
    """Check whether a detection is framed well enough to enroll or identify.

    Checks run in order: confidence, absolute size, distance (width ratio),
    then centering. The first failing check decides the hint.

    Args:
        detection: Detection in frame pixel coordinates
        frame_width: Frame width in pixels
        frame_height: Frame height in pixels

    Returns:
        None if the face is usable, otherwise an operator-facing hint.

    Example:
        >>> hint = assess_quality(detection, 640, 480)
        >>> if hint:
        ...     show_prompt(hint)
    """
    box = detection.box

    if detection.score < QUALITY_MIN_SCORE:
        return "Face is blurry; face the light or clean the lens"

    if box.width < QUALITY_MIN_BOX_SIZE or box.height < QUALITY_MIN_BOX_SIZE:
        return "Detected face is too small"

    width_ratio = box.width / frame_width
    if width_ratio < QUALITY_MIN_WIDTH_RATIO:
        return "Too far away; move closer to the camera"
    if width_ratio > QUALITY_MAX_WIDTH_RATIO:
        return "Too close; move back a little"

    center_x, center_y = box.center
    offset_x = abs(center_x / frame_width - 0.5)
    offset_y = abs(center_y / frame_height - 0.5)
    if offset_x > QUALITY_MAX_CENTER_OFFSET or offset_y > QUALITY_MAX_CENTER_OFFSET:
        return "Move your face to the center of the frame"

    logger.debug(
        f"Quality ok: score={detection.score:.2f}, width_ratio={width_ratio:.2f}, "
        f"offset=({offset_x:.2f}, {offset_y:.2f})"
    )
    return None
