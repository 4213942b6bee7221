"""Decoding of raw RetinaFace output into face detections.

The network predicts, for every anchor, box offsets, a face/background score
and five landmark offsets. This module turns those tensors into Detection
objects: decode against the anchors, filter by confidence, and suppress
overlapping boxes.
"""

from __future__ import annotations

from typing import List, Optional, Tuple

import numpy as np

from faceid.interfaces import Detection, FaceBox
from faceid.logging_config import get_logger

logger = get_logger(__name__)

VARIANCES: Tuple[float, float] = (0.1, 0.2)
CONF_THRESHOLD = 0.3
NMS_THRESHOLD = 0.4
TOP_K = 1000
KEEP_TOP_K = 20
FALLBACK_FLOOR = 0.1


def decode_boxes(loc: np.ndarray, anchors: np.ndarray) -> np.ndarray:
    """Decode box regression against anchors.

    Args:
        loc: Regression output (dx, dy, dw, dh), shape [N, 4]
        anchors: Anchors (cx, cy, sx, sy), shape [N, 4]

    Returns:
        Boxes as (x_min, y_min, x_max, y_max) in normalized coords, shape [N, 4].
    """
    v0, v1 = VARIANCES
    centers = anchors[:, :2] + loc[:, :2] * v0 * anchors[:, 2:]
    sizes = anchors[:, 2:] * np.exp(loc[:, 2:] * v1)
    return np.concatenate([centers - sizes / 2, centers + sizes / 2], axis=1)


def decode_landmarks(landms: np.ndarray, anchors: np.ndarray) -> np.ndarray:
    """Decode 5-point landmark offsets against anchors.

    Args:
        landms: Landmark output, shape [N, 10] as (x0, y0, ..., x4, y4)
        anchors: Anchors (cx, cy, sx, sy), shape [N, 4]

    Returns:
        Landmarks in normalized coords, shape [N, 5, 2].
    """
    offsets = landms.reshape(-1, 5, 2)
    return anchors[:, None, :2] + offsets * VARIANCES[0] * anchors[:, None, 2:]


def nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    threshold: float,
    top_k: int = TOP_K,
    keep_top_k: int = KEEP_TOP_K,
) -> np.ndarray:
    """Greedy non-maximum suppression on (x1, y1, x2, y2) boxes.

    Args:
        boxes: Candidate boxes, shape [M, 4]
        scores: Candidate scores, shape [M]
        threshold: Boxes with IoU above this against a kept box are dropped
        top_k: Only the top_k highest-scoring candidates are considered
        keep_top_k: At most this many boxes are kept

    Returns:
        Indices into boxes of the kept boxes, best score first.
    """
    if len(boxes) == 0:
        return np.array([], dtype=np.int64)

    x1, y1, x2, y2 = boxes[:, 0], boxes[:, 1], boxes[:, 2], boxes[:, 3]
    areas = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)
    # Stable sort keeps anchor order among ties
    order = np.argsort(-scores, kind="stable")[:top_k]

    keep: List[int] = []
    while order.size > 0 and len(keep) < keep_top_k:
        i = int(order[0])
        keep.append(i)
        rest = order[1:]

        inter_w = np.maximum(0.0, np.minimum(x2[i], x2[rest]) - np.maximum(x1[i], x1[rest]))
        inter_h = np.maximum(0.0, np.minimum(y2[i], y2[rest]) - np.maximum(y1[i], y1[rest]))
        inter = inter_w * inter_h
        union = areas[i] + areas[rest] - inter
        iou = np.where(union > 0, inter / np.where(union > 0, union, 1.0), 0.0)

        order = rest[iou <= threshold]

    return np.array(keep, dtype=np.int64)


class DetectionDecoder:
    """Converts raw detector tensors into scored, suppressed detections.

    Attributes:
        confidence_threshold: Default minimum score for a candidate
        nms_threshold: Default IoU above which overlapping boxes are dropped
        top_k: Candidates considered by NMS
        keep_top_k: Detections kept after NMS
        permissive_fallback: When nothing clears the threshold, return the
            single best anchor if its score reaches fallback_floor
        fallback_floor: Minimum score accepted by the fallback

    Example:
        >>> decoder = DetectionDecoder()
        >>> anchors = AnchorGrid().generate(640, 608)
        >>> detections = decoder.decode(loc, conf, landms, anchors)
        >>> detections = scale_detections(detections, 1280, 720)
    """

    def __init__(
        self,
        confidence_threshold: float = CONF_THRESHOLD,
        nms_threshold: float = NMS_THRESHOLD,
        top_k: int = TOP_K,
        keep_top_k: int = KEEP_TOP_K,
        permissive_fallback: bool = True,
        fallback_floor: float = FALLBACK_FLOOR,
    ):
        self.confidence_threshold = confidence_threshold
        self.nms_threshold = nms_threshold
        self.top_k = top_k
        self.keep_top_k = keep_top_k
        self.permissive_fallback = permissive_fallback
        self.fallback_floor = fallback_floor

    @staticmethod
    def _foreground_scores(conf: np.ndarray, num_anchors: int) -> np.ndarray:
        flat = np.asarray(conf, dtype=np.float32).reshape(-1)
        # NaN or inf scores from a corrupt output count as background
        flat = np.nan_to_num(flat, nan=0.0, posinf=0.0, neginf=0.0)
        stride = max(1, flat.size // num_anchors) if num_anchors else 1
        if flat.size != num_anchors * stride:
            raise ValueError(
                f"Confidence output size {flat.size} does not match "
                f"{num_anchors} anchors"
            )
        if stride == 1:
            return flat
        # Two-way output: channel 1 is the face class
        return flat.reshape(num_anchors, stride)[:, 1]

    def decode(
        self,
        loc: np.ndarray,
        conf: np.ndarray,
        landms: np.ndarray,
        anchors: np.ndarray,
        confidence_threshold: Optional[float] = None,
        nms_threshold: Optional[float] = None,
    ) -> List[Detection]:
        """Decode one image's raw output.

        Args:
            loc: Box regression, [N, 4] (any leading batch dim of 1 allowed)
            conf: Scores, [N, 2] or [N] (or flat)
            landms: Landmark regression, [N, 10]
            anchors: AnchorGrid output for the model input size, [N, 4]
            confidence_threshold: Overrides the decoder default
            nms_threshold: Overrides the decoder default

        Returns:
            Detections in normalized model-input coordinates, best score first.
            Empty if no face was found.

        Raises:
            ValueError: If output sizes do not match the anchor count.
        """
        conf_thresh = (
            self.confidence_threshold if confidence_threshold is None else confidence_threshold
        )
        nms_thresh = self.nms_threshold if nms_threshold is None else nms_threshold

        num_anchors = len(anchors)
        loc = np.asarray(loc, dtype=np.float32).reshape(-1)
        landms = np.asarray(landms, dtype=np.float32).reshape(-1)
        if loc.size != num_anchors * 4:
            raise ValueError(
                f"Box output size {loc.size} does not match {num_anchors} anchors"
            )
        if landms.size != num_anchors * 10:
            raise ValueError(
                f"Landmark output size {landms.size} does not match "
                f"{num_anchors} anchors"
            )
        if num_anchors == 0:
            return []

        scores = self._foreground_scores(conf, num_anchors)
        boxes = decode_boxes(loc.reshape(num_anchors, 4), anchors)
        points = decode_landmarks(landms.reshape(num_anchors, 10), anchors)

        candidates = np.flatnonzero(scores >= conf_thresh)

        if candidates.size == 0:
            return self._fallback(scores, boxes, points)

        keep = nms(
            boxes[candidates],
            scores[candidates],
            nms_thresh,
            top_k=self.top_k,
            keep_top_k=self.keep_top_k,
        )
        selected = candidates[keep]

        detections = []
        for idx in selected:
            detection = self._to_detection(scores[idx], boxes[idx], points[idx])
            if detection is not None:
                detections.append(detection)

        logger.debug(
            f"Decoded {len(detections)} detection(s) from {candidates.size} candidates"
        )
        return detections

    def _fallback(
        self,
        scores: np.ndarray,
        boxes: np.ndarray,
        points: np.ndarray,
    ) -> List[Detection]:
        best = int(np.argmax(scores))
        best_score = float(scores[best])

        if not self.permissive_fallback or best_score < self.fallback_floor:
            logger.debug(f"No face: max score {best_score:.3f}")
            return []

        logger.debug(
            f"No anchor above threshold; falling back to best anchor "
            f"(score={best_score:.3f})"
        )
        detection = self._to_detection(best_score, boxes[best], points[best])
        return [detection] if detection is not None else []

    @staticmethod
    def _to_detection(
        score: float,
        box: np.ndarray,
        points: np.ndarray,
    ) -> Optional[Detection]:
        x1, y1, x2, y2 = (float(v) for v in box)
        if not (x2 > x1 and y2 > y1):
            return None
        return Detection(
            score=float(np.clip(score, 0.0, 1.0)),
            box=FaceBox.from_xyxy(x1, y1, x2, y2),
            landmarks=points.astype(np.float32),
        )

    def __repr__(self) -> str:
        """String representation of decoder."""
        return (
            f"DetectionDecoder(conf={self.confidence_threshold}, "
            f"nms={self.nms_threshold}, fallback={self.permissive_fallback})"
        )


def scale_detections(
    detections: List[Detection],
    source_width: int,
    source_height: int,
) -> List[Detection]:
    """Map normalized detections to source-image pixels.

    Normalized coordinates times (input size x source/input scale) reduce to
    normalized coordinates times the source size. Boxes are clamped to the
    source bounds.

    Args:
        detections: Output of DetectionDecoder.decode
        source_width: Source image width in pixels
        source_height: Source image height in pixels

    Returns:
        New detections in source pixel coordinates.
    """
    scale = np.array([source_width, source_height], dtype=np.float32)
    scaled = []
    for det in detections:
        box = FaceBox(
            x_min=det.box.x_min * source_width,
            y_min=det.box.y_min * source_height,
            width=det.box.width * source_width,
            height=det.box.height * source_height,
        ).clamp(source_width, source_height)
        landmarks = None if det.landmarks is None else det.landmarks * scale
        scaled.append(Detection(score=det.score, box=box, landmarks=landmarks))
    return scaled
