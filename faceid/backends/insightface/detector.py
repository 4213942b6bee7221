"""SCRFD face detector using InsightFace.

This module provides a face detector based on SCRFD (Sample and Computation
Redistribution for Efficient Face Detection) via InsightFace's FaceAnalysis API.
SCRFD decodes its own output, so DetectionDecoder is not involved here.
"""

from __future__ import annotations

from typing import Any, List, Optional

import numpy as np
from insightface.app import FaceAnalysis

from faceid.backends.factory import onnx_providers
from faceid.config import Config
from faceid.interfaces import Detection, FaceBox
from faceid.logging_config import get_logger

logger = get_logger(__name__)


class SCRFDDetector:
    """Face detector using InsightFace SCRFD model.

    SCRFD provides both bounding boxes and 5-point facial landmarks
    (eyes, nose, mouth corners).

    Attributes:
        app: InsightFace FaceAnalysis instance
        ctx_id: Device context (-1=CPU, 0+=GPU)
        det_size: Detection input size (default: (640, 640))

    Example:
        >>> from faceid.config import get_config
        >>> detector = SCRFDDetector(get_config())
        >>> detections = detector.detect(frame)
        >>> print(f"Found {len(detections)} faces")
    """

    def __init__(
        self,
        config: Config,
        det_size: tuple[int, int] = (640, 640),
        app: Optional[Any] = None,
    ):
        """Initialize SCRFD detector.

        Args:
            config: Configuration object with ctx_id and model_pack
            det_size: Detection input size as (width, height)
            app: Pre-built FaceAnalysis; if None one is created

        Raises:
            RuntimeError: If model fails to load.
        """
        self.ctx_id = config.ctx_id
        self.det_size = det_size

        if app is None:
            app = self._load_app(config, det_size)
        self.app = app

    @staticmethod
    def _load_app(config: Config, det_size: tuple[int, int]) -> FaceAnalysis:
        logger.info(
            f"Initializing SCRFD detector (model={config.model_pack}, "
            f"device={'GPU:' + str(config.ctx_id) if config.ctx_id >= 0 else 'CPU'}, "
            f"det_size={det_size})"
        )

        try:
            # Only load the detector, not recognition
            app = FaceAnalysis(
                name=config.model_pack,
                allowed_modules=["detection"],
                providers=onnx_providers(config.ctx_id),
            )
            app.prepare(
                ctx_id=config.ctx_id,
                det_thresh=config.conf_threshold,
                det_size=det_size,
            )
            logger.info("SCRFD detector initialized successfully")
            return app

        except Exception as e:
            logger.error(f"Failed to initialize SCRFD detector: {e}", exc_info=True)
            raise RuntimeError(f"Could not load SCRFD detector: {e}") from e

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        """Detect faces in an image.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            List of Detection objects, sorted by confidence (descending).
            Empty list if no faces detected.

        Raises:
            RuntimeError: If inference fails.
        """
        if frame_bgr is None or frame_bgr.size == 0:
            logger.warning("Empty frame provided to detector")
            return []

        try:
            faces = self.app.get(frame_bgr)
        except Exception as e:
            logger.error(f"Error during face detection: {e}", exc_info=True)
            raise RuntimeError(f"SCRFD inference failed: {e}") from e

        h, w = frame_bgr.shape[:2]
        detections = []
        for face in faces:
            x1, y1, x2, y2 = (float(v) for v in face.bbox)
            if not (x2 > x1 and y2 > y1):
                continue

            box = FaceBox.from_xyxy(x1, y1, x2, y2).clamp(w, h)

            kps = getattr(face, "kps", None)
            landmarks = None
            if kps is not None and np.asarray(kps).shape == (5, 2):
                landmarks = np.asarray(kps, dtype=np.float32)

            score = float(np.clip(face.det_score, 0.0, 1.0))
            detections.append(Detection(score=score, box=box, landmarks=landmarks))

        detections.sort(key=lambda d: d.score, reverse=True)

        if len(detections) > 0:
            logger.debug(f"Detected {len(detections)} faces")

        return detections

    def __repr__(self) -> str:
        """String representation of detector."""
        return f"SCRFDDetector(ctx_id={self.ctx_id}, det_size={self.det_size})"
