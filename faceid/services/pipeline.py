"""Single-face capture pipeline: detect, gate, align, embed.

Wraps the detector and embedder in InferenceChannels so every model call is
serialized, and turns one frame into one normalized embedding of the most
confident face.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from faceid.aligner_fivept import FaceAligner
from faceid.errors import LowQuality, NoFaceDetected
from faceid.inference import InferenceChannel, QueuePolicy
from faceid.interfaces import Detection, Detector, Embedder
from faceid.logging_config import get_logger
from faceid.matcher_faiss import normalize
from faceid.utils import assess_quality

logger = get_logger(__name__)

THUMBNAIL_QUALITY = 80


@dataclass
class FaceCapture:
    """One face taken from a frame.

    Attributes:
        detection: Detection in frame pixels
        aligned: Aligned BGR face crop, shape [112, 112, 3], uint8
        embedding: L2-normalized embedding, shape [D]
    """

    detection: Detection
    aligned: np.ndarray
    embedding: np.ndarray

    def thumbnail(self) -> bytes:
        """JPEG bytes of the aligned crop."""
        return encode_thumbnail(self.aligned)

    def __repr__(self) -> str:
        """String representation."""
        return f"FaceCapture(score={self.detection.score:.3f}, dim={self.embedding.shape[0]})"


def encode_thumbnail(image_bgr: np.ndarray, quality: int = THUMBNAIL_QUALITY) -> bytes:
    """Encode a BGR image as JPEG bytes."""
    ok, buffer = cv2.imencode(".jpg", image_bgr, [int(cv2.IMWRITE_JPEG_QUALITY), quality])
    if not ok:
        raise RuntimeError("JPEG encoding failed")
    return buffer.tobytes()


class FacePipeline:
    """Frame-to-embedding pipeline for the most confident face.

    Model calls go through one InferenceChannel per model. The queue policy
    applies to detection: with DROP_IF_BUSY a frame arriving while the
    detector is busy is skipped (methods return None). Once a face is
    detected its embedding call always queues.

    Attributes:
        detector: Face detector
        aligner: Face aligner
        embedder: Embedding model

    Example:
        >>> pipeline = FacePipeline(detector, FaceAligner(), embedder)
        >>> capture = pipeline.capture(frame, check_quality=True)
        >>> store.upsert("alice", capture.embedding, capture.thumbnail())
        >>> pipeline.close()
    """

    def __init__(self, detector: Detector, aligner: FaceAligner, embedder: Embedder):
        self.detector = detector
        self.aligner = aligner
        self.embedder = embedder

        self._detect_channel = InferenceChannel(detector.detect, name="detector")
        self._embed_channel = InferenceChannel(embedder.embed, name="embedder")

        logger.info(f"Initialized FacePipeline with {detector!r}, {embedder!r}")

    def detect(
        self,
        frame: np.ndarray,
        policy: QueuePolicy = QueuePolicy.QUEUE,
    ) -> Optional[List[Detection]]:
        """Run the detector on a frame.

        Returns:
            Detections (best first), or None if the request was dropped.
        """
        future = self._detect_channel.submit(frame, policy=policy)
        if future is None:
            return None
        return future.result()

    def best_detection(
        self,
        frame: np.ndarray,
        policy: QueuePolicy = QueuePolicy.QUEUE,
    ) -> Optional[Detection]:
        """Most confident detection in a frame, or None if dropped.

        Raises:
            NoFaceDetected: If the detector found nothing.
        """
        detections = self.detect(frame, policy=policy)
        if detections is None:
            return None
        if not detections:
            raise NoFaceDetected("No face detected in frame")
        return max(detections, key=lambda d: d.score)

    def embed_face(self, frame: np.ndarray, detection: Detection) -> FaceCapture:
        """Align a detected face and extract its normalized embedding."""
        aligned = self.aligner.align(frame, detection.box, detection.landmarks)
        planes = self.embedder.input_format.to_planes(aligned)
        raw = self._embed_channel.call(planes)
        return FaceCapture(detection=detection, aligned=aligned, embedding=normalize(raw))

    def capture(
        self,
        frame: np.ndarray,
        policy: QueuePolicy = QueuePolicy.QUEUE,
        check_quality: bool = False,
    ) -> Optional[FaceCapture]:
        """Turn a frame into a FaceCapture of its most confident face.

        Args:
            frame: BGR frame, shape [H, W, 3]
            policy: Detection queue policy
            check_quality: Reject badly framed faces (enrollment)

        Returns:
            FaceCapture, or None if the detection request was dropped.

        Raises:
            NoFaceDetected: If no face was found.
            LowQuality: If check_quality is set and the face fails the checks.
        """
        detection = self.best_detection(frame, policy=policy)
        if detection is None:
            return None

        if check_quality:
            h, w = frame.shape[:2]
            hint = assess_quality(detection, w, h)
            if hint is not None:
                raise LowQuality(hint)

        return self.embed_face(frame, detection)

    def cancel_pending(self) -> None:
        """Discard queued model calls (e.g. when the camera stops)."""
        self._detect_channel.cancel_pending()
        self._embed_channel.cancel_pending()

    def close(self) -> None:
        """Stop the inference workers."""
        self._detect_channel.close()
        self._embed_channel.close()

    def __enter__(self) -> FacePipeline:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        """String representation of pipeline."""
        return f"FacePipeline(detector={self.detector!r}, embedder={self.embedder!r})"
