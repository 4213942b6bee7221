"""RetinaFace face detector running on onnxruntime.

The network (MobileNet-0.25 RetinaFace) returns raw per-anchor tensors. This
module prepares the input, runs the session, identifies the three outputs and
hands them to DetectionDecoder; detections come back in source pixels.
"""

from __future__ import annotations

from typing import Any, List, Optional, Sequence, Tuple

import cv2
import numpy as np
import onnxruntime as ort

from faceid.anchors import AnchorGrid
from faceid.backends.factory import onnx_providers
from faceid.config import Config
from faceid.decoder import DetectionDecoder, scale_detections
from faceid.interfaces import Detection
from faceid.logging_config import get_logger

logger = get_logger(__name__)

# Per-channel BGR mean subtracted from the input
BGR_MEAN = np.array([104.0, 117.0, 123.0], dtype=np.float32)


def pick_outputs(
    outputs: Sequence[np.ndarray],
    num_anchors: int,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Identify (loc, conf, landms) among the session outputs by size.

    Output order differs between exports, but sizes do not: 4, 2 (or 1) and
    10 values per anchor. Anything not recognized by size is taken from the
    remaining outputs in order.

    Raises:
        RuntimeError: If the session produced fewer than three outputs.
    """
    if len(outputs) < 3:
        raise RuntimeError(f"RetinaFace outputs missing: got {len(outputs)}, need 3")

    loc = conf = landms = None
    for data in outputs:
        size = np.asarray(data).size
        if size == num_anchors * 4 and loc is None:
            loc = data
        elif size in (num_anchors * 2, num_anchors) and conf is None:
            conf = data
        elif size == num_anchors * 10 and landms is None:
            landms = data

    if loc is None or conf is None or landms is None:
        logger.warning(
            f"Could not match RetinaFace outputs by size "
            f"{[np.asarray(o).size for o in outputs]} for {num_anchors} anchors; "
            f"using output order"
        )
        loc = outputs[0] if loc is None else loc
        conf = outputs[1] if conf is None else conf
        landms = outputs[2] if landms is None else landms

    return loc, conf, landms


class RetinaFaceDetector:
    """Face detector using a RetinaFace ONNX model.

    Attributes:
        session: onnxruntime InferenceSession (or any object with the same
                 get_inputs()/run() surface)
        input_size: Model input as (width, height)
        channels_first: True if the model takes NCHW input, False for NHWC
        decoder: DetectionDecoder turning raw tensors into detections

    Example:
        >>> detector = RetinaFaceDetector(get_config())
        >>> detections = detector.detect(frame)
        >>> print(f"Found {len(detections)} faces")
    """

    def __init__(self, config: Config, session: Optional[Any] = None):
        """Initialize RetinaFace detector.

        Args:
            config: Configuration with model path, input size and decoder settings
            session: Pre-built session; if None one is created from
                     config.detector_model_path

        Raises:
            RuntimeError: If the model fails to load.
        """
        self.input_size = config.detector_input_size
        self.anchor_grid = AnchorGrid()
        self.decoder = DetectionDecoder(
            confidence_threshold=config.conf_threshold,
            nms_threshold=config.nms_threshold,
            permissive_fallback=config.permissive_fallback,
        )

        if session is None:
            session = self._load_session(config)
        self.session = session

        model_input = self.session.get_inputs()[0]
        self.input_name = model_input.name
        self.channels_first = self._is_channels_first(model_input.shape)

        logger.info(
            f"RetinaFace detector ready (input={self.input_size[0]}x{self.input_size[1]}, "
            f"layout={'NCHW' if self.channels_first else 'NHWC'}, {self.decoder})"
        )

    @staticmethod
    def _load_session(config: Config) -> ort.InferenceSession:
        model_path = config.detector_model_path
        logger.info(f"Loading RetinaFace model from {model_path}")

        if not model_path.exists():
            raise RuntimeError(f"RetinaFace model not found at: {model_path}")

        try:
            return ort.InferenceSession(
                str(model_path), providers=onnx_providers(config.ctx_id)
            )
        except Exception as e:
            logger.error(f"Failed to initialize RetinaFace detector: {e}", exc_info=True)
            raise RuntimeError(f"Could not load RetinaFace detector: {e}") from e

    @staticmethod
    def _is_channels_first(shape: Sequence[Any]) -> bool:
        # Symbolic dims come through as strings or None
        if len(shape) != 4:
            return False
        return shape[1] == 3 and shape[3] != 3

    def preprocess(self, frame_bgr: np.ndarray) -> np.ndarray:
        """Resize to the model input and subtract the BGR mean.

        Returns:
            float32 tensor [1, H, W, 3] (NHWC) or [1, 3, H, W] (NCHW).
        """
        if frame_bgr.ndim == 2:
            frame_bgr = cv2.cvtColor(frame_bgr, cv2.COLOR_GRAY2BGR)

        resized = cv2.resize(frame_bgr, self.input_size, interpolation=cv2.INTER_LINEAR)
        tensor = resized.astype(np.float32) - BGR_MEAN

        if self.channels_first:
            tensor = tensor.transpose(2, 0, 1)
        return np.ascontiguousarray(tensor[None, ...])

    def detect(self, frame_bgr: np.ndarray) -> List[Detection]:
        """Detect faces in an image.

        Args:
            frame_bgr: Input image in BGR format (OpenCV convention), shape [H, W, 3]

        Returns:
            List of Detection objects in frame pixels, sorted by confidence
            (descending). Empty list if no faces detected.

        Raises:
            RuntimeError: If inference fails.
            ValueError: If the model outputs do not fit the anchor grid.
        """
        if frame_bgr is None or frame_bgr.size == 0:
            logger.warning("Empty frame provided to detector")
            return []

        source_h, source_w = frame_bgr.shape[:2]
        tensor = self.preprocess(frame_bgr)

        try:
            outputs = self.session.run(None, {self.input_name: tensor})
        except Exception as e:
            logger.error(f"Error during face detection: {e}", exc_info=True)
            raise RuntimeError(f"RetinaFace inference failed: {e}") from e

        anchors = self.anchor_grid.generate(*self.input_size)
        loc, conf, landms = pick_outputs(outputs, len(anchors))

        detections = self.decoder.decode(loc, conf, landms, anchors)
        detections = scale_detections(detections, source_w, source_h)

        if len(detections) > 0:
            logger.debug(f"Detected {len(detections)} faces")

        return detections

    def __repr__(self) -> str:
        """String representation of detector."""
        return (
            f"RetinaFaceDetector(input_size={self.input_size}, "
            f"channels_first={self.channels_first})"
        )
