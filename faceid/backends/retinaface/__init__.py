"""RetinaFace backend: onnxruntime session plus in-package decoding."""

from faceid.backends.retinaface.detector import RetinaFaceDetector

__all__ = ["RetinaFaceDetector"]
