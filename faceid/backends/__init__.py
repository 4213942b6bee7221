"""Model backends for the face identification pipeline.

This package contains the model invocations:
- retinaface: RetinaFace ONNX detector run through onnxruntime, decoded here
- insightface: SCRFD detector and ArcFace embedder via InsightFace

Use the factory module to create backend components.
"""

from faceid.backends.factory import (
    BackendComponents,
    create_backend,
    create_liveness,
    onnx_providers,
    select_detector_backend,
)

__all__ = [
    "BackendComponents",
    "create_backend",
    "create_liveness",
    "onnx_providers",
    "select_detector_backend",
]
