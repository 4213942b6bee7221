"""Backend factory for the face identification pipeline.

Builds the detector, aligner, embedder and matcher from configuration.
The detector capability is chosen once, here:
- retinaface: raw RetinaFace tensors decoded by DetectionDecoder
- scrfd: InsightFace SCRFD, which performs its own decode

Usage:
    components = create_backend(config)
    detections = components.detector.detect(frame)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from faceid.aligner_fivept import FaceAligner
from faceid.config import Config
from faceid.interfaces import Detector, Embedder
from faceid.liveness import LivenessTracker
from faceid.logging_config import get_logger
from faceid.matcher_faiss import EmbeddingMatcher

logger = get_logger(__name__)


@dataclass
class BackendComponents:
    """Container for backend components.

    Attributes:
        detector: Face detector instance
        aligner: Face aligner instance
        embedder: Face embedder instance
        matcher: Embedding matcher instance
        detector_backend: Detector actually in use ("retinaface" or "scrfd")
        embedding_dim: Dimension of embeddings
    """

    detector: Detector
    aligner: FaceAligner
    embedder: Embedder
    matcher: EmbeddingMatcher
    detector_backend: str
    embedding_dim: int


def onnx_providers(ctx_id: int) -> List[str]:
    """onnxruntime execution providers for a device context (-1 = CPU)."""
    if ctx_id >= 0:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def select_detector_backend(config: Config) -> str:
    """Resolve DETECTOR_BACKEND, mapping "auto" to a concrete detector.

    "auto" picks RetinaFace when its ONNX file exists, SCRFD otherwise.

    Raises:
        FileNotFoundError: If "retinaface" is forced but the model is missing.
    """
    backend = config.detector_backend

    if backend == "auto":
        backend = "retinaface" if config.detector_model_path.exists() else "scrfd"
        logger.info(f"Auto-selected detector backend: {backend}")
    elif backend == "retinaface" and not config.detector_model_path.exists():
        raise FileNotFoundError(
            f"RetinaFace model not found at: {config.detector_model_path}"
        )

    return backend


def create_backend(
    config: Optional[Config] = None,
    detector_backend: Optional[str] = None,
) -> BackendComponents:
    """Create pipeline components from configuration.

    Args:
        config: Configuration object. If None, loads from .env
        detector_backend: Force "retinaface" or "scrfd" (default: from config)

    Returns:
        BackendComponents with detector, aligner, embedder, and matcher.

    Raises:
        ValueError: If the detector backend name is unknown.
        RuntimeError: If a model fails to load.

    Example:
        >>> from faceid.config import get_config
        >>> components = create_backend(get_config())
        >>> components.detector_backend
        'retinaface'
    """
    if config is None:
        from faceid.config import get_config
        config = get_config()

    backend = detector_backend or select_detector_backend(config)

    logger.info(f"Creating backend (detector={backend})...")

    if backend == "retinaface":
        from faceid.backends.retinaface.detector import RetinaFaceDetector

        detector = RetinaFaceDetector(config)
    elif backend == "scrfd":
        from faceid.backends.insightface.detector import SCRFDDetector

        detector = SCRFDDetector(config)
    else:
        raise ValueError(
            f"Unknown detector backend: '{backend}'. "
            f"Supported backends: 'retinaface', 'scrfd'"
        )

    from faceid.backends.insightface.embedder import ArcFaceEmbedder

    embedder = ArcFaceEmbedder(config)
    matcher = EmbeddingMatcher(threshold=config.thresh, min_margin=config.min_margin)

    logger.info("Backend created successfully")

    return BackendComponents(
        detector=detector,
        aligner=FaceAligner(),
        embedder=embedder,
        matcher=matcher,
        detector_backend=backend,
        embedding_dim=embedder.embedding_dim,
    )


def create_liveness(config: Optional[Config] = None) -> Optional[LivenessTracker]:
    """Create the blink tracker, or None when LIVENESS_ENABLED=0."""
    if config is None:
        from faceid.config import get_config
        config = get_config()

    if not config.liveness_enabled:
        logger.warning("Liveness check disabled; photos will not be rejected")
        return None

    return LivenessTracker(
        blink_threshold=config.blink_threshold,
        valid_window=config.liveness_window_ms / 1000.0,
    )
