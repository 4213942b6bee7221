"""ArcFace embedder for face feature extraction.

This module runs InsightFace's ArcFace recognition ONNX model on aligned,
already-planarized 112x112 faces and returns raw feature vectors. Their
length is read from the model (512 for the stock packs). Normalization
happens in the matcher.

ArcFace exports differ in whether the graph does its own pixel scaling
(leading Sub/Mul nodes). InsightFace detects this when loading the model and
reports it as input_mean/input_std; the embedder turns that into the
InputFormat the aligner should produce.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from faceid.aligner_fivept import InputFormat
from faceid.backends.factory import onnx_providers
from faceid.config import Config
from faceid.logging_config import get_logger

logger = get_logger(__name__)


def detect_input_format(model: Any, channel_order: str = "rgb") -> InputFormat:
    """Infer the planar input format from an InsightFace ArcFace model.

    Args:
        model: insightface ArcFaceONNX (exposes input_mean and input_std)
        channel_order: Channel order to use ("rgb" for InsightFace models)

    Returns:
        InputFormat: "raw" when the graph scales pixels itself
        (mean 0, std 1), "unit" for mean 0, std 255, otherwise "symmetric".
    """
    mean = float(getattr(model, "input_mean", 127.5))
    std = float(getattr(model, "input_std", 127.5))

    if mean == 0.0 and std == 1.0:
        normalization = "raw"
    elif mean == 0.0 and std == 255.0:
        normalization = "unit"
    else:
        normalization = "symmetric"

    return InputFormat(channel_order=channel_order, normalization=normalization)


def detect_embedding_dim(model: Any, default: int) -> int:
    """Read the embedding length from the model's ONNX output shape.

    Exports with a symbolic last axis (or models without a session) fall
    back to `default`.
    """
    try:
        dim = model.session.get_outputs()[0].shape[-1]
    except (AttributeError, IndexError, TypeError):
        return default

    if isinstance(dim, int) and dim > 0:
        if dim != default:
            logger.info(f"Model reports {dim}-D embeddings (EMBEDDING_DIM={default})")
        return dim
    return default


class ArcFaceEmbedder:
    """ArcFace embedder for extracting face features.

    Attributes:
        model: InsightFace ArcFaceONNX recognition model
        input_format: Planar layout the model expects
        embedding_dim: Dimension of output embeddings, from the model output shape

    Example:
        >>> embedder = ArcFaceEmbedder(config)
        >>> aligned = aligner.align(frame, detection.box, detection.landmarks)
        >>> raw = embedder.embed(embedder.input_format.to_planes(aligned))
        >>> assert raw.shape == (embedder.embedding_dim,)
    """

    def __init__(self, config: Config, model: Optional[Any] = None):
        """Initialize ArcFace embedder.

        Args:
            config: Configuration object with model settings
            model: Pre-loaded recognition model; if None it is loaded from
                   config.embedder_model_path or the InsightFace model pack

        Raises:
            RuntimeError: If model initialization fails.
        """
        self.ctx_id = config.ctx_id

        if model is None:
            model = self._load_model(config)
        self.model = model
        self.embedding_dim = detect_embedding_dim(model, config.embedding_dim)

        if config.normalization == "auto":
            self.input_format = detect_input_format(model, config.channel_order)
        else:
            self.input_format = InputFormat(
                channel_order=config.channel_order,
                normalization=config.normalization,
            )

        logger.info(
            f"ArcFace embedder ready (input={self.input_format.channel_order}/"
            f"{self.input_format.normalization}, "
            f"device={'GPU' if config.ctx_id >= 0 else 'CPU'})"
        )

    @staticmethod
    def _load_model(config: Config) -> Any:
        providers = onnx_providers(config.ctx_id)

        try:
            if config.embedder_model_path is not None:
                from insightface.model_zoo import get_model

                logger.info(f"Loading ArcFace model from {config.embedder_model_path}")
                model = get_model(str(config.embedder_model_path), providers=providers)
                if model is None:
                    raise RuntimeError(
                        f"Could not load recognition model from {config.embedder_model_path}"
                    )
                model.prepare(ctx_id=config.ctx_id)
                return model

            from insightface.app import FaceAnalysis

            logger.info(f"Loading ArcFace model from pack {config.model_pack}")
            # FaceAnalysis refuses to start without its detection module
            app = FaceAnalysis(
                name=config.model_pack,
                allowed_modules=["detection", "recognition"],
                providers=providers,
            )
            app.prepare(ctx_id=config.ctx_id, det_size=(640, 640))

            model = app.models.get("recognition")
            if model is None:
                raise RuntimeError("Recognition model not found in FaceAnalysis")
            return model

        except Exception as e:
            logger.error(f"Failed to initialize ArcFace embedder: {e}")
            raise RuntimeError(f"ArcFace embedder initialization failed: {e}") from e

    def embed(self, planes: np.ndarray) -> np.ndarray:
        """Extract a raw embedding from planar face data.

        Args:
            planes: float32 array [3, 112, 112] in self.input_format

        Returns:
            Raw (unnormalized) embedding vector, shape [embedding_dim], float32.

        Raises:
            ValueError: If input has invalid shape.
            RuntimeError: If embedding extraction fails.
        """
        if planes.ndim != 3 or planes.shape[0] != 3:
            raise ValueError(
                f"Expected planes of shape (3, H, W), got {planes.shape}. "
                f"Use InputFormat.to_planes() on the aligned face."
            )

        blob = np.ascontiguousarray(planes[None, ...], dtype=np.float32)

        try:
            outputs = self.model.session.run(
                self.model.output_names, {self.model.input_name: blob}
            )
        except Exception as e:
            logger.error(f"Error extracting embedding: {e}")
            raise RuntimeError(f"Embedding extraction failed: {e}") from e

        embedding = np.asarray(outputs[0], dtype=np.float32).flatten()

        if embedding.shape[0] != self.embedding_dim:
            raise RuntimeError(
                f"Unexpected embedding dimension {embedding.shape[0]}, "
                f"expected {self.embedding_dim}"
            )

        return embedding

    def __repr__(self) -> str:
        """String representation of embedder."""
        return (
            f"ArcFaceEmbedder(dim={self.embedding_dim}, "
            f"input={self.input_format.channel_order}/{self.input_format.normalization})"
        )
