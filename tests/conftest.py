"""Shared fixtures for the test suite."""

from __future__ import annotations

import time
from unittest.mock import Mock

import numpy as np
import pytest

from faceid.aligner_fivept import FaceAligner, InputFormat
from faceid.config import Config
from faceid.gallery_store import FaissGalleryStore
from faceid.interfaces import Detection, FaceBox, GalleryEntry
from faceid.services.pipeline import FacePipeline

DIM = 8

# Settings reset to their defaults for every test
UNSET_ENV = (
    "LOG_LEVEL",
    "LOG_FILE",
    "DETECTOR_BACKEND",
    "EMBEDDER_MODEL_PATH",
    "CONF_THRESHOLD",
    "NMS_THRESHOLD",
    "PERMISSIVE_FALLBACK",
    "THRESH",
    "MIN_MARGIN",
    "BLINK_THRESHOLD",
    "LIVENESS_WINDOW_MS",
    "LIVENESS_ENABLED",
    "CHANNEL_ORDER",
    "NORMALIZATION",
    "MIN_ENROLL_SAMPLES",
    "MAX_ENROLL_SAMPLES",
    "CALIBRATION_SAMPLES",
    "CHECKIN_COOLDOWN_MS",
    "EMBEDDING_DIM",
)


def unit(index: int, dim: int = DIM) -> np.ndarray:
    """Basis vector e_index."""
    vec = np.zeros(dim, dtype=np.float32)
    vec[index] = 1.0
    return vec


def entry(identity: str, embedding: np.ndarray) -> GalleryEntry:
    """Gallery entry with a normalized float32 embedding."""
    vec = np.asarray(embedding, dtype=np.float32)
    vec = vec / np.linalg.norm(vec)
    return GalleryEntry(identity=identity, embedding=vec, enrolled_at=time.time())


@pytest.fixture
def config(monkeypatch, tmp_path):
    """Config with a small detector input and a temporary gallery."""
    monkeypatch.setenv("DETECTOR_INPUT_WIDTH", "64")
    monkeypatch.setenv("DETECTOR_INPUT_HEIGHT", "64")
    monkeypatch.setenv("DETECTOR_MODEL_PATH", str(tmp_path / "missing.onnx"))
    monkeypatch.setenv("GALLERY_DIR", str(tmp_path / "gallery"))
    for name in UNSET_ENV:
        monkeypatch.delenv(name, raising=False)
    return Config.from_env()


def good_detection(score: float = 0.95) -> Detection:
    """Centered, well-sized face on a 640x480 frame."""
    return Detection(score=score, box=FaceBox(220, 140, 200, 200))


def make_pipeline(detections=None, embeddings=None, per_frame=None) -> FacePipeline:
    """FacePipeline around mock models.

    Args:
        detections: Detections returned by every detect() call
        embeddings: Raw embeddings returned by successive embed() calls
        per_frame: Detection lists returned by successive detect() calls
    """
    detector = Mock()
    if per_frame is not None:
        detector.detect.side_effect = list(per_frame)
    else:
        detector.detect.return_value = [good_detection()] if detections is None else detections

    embedder = Mock()
    embedder.input_format = InputFormat()
    if embeddings is None:
        embedder.embed.return_value = unit(0)
    else:
        embedder.embed.side_effect = list(embeddings)

    return FacePipeline(detector, FaceAligner(), embedder)


@pytest.fixture
def frame():
    """Plain gray 640x480 BGR frame."""
    return np.full((480, 640, 3), 120, dtype=np.uint8)


@pytest.fixture
def store(tmp_path):
    """Empty gallery store with small embeddings."""
    return FaissGalleryStore(tmp_path / "gallery", dimension=DIM)
