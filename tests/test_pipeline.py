"""Unit tests for the capture pipeline."""

from __future__ import annotations

import numpy as np
import pytest

from conftest import good_detection, make_pipeline, unit
from faceid.errors import LowQuality, NoFaceDetected
from faceid.interfaces import Detection, FaceBox
from faceid.services.pipeline import encode_thumbnail


def test_capture_returns_normalized_embedding(frame):
    """The raw embedding is normalized and the crop aligned."""
    with make_pipeline(embeddings=[unit(0) * 7 + unit(1) * 7]) as pipeline:
        capture = pipeline.capture(frame)

    assert capture.aligned.shape == (112, 112, 3)
    np.testing.assert_allclose(capture.embedding[:2], [np.sqrt(0.5)] * 2, atol=1e-6)
    assert capture.detection.score == pytest.approx(0.95)


def test_capture_picks_most_confident_face(frame):
    """The best detection is embedded, whatever the list order."""
    weak = Detection(score=0.6, box=FaceBox(10, 10, 80, 80))
    strong = good_detection(score=0.9)

    with make_pipeline(detections=[weak, strong]) as pipeline:
        capture = pipeline.capture(frame)

    assert capture.detection is strong


def test_embedder_receives_planes(frame):
    """The embedder is fed [3, 112, 112] float planes."""
    with make_pipeline() as pipeline:
        pipeline.capture(frame)
        planes = pipeline.embedder.embed.call_args[0][0]

    assert planes.shape == (3, 112, 112)
    assert planes.dtype == np.float32


def test_no_face_raises(frame):
    """An empty detection list is NoFaceDetected."""
    with make_pipeline(detections=[]) as pipeline:
        with pytest.raises(NoFaceDetected):
            pipeline.capture(frame)


def test_quality_gate_only_when_requested():
    """Badly framed faces pass unless check_quality is set."""
    frame = np.full((960, 1280, 3), 120, dtype=np.uint8)
    # Wide enough, but hugging the top edge
    corner = Detection(score=0.95, box=FaceBox(540, 0, 200, 60))

    with make_pipeline(detections=[corner]) as pipeline:
        assert pipeline.capture(frame) is not None
        with pytest.raises(LowQuality) as excinfo:
            pipeline.capture(frame, check_quality=True)

    assert "center" in excinfo.value.hint


def test_thumbnail_is_jpeg(frame):
    """Thumbnails are JPEG bytes of the aligned crop."""
    with make_pipeline() as pipeline:
        thumbnail = pipeline.capture(frame).thumbnail()

    assert thumbnail[:2] == b"\xff\xd8"
    assert encode_thumbnail(np.zeros((8, 8, 3), dtype=np.uint8))[:2] == b"\xff\xd8"


def test_closed_pipeline_rejects_frames(frame):
    """No model calls after close()."""
    pipeline = make_pipeline()
    pipeline.close()

    with pytest.raises(RuntimeError):
        pipeline.capture(frame)
