"""Unit tests for the RetinaFace onnxruntime detector."""

from __future__ import annotations

from types import SimpleNamespace

import numpy as np
import pytest

from faceid.backends.retinaface.detector import BGR_MEAN, RetinaFaceDetector, pick_outputs

# 64x64 input: 8*8*2 + 4*4*2 + 2*2*2 anchors
NUM_ANCHORS = 168
# Stride 8, cell (row 3, col 3), 32 px anchor: center 28/64, size 0.5
FACE_ANCHOR = 55


def raw_outputs(face_anchor=FACE_ANCHOR, face_score=0.9):
    """(loc, conf, landms) with a single confident anchor."""
    loc = np.zeros((1, NUM_ANCHORS, 4), dtype=np.float32)
    conf = np.zeros((1, NUM_ANCHORS, 2), dtype=np.float32)
    conf[0, :, 0] = 1.0
    conf[0, face_anchor] = [1.0 - face_score, face_score]
    landms = np.zeros((1, NUM_ANCHORS, 10), dtype=np.float32)
    return [loc, conf, landms]


class FakeSession:
    """Minimal stand-in for onnxruntime.InferenceSession."""

    def __init__(self, outputs=None, shape=(1, 64, 64, 3), error=None):
        self.outputs = outputs if outputs is not None else raw_outputs()
        self.shape = list(shape)
        self.error = error
        self.feeds = []

    def get_inputs(self):
        return [SimpleNamespace(name="input", shape=self.shape)]

    def run(self, output_names, feeds):
        self.feeds.append(feeds)
        if self.error is not None:
            raise self.error
        return self.outputs


def test_detect_scales_to_source(config):
    """The confident anchor comes back in source pixels."""
    session = FakeSession()
    detector = RetinaFaceDetector(config, session=session)

    detections = detector.detect(np.zeros((100, 200, 3), dtype=np.uint8))

    assert len(detections) == 1
    det = detections[0]
    assert det.score == pytest.approx(0.9)
    assert det.box.x_min == pytest.approx(37.5)
    assert det.box.y_min == pytest.approx(18.75)
    assert det.box.width == pytest.approx(100)
    assert det.box.height == pytest.approx(50)
    # Zero landmark offsets sit on the anchor center
    np.testing.assert_allclose(det.landmarks[0], [87.5, 43.75], atol=1e-3)

    feed = session.feeds[0]["input"]
    assert feed.shape == (1, 64, 64, 3)
    assert feed.dtype == np.float32


def test_outputs_matched_by_size(config):
    """Output order does not matter."""
    loc, conf, landms = raw_outputs()
    detector = RetinaFaceDetector(config, session=FakeSession(outputs=[landms, conf, loc]))

    detections = detector.detect(np.zeros((100, 200, 3), dtype=np.uint8))

    assert len(detections) == 1
    assert detections[0].box.width == pytest.approx(100)


def test_pick_outputs_falls_back_to_order():
    """Unrecognized sizes are taken in output order."""
    outputs = [np.zeros(5), np.zeros(6), np.zeros(7)]

    loc, conf, landms = pick_outputs(outputs, num_anchors=100)

    assert loc.size == 5 and conf.size == 6 and landms.size == 7


def test_pick_outputs_requires_three():
    """Fewer than three outputs is an error."""
    with pytest.raises(RuntimeError):
        pick_outputs([np.zeros(4), np.zeros(2)], num_anchors=1)


def test_channels_first_layout(config):
    """NCHW models get a transposed tensor."""
    session = FakeSession(shape=(1, 3, 64, 64))
    detector = RetinaFaceDetector(config, session=session)

    assert detector.channels_first
    detector.detect(np.zeros((100, 200, 3), dtype=np.uint8))

    assert session.feeds[0]["input"].shape == (1, 3, 64, 64)


def test_symbolic_dims_are_channels_last(config):
    """Dynamic NHWC shapes are recognized."""
    detector = RetinaFaceDetector(config, session=FakeSession(shape=("batch", "h", "w", 3)))

    assert not detector.channels_first


def test_preprocess_subtracts_mean(config):
    """A frame at the mean color becomes all zeros."""
    detector = RetinaFaceDetector(config, session=FakeSession())
    frame = np.empty((30, 40, 3), dtype=np.uint8)
    frame[:, :] = BGR_MEAN.astype(np.uint8)

    tensor = detector.preprocess(frame)

    assert tensor.shape == (1, 64, 64, 3)
    np.testing.assert_allclose(tensor, 0.0)


def test_no_face(config):
    """Low scores everywhere yield no detections."""
    outputs = raw_outputs(face_score=0.05)
    detector = RetinaFaceDetector(config, session=FakeSession(outputs=outputs))

    assert detector.detect(np.zeros((100, 200, 3), dtype=np.uint8)) == []


def test_empty_frame(config):
    """Empty frames are not sent to the model."""
    session = FakeSession()
    detector = RetinaFaceDetector(config, session=session)

    assert detector.detect(np.zeros((0, 0, 3), dtype=np.uint8)) == []
    assert session.feeds == []


def test_inference_error(config):
    """Session failures surface as RuntimeError."""
    detector = RetinaFaceDetector(config, session=FakeSession(error=ValueError("boom")))

    with pytest.raises(RuntimeError, match="boom"):
        detector.detect(np.zeros((100, 200, 3), dtype=np.uint8))


def test_anchor_mismatch(config):
    """Outputs for another input size are rejected."""
    outputs = [np.zeros((1, 10, 4)), np.zeros((1, 10, 2)), np.zeros((1, 10, 10))]
    detector = RetinaFaceDetector(config, session=FakeSession(outputs=outputs))

    with pytest.raises(ValueError):
        detector.detect(np.zeros((100, 200, 3), dtype=np.uint8))


def test_missing_model(config):
    """Without a session the model file must exist."""
    with pytest.raises(RuntimeError):
        RetinaFaceDetector(config)
