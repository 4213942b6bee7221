"""Unit tests for backend selection."""

from __future__ import annotations

import pytest

from faceid.backends.factory import (
    create_backend,
    create_liveness,
    onnx_providers,
    select_detector_backend,
)


def test_auto_without_model_uses_scrfd(config):
    """No RetinaFace file: fall back to SCRFD."""
    assert select_detector_backend(config) == "scrfd"


def test_auto_with_model_uses_retinaface(config):
    """RetinaFace is preferred when its model file exists."""
    config.detector_model_path.write_bytes(b"onnx")

    assert select_detector_backend(config) == "retinaface"


def test_forced_retinaface_requires_model(config):
    """Forcing RetinaFace without the file fails early."""
    config.detector_backend = "retinaface"

    with pytest.raises(FileNotFoundError):
        select_detector_backend(config)


def test_forced_scrfd(config):
    """Forced backends are returned as-is."""
    config.detector_model_path.write_bytes(b"onnx")
    config.detector_backend = "scrfd"

    assert select_detector_backend(config) == "scrfd"


def test_unknown_backend(config):
    """Unknown detector names are rejected before any model loads."""
    with pytest.raises(ValueError):
        create_backend(config, detector_backend="mtcnn")


def test_onnx_providers():
    """GPU contexts try CUDA first."""
    assert onnx_providers(-1) == ["CPUExecutionProvider"]
    assert onnx_providers(0)[0] == "CUDAExecutionProvider"


def test_create_liveness_from_config(config):
    """Window is configured in milliseconds."""
    config.liveness_window_ms = 2000
    config.blink_threshold = 0.2

    tracker = create_liveness(config)

    assert tracker.valid_window == pytest.approx(2.0)
    assert tracker.blink_threshold == pytest.approx(0.2)


def test_liveness_can_be_disabled(config):
    """LIVENESS_ENABLED=0 yields no tracker."""
    config.liveness_enabled = False

    assert create_liveness(config) is None
