"""Unit tests for configuration loading."""

from __future__ import annotations

import pytest

from faceid.config import Config


def test_defaults(config):
    """Unset variables fall back to the documented defaults."""
    assert config.thresh == pytest.approx(0.5)
    assert config.min_margin == pytest.approx(0.08)
    assert config.conf_threshold == pytest.approx(0.3)
    assert config.nms_threshold == pytest.approx(0.4)
    assert config.permissive_fallback is True
    assert config.blink_threshold == pytest.approx(0.22)
    assert config.liveness_window_ms == 3000
    assert config.normalization == "auto"
    assert config.channel_order == "rgb"
    assert config.detector_backend == "auto"
    assert config.detector_input_size == (64, 64)
    assert config.embedding_dim == 512


def test_overrides(config, monkeypatch):
    """Environment variables override the defaults."""
    monkeypatch.setenv("THRESH", "0.62")
    monkeypatch.setenv("PERMISSIVE_FALLBACK", "0")
    monkeypatch.setenv("NORMALIZATION", "Symmetric")
    monkeypatch.setenv("CHECKIN_COOLDOWN_MS", "5000")
    monkeypatch.setenv("EMBEDDING_DIM", "128")

    config = Config.from_env()

    assert config.thresh == pytest.approx(0.62)
    assert config.permissive_fallback is False
    assert config.normalization == "symmetric"
    assert config.checkin_cooldown_ms == 5000
    assert config.embedding_dim == 128


@pytest.mark.parametrize(
    "name, value",
    [
        ("THRESH", "1.5"),
        ("CONF_THRESHOLD", "-0.1"),
        ("LOG_LEVEL", "LOUD"),
        ("DETECTOR_BACKEND", "mtcnn"),
        ("CHANNEL_ORDER", "gbr"),
        ("NORMALIZATION", "zscore"),
        ("DETECTOR_INPUT_WIDTH", "0"),
        ("BLINK_THRESHOLD", "0"),
        ("LIVENESS_WINDOW_MS", "0"),
        ("MAX_ENROLL_SAMPLES", "1"),
        ("CALIBRATION_SAMPLES", "2"),
        ("CHECKIN_COOLDOWN_MS", "-1"),
        ("EMBEDDING_DIM", "0"),
    ],
)
def test_invalid_values(config, monkeypatch, name, value):
    """Out-of-range settings fail at load time."""
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        Config.from_env()
