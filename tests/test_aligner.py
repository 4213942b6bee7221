"""Unit tests for face alignment."""

from __future__ import annotations

import numpy as np
import pytest

from faceid.aligner_fivept import (
    ARCFACE_DST,
    FaceAligner,
    InputFormat,
    estimate_eye_transform,
    estimate_similarity_transform,
)
from faceid.errors import AlignmentDegenerate
from faceid.interfaces import FaceBox


def apply(matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Apply a 2x3 affine matrix to [K, 2] points."""
    points = np.asarray(points, dtype=np.float64)
    return points @ matrix[:, :2].T + matrix[:, 2]


@pytest.fixture
def aligner():
    """Create a FaceAligner with default settings."""
    return FaceAligner()


def test_identity_transform():
    """Template onto itself is the identity."""
    matrix = estimate_similarity_transform(ARCFACE_DST, ARCFACE_DST)

    np.testing.assert_allclose(matrix, [[1, 0, 0], [0, 1, 0]], atol=1e-4)


def test_scaled_and_shifted_source():
    """Half-size shifted template maps back with scale 2."""
    src = ARCFACE_DST * 0.5 + 10

    matrix = estimate_similarity_transform(src, ARCFACE_DST)

    np.testing.assert_allclose(matrix, [[2, 0, -20], [0, 2, -20]], atol=1e-3)


def test_rotated_source_maps_onto_template():
    """Exact similarity is recovered for rotated and scaled landmarks."""
    angle = np.deg2rad(30)
    rot = 1.5 * np.array([[np.cos(angle), -np.sin(angle)], [np.sin(angle), np.cos(angle)]])
    src = ARCFACE_DST.astype(np.float64) @ rot.T + np.array([200.0, 120.0])

    matrix = estimate_similarity_transform(src, ARCFACE_DST)

    np.testing.assert_allclose(apply(matrix, src), ARCFACE_DST, atol=1e-2)


def test_degenerate_landmarks_raise():
    """Coincident landmarks cannot define a transform."""
    src = np.full((5, 2), 50.0)

    with pytest.raises(AlignmentDegenerate):
        estimate_similarity_transform(src, ARCFACE_DST)


def test_mismatched_point_sets_raise():
    """Source and destination must correspond."""
    with pytest.raises(AlignmentDegenerate):
        estimate_similarity_transform(ARCFACE_DST[:3], ARCFACE_DST)


def test_eye_transform_levels_and_scales():
    """Eyes land on the template's first eye and level with it."""
    matrix = estimate_eye_transform(np.array([100.0, 100.0]), np.array([150.0, 100.0]))

    mapped = apply(matrix, [[100.0, 100.0], [150.0, 100.0]])

    np.testing.assert_allclose(mapped[0], [38.2946, 51.6963], atol=1e-3)
    np.testing.assert_allclose(mapped[1], [73.5318, 51.6963], atol=1e-3)


def test_eye_transform_rotated_eyes():
    """Vertical eye pair is rotated level."""
    matrix = estimate_eye_transform(np.array([0.0, 0.0]), np.array([0.0, 10.0]))

    mapped = apply(matrix, [[0.0, 10.0]])

    np.testing.assert_allclose(mapped[0], [73.5318, 51.6963], atol=1e-3)


def test_eye_transform_coincident_eyes_raise():
    """Coincident eyes are degenerate."""
    with pytest.raises(AlignmentDegenerate):
        estimate_eye_transform(np.array([5.0, 5.0]), np.array([5.0, 5.0]))


def test_align_with_landmarks_shape(aligner):
    """Aligned output is a 112x112 BGR crop."""
    image = np.full((240, 320, 3), 128, dtype=np.uint8)
    landmarks = ARCFACE_DST + 80

    aligned = aligner.align(image, FaceBox(100, 100, 112, 112), landmarks)

    assert aligned.shape == (112, 112, 3)
    assert aligned.dtype == np.uint8
    assert aligned.mean() == pytest.approx(128, abs=1)


def test_align_without_landmarks_crops_box(aligner):
    """No landmarks: box crop resized to the output size."""
    image = np.zeros((200, 200, 3), dtype=np.uint8)
    image[50:150, 50:150] = 200

    aligned = aligner.align(image, FaceBox(50, 50, 100, 100))

    assert aligned.shape == (112, 112, 3)
    assert aligned.mean() == pytest.approx(200, abs=1)


def test_align_box_outside_image(aligner):
    """Boxes leaving the image are clamped before cropping."""
    image = np.full((100, 100, 3), 90, dtype=np.uint8)

    aligned = aligner.align(image, FaceBox(80, -20, 60, 60))

    assert aligned.shape == (112, 112, 3)


def test_align_eyes_only(aligner):
    """Two landmarks are enough for an eye-based alignment."""
    image = np.full((200, 200, 3), 150, dtype=np.uint8)
    eyes = np.array([[80.0, 90.0], [120.0, 90.0]], dtype=np.float32)

    aligned = aligner.align(image, FaceBox(60, 60, 80, 80), eyes)

    assert aligned.shape == (112, 112, 3)


def test_dark_alignment_falls_back_to_box(aligner):
    """A warp onto black pixels is redone as a box crop."""
    image = np.zeros((400, 400, 3), dtype=np.uint8)
    image[300:380, 300:380] = 160
    # Landmarks over the black corner, far from the box
    landmarks = ARCFACE_DST * 0.3 + 5

    aligned = aligner.align(image, FaceBox(300, 300, 80, 80), landmarks)

    assert aligned.mean() == pytest.approx(160, abs=1)


def test_non_finite_landmarks_ignored(aligner):
    """NaN landmarks fall back to the box crop."""
    image = np.full((200, 200, 3), 70, dtype=np.uint8)
    landmarks = np.full((5, 2), np.nan, dtype=np.float32)

    aligned = aligner.align(image, FaceBox(20, 20, 100, 100), landmarks)

    assert aligned.mean() == pytest.approx(70, abs=1)


def test_grayscale_input(aligner):
    """Grayscale frames are expanded to three channels."""
    image = np.full((120, 120), 100, dtype=np.uint8)

    aligned = aligner.align(image, FaceBox(10, 10, 100, 100))

    assert aligned.shape == (112, 112, 3)


def test_to_planes_rgb_raw():
    """RGB planes are reordered from BGR and keep 0..255 values."""
    face = np.zeros((112, 112, 3), dtype=np.uint8)
    face[:, :] = (10, 20, 30)

    planes = InputFormat("rgb", "raw").to_planes(face)

    assert planes.shape == (3, 112, 112)
    assert planes.dtype == np.float32
    assert planes.flags["C_CONTIGUOUS"]
    assert planes[0, 0, 0] == 30
    assert planes[2, 0, 0] == 10


def test_to_planes_normalizations():
    """Unit and symmetric scaling."""
    face = np.zeros((4, 4, 3), dtype=np.uint8)
    face[:, :] = (0, 51, 255)

    unit = InputFormat("bgr", "unit").to_planes(face)
    symmetric = InputFormat("bgr", "symmetric").to_planes(face)

    assert unit[1, 0, 0] == pytest.approx(0.2)
    assert unit[2, 0, 0] == pytest.approx(1.0)
    assert symmetric[0, 0, 0] == pytest.approx(-1.0)
    assert symmetric[2, 0, 0] == pytest.approx(1.0)


def test_invalid_input_format():
    """Unknown layouts are rejected."""
    with pytest.raises(ValueError):
        InputFormat("gbr", "raw")
    with pytest.raises(ValueError):
        InputFormat("rgb", "zscore")


def test_to_planes_rejects_grayscale():
    """Planar conversion needs three channels."""
    with pytest.raises(ValueError):
        InputFormat().to_planes(np.zeros((112, 112), dtype=np.uint8))
