"""Unit tests for the FAISS embedding matcher."""

from __future__ import annotations

import time

import numpy as np
import pytest

from conftest import DIM, entry, unit
from faceid.interfaces import GalleryEntry
from faceid.matcher_faiss import EmbeddingMatcher, average_embeddings, normalize


@pytest.fixture
def matcher():
    """Create an EmbeddingMatcher with default parameters."""
    return EmbeddingMatcher(threshold=0.5, min_margin=0.08)


@pytest.fixture
def gallery():
    """Three well-separated identities."""
    return [entry("Alice", unit(0)), entry("Bob", unit(1)), entry("Carol", unit(2))]


def test_normalize_unit_length():
    """Raw embeddings become unit length and read-only."""
    embedding = normalize(np.array([3.0, 4.0]))

    np.testing.assert_allclose(embedding, [0.6, 0.8], atol=1e-6)
    assert embedding.dtype == np.float32
    assert not embedding.flags.writeable


def test_normalize_idempotent():
    """Normalizing twice changes nothing."""
    once = normalize(np.random.RandomState(0).randn(DIM))
    twice = normalize(once)

    np.testing.assert_allclose(once, twice, atol=1e-6)


def test_normalize_zero_vector():
    """Zero vector stays zero."""
    np.testing.assert_array_equal(normalize(np.zeros(4)), np.zeros(4))


def test_average_embeddings():
    """Mean of two orthogonal unit vectors points between them."""
    averaged = average_embeddings([unit(0), unit(1)])

    np.testing.assert_allclose(averaged[:2], [np.sqrt(0.5)] * 2, atol=1e-6)
    assert np.linalg.norm(averaged) == pytest.approx(1.0, abs=1e-6)


def test_average_embeddings_empty():
    """Empty input is an error."""
    with pytest.raises(ValueError):
        average_embeddings([])


def test_match_identifies_person(matcher, gallery):
    """Probe close to Bob is identified as Bob."""
    probe = normalize(unit(1) + 0.1 * unit(3))

    result = matcher.match(probe, gallery)

    assert result.accepted
    assert result.identity == "Bob"
    assert result.score == pytest.approx(0.995, abs=1e-3)
    assert result.runner_up == pytest.approx(0.0, abs=1e-6)


def test_match_empty_gallery(matcher):
    """Empty gallery yields an empty rejected result."""
    result = matcher.match(unit(0), [])

    assert not result.accepted
    assert result.best is None
    assert result.runner_up is None
    assert result.identity is None
    assert result.score == 0.0


def test_match_below_threshold(matcher, gallery):
    """Unknown faces are rejected but still report the best score."""
    probe = normalize(unit(0) + unit(3) + unit(4) + unit(5) + unit(6))

    result = matcher.match(probe, gallery)

    assert not result.accepted
    assert result.best[0] == "Alice"
    assert result.score == pytest.approx(1 / np.sqrt(5), abs=1e-4)
    assert result.identity is None


def test_threshold_is_inclusive(matcher):
    """A score exactly at the threshold is accepted."""
    vec = np.zeros(DIM, dtype=np.float32)
    vec[0] = 0.5
    vec[1] = np.sqrt(0.75)
    gallery = [GalleryEntry(identity="Edge", embedding=vec, enrolled_at=time.time())]

    result = matcher.match(unit(0), gallery, threshold=float(np.float32(0.5)))

    assert result.accepted


def test_single_entry_has_no_runner_up(matcher):
    """With one entry only the threshold applies."""
    result = matcher.match(unit(0), [entry("Solo", unit(0) + 0.2 * unit(1))])

    assert result.accepted
    assert result.runner_up is None


def test_margin_rejects_ambiguous_match(matcher):
    """Two similar candidates within the margin are rejected."""
    alice = 0.9 * unit(0) + np.sqrt(0.19) * unit(1)
    bob = 0.85 * unit(0) + np.sqrt(0.2775) * unit(2)
    gallery = [entry("Alice", alice), entry("Bob", bob)]

    result = matcher.match(unit(0), gallery)

    assert result.best[0] == "Alice"
    assert result.score == pytest.approx(0.9, abs=1e-4)
    assert result.runner_up == pytest.approx(0.85, abs=1e-4)
    assert not result.accepted
    assert result.identity is None

    relaxed = matcher.match(unit(0), gallery, min_margin=0.04)
    assert relaxed.accepted
    assert relaxed.identity == "Alice"


def test_gallery_not_modified(matcher, gallery):
    """Matching leaves the snapshot untouched."""
    before = [e.embedding.copy() for e in gallery]

    matcher.match(unit(2), gallery)

    for original, current in zip(before, gallery):
        np.testing.assert_array_equal(original, current.embedding)
    assert [e.identity for e in gallery] == ["Alice", "Bob", "Carol"]


def test_dimension_mismatch_raises(matcher, gallery):
    """Probe and gallery dimensions must agree."""
    with pytest.raises(ValueError):
        matcher.match(np.ones(DIM + 1, dtype=np.float32), gallery)


def test_score_returns_ranked_pairs(matcher, gallery):
    """All entries scored, best first."""
    probe = normalize(2 * unit(2) + unit(0))

    scores = matcher.score(probe, gallery)

    assert [identity for identity, _ in scores] == ["Carol", "Alice", "Bob"]
    assert scores[0][1] == pytest.approx(2 / np.sqrt(5), abs=1e-4)
    assert matcher.score(probe, gallery, topk=1) == scores[:1]
    assert matcher.score(probe, []) == []


def test_invalid_parameters():
    """Out-of-range threshold or margin are rejected."""
    with pytest.raises(ValueError):
        EmbeddingMatcher(threshold=1.5)
    with pytest.raises(ValueError):
        EmbeddingMatcher(min_margin=-0.1)


def test_margin_clears_with_distant_runner_up(matcher):
    """best=0.9, second=0.7: accepted at any threshold up to 0.9."""
    alice = 0.9 * unit(0) + np.sqrt(0.19) * unit(1)
    bob = 0.7 * unit(0) + np.sqrt(0.51) * unit(2)
    gallery = [entry("Alice", alice), entry("Bob", bob)]

    for threshold in (0.5, 0.8, 0.9):
        result = matcher.match(unit(0), gallery, threshold=threshold)

        assert result.accepted
        assert result.identity == "Alice"
        assert result.runner_up == pytest.approx(0.7, abs=1e-4)


def test_identical_probe_accepted_at_threshold_one():
    """A probe equal to its gallery embedding is accepted even at threshold 1.0."""
    rng = np.random.RandomState(42)
    gallery = [
        GalleryEntry(identity=f"person{i}", embedding=normalize(rng.randn(512)), enrolled_at=0.0)
        for i in range(50)
    ]
    matcher = EmbeddingMatcher(threshold=1.0, min_margin=0.08)

    for person in gallery:
        result = matcher.match(person.embedding, gallery)

        assert result.accepted
        assert result.identity == person.identity
        assert result.score - result.runner_up > 0.08
