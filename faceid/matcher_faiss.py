"""FAISS-based matcher for face identification.

Scores a probe embedding against a snapshot of the gallery by cosine
similarity and decides acceptance with a threshold plus a runner-up margin.
The matcher holds no gallery state: the caller passes a fresh snapshot on
every call and the snapshot is never modified.
"""

from __future__ import annotations

from typing import List, Sequence, Tuple

import faiss
import numpy as np

from faceid.interfaces import GalleryEntry, MatchResult
from faceid.logging_config import get_logger
from faceid.utils import l2_normalize

logger = get_logger(__name__)

# float32 inner products of unit vectors land up to a few ULPs below 1.0
SCORE_TOLERANCE = 1e-6


def normalize(raw: np.ndarray) -> np.ndarray:
    """L2-normalize a raw embedding.

    A zero vector is returned unchanged (its norm is treated as 1).
    Normalizing an already-normalized embedding is a no-op.

    Args:
        raw: Raw model output, any shape that flattens to [D]

    Returns:
        Read-only float32 embedding, shape [D].
    """
    embedding = l2_normalize(np.asarray(raw, dtype=np.float32).reshape(-1))
    embedding.setflags(write=False)
    return embedding


def average_embeddings(embeddings: Sequence[np.ndarray]) -> np.ndarray:
    """Average several embeddings of one person into a single template.

    Args:
        embeddings: Embeddings, each shape [D]

    Returns:
        Normalized mean embedding, shape [D].

    Raises:
        ValueError: If no embeddings are given or dimensions differ.
    """
    if len(embeddings) == 0:
        raise ValueError("Cannot average an empty set of embeddings")

    stacked = np.stack([np.asarray(e, dtype=np.float32).reshape(-1) for e in embeddings])
    return normalize(stacked.mean(axis=0))


class EmbeddingMatcher:
    """Cosine-similarity matcher over gallery snapshots.

    For every call a FAISS IndexFlatIP (inner product) is built from the
    snapshot; since all embeddings are L2-normalized, inner product equals
    cosine similarity.

    Attributes:
        threshold: Default minimum best score for acceptance
        min_margin: Default minimum gap between best and runner-up

    Example:
        >>> matcher = EmbeddingMatcher(threshold=0.5, min_margin=0.08)
        >>> result = matcher.match(normalize(raw), store.list())
        >>> if result.accepted:
        ...     print(f"Hello {result.identity} ({result.score:.2f})")
    """

    def __init__(self, threshold: float = 0.5, min_margin: float = 0.08):
        """Initialize matcher.

        Args:
            threshold: Cosine similarity threshold (0.0 to 1.0)
            min_margin: Required best - runner-up gap (>= 0)

        Raises:
            ValueError: If parameters are out of range.
        """
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"Threshold must be in [0, 1], got {threshold}")
        if min_margin < 0.0:
            raise ValueError(f"min_margin must be >= 0, got {min_margin}")

        self.threshold = threshold
        self.min_margin = min_margin

    @staticmethod
    def _search(
        probe: np.ndarray,
        gallery: Sequence[GalleryEntry],
        topk: int,
    ) -> Tuple[List[str], List[float]]:
        probe = np.asarray(probe, dtype=np.float32).reshape(1, -1)
        dimension = probe.shape[1]

        vectors = []
        for entry in gallery:
            vector = np.asarray(entry.embedding, dtype=np.float32).reshape(-1)
            if vector.shape[0] != dimension:
                raise ValueError(
                    f"Gallery entry '{entry.identity}' has dimension "
                    f"{vector.shape[0]}, probe has {dimension}"
                )
            vectors.append(vector)

        index = faiss.IndexFlatIP(dimension)
        index.add(np.ascontiguousarray(np.stack(vectors)))

        topk = min(topk, index.ntotal)
        distances, indices = index.search(np.ascontiguousarray(probe), topk)

        labels = [gallery[int(i)].identity for i in indices[0]]
        scores = [float(np.clip(d, -1.0, 1.0)) for d in distances[0]]
        return labels, scores

    def score(
        self,
        probe: np.ndarray,
        gallery: Sequence[GalleryEntry],
        topk: int | None = None,
    ) -> List[Tuple[str, float]]:
        """Score a probe against every gallery entry.

        Args:
            probe: L2-normalized embedding, shape [D]
            gallery: Gallery snapshot
            topk: Return only the best topk pairs (default: all)

        Returns:
            (identity, score) pairs, best first. Empty for an empty gallery.
        """
        if len(gallery) == 0:
            return []

        labels, scores = self._search(probe, gallery, topk or len(gallery))
        return list(zip(labels, scores))

    def match(
        self,
        probe: np.ndarray,
        gallery: Sequence[GalleryEntry],
        threshold: float | None = None,
        min_margin: float | None = None,
    ) -> MatchResult:
        """Identify a probe against a gallery snapshot.

        The best entry is accepted iff its score reaches the threshold and
        beats the runner-up by at least min_margin, both up to
        SCORE_TOLERANCE. A gallery with a single entry has no runner-up, so
        only the threshold applies.

        Args:
            probe: L2-normalized embedding, shape [D]
            gallery: Gallery snapshot (not modified)
            threshold: Overrides the matcher default
            min_margin: Overrides the matcher default

        Returns:
            MatchResult; accepted=False for an empty gallery.

        Raises:
            ValueError: If a gallery entry's dimension differs from the probe.
        """
        threshold = self.threshold if threshold is None else threshold
        min_margin = self.min_margin if min_margin is None else min_margin

        if len(gallery) == 0:
            logger.debug("Empty gallery: no match")
            return MatchResult(best=None, runner_up=None, accepted=False)

        labels, scores = self._search(probe, gallery, topk=2)

        best = (labels[0], scores[0])
        runner_up = scores[1] if len(scores) > 1 else None

        passes_threshold = best[1] >= threshold - SCORE_TOLERANCE
        passes_margin = (
            runner_up is None or best[1] - runner_up >= min_margin - SCORE_TOLERANCE
        )
        accepted = passes_threshold and passes_margin

        if accepted:
            logger.debug(f"Match: {best[0]} (score={best[1]:.3f}, runner_up={runner_up})")
        elif passes_threshold:
            logger.debug(
                f"Ambiguous match rejected: {best[0]} score={best[1]:.3f}, "
                f"runner_up={runner_up:.3f}, margin<{min_margin}"
            )
        else:
            logger.debug(
                f"No match: best {best[0]} score={best[1]:.3f} < threshold={threshold:.3f}"
            )

        return MatchResult(best=best, runner_up=runner_up, accepted=accepted)

    def __repr__(self) -> str:
        """String representation of matcher."""
        return (
            f"EmbeddingMatcher(threshold={self.threshold:.2f}, "
            f"min_margin={self.min_margin:.2f})"
        )
