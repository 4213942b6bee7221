"""Similarity threshold calibration.

Given a few fresh captures of an enrolled person, compares them with that
person's gallery entry (self scores) and with everyone else's (other scores)
and recommends an acceptance threshold between the two populations. Scores
come from EmbeddingMatcher.score, the same numbers live matching compares
against the threshold.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from faceid.errors import InsufficientSamples
from faceid.interfaces import GalleryEntry
from faceid.logging_config import get_logger
from faceid.matcher_faiss import EmbeddingMatcher
from faceid.utils import l2_normalize

logger = get_logger(__name__)

MIN_SAMPLES = 3
WIDE_GAP = 0.3
WIDE_GAP_OFFSET = 0.15
NO_OTHERS_OFFSET = 0.2
THRESHOLD_FLOOR = 0.35
THRESHOLD_CEIL = 0.95


@dataclass(frozen=True)
class CalibrationReport:
    """Scores behind a threshold recommendation.

    Attributes:
        min_self_score: Lowest similarity of a sample to the person's own entry
        max_other_score: Highest similarity of a sample to any other entry
            (min_self_score - 0.2 when the gallery has no one else)
        gap: min_self_score - max_other_score
        threshold: Recommended threshold, within [0.35, 0.95]
        num_samples: Valid samples used
    """

    min_self_score: float
    max_other_score: float
    gap: float
    threshold: float
    num_samples: int


def recommend_from_scores(
    self_scores: Sequence[float],
    other_scores: Sequence[float],
) -> CalibrationReport:
    """Apply the threshold rule to precomputed similarity scores.

    A wide gap (> 0.3) sets the threshold 0.15 below the weakest self score;
    otherwise it sits at the midpoint of the two populations. The result is
    clamped to [0.35, 0.95].

    Args:
        self_scores: Sample-vs-own-entry similarities (non-empty)
        other_scores: Sample-vs-other-entries similarities (may be empty)

    Returns:
        CalibrationReport with the recommendation.
    """
    if len(self_scores) == 0:
        raise ValueError("At least one self score is required")

    min_self = float(min(self_scores))
    if len(other_scores) > 0:
        max_other = float(max(other_scores))
    else:
        max_other = min_self - NO_OTHERS_OFFSET

    gap = min_self - max_other
    if gap > WIDE_GAP:
        threshold = min_self - WIDE_GAP_OFFSET
    else:
        threshold = (min_self + max_other) / 2.0

    threshold = float(np.clip(threshold, THRESHOLD_FLOOR, THRESHOLD_CEIL))

    return CalibrationReport(
        min_self_score=min_self,
        max_other_score=max_other,
        gap=gap,
        threshold=threshold,
        num_samples=len(self_scores),
    )


class Calibrator:
    """Recommends a similarity threshold from calibration captures.

    Attributes:
        min_samples: Fewest valid samples accepted
        matcher: Scores samples against gallery entries

    Example:
        >>> calibrator = Calibrator()
        >>> me = store.get("alice")
        >>> others = [e for e in store.list() if e.identity != "alice"]
        >>> threshold = calibrator.recommend(samples, me, others)
    """

    def __init__(
        self,
        min_samples: int = MIN_SAMPLES,
        matcher: Optional[EmbeddingMatcher] = None,
    ):
        if min_samples < 1:
            raise ValueError(f"min_samples must be >= 1, got {min_samples}")
        self.min_samples = min_samples
        self.matcher = matcher or EmbeddingMatcher()

    @staticmethod
    def _valid_samples(
        samples: Sequence[Optional[np.ndarray]],
        dimension: int,
    ) -> List[np.ndarray]:
        valid = []
        for sample in samples:
            if sample is None:
                continue
            vector = np.asarray(sample, dtype=np.float32).reshape(-1)
            if vector.shape[0] != dimension or not np.any(vector):
                continue
            valid.append(l2_normalize(vector))
        return valid

    def analyze(
        self,
        samples: Sequence[Optional[np.ndarray]],
        self_entry: GalleryEntry,
        other_entries: Sequence[GalleryEntry],
    ) -> CalibrationReport:
        """Score samples against the gallery and recommend a threshold.

        Args:
            samples: Captured embeddings; None, zero-norm and wrong-dimension
                     samples are ignored
            self_entry: Gallery entry of the person being captured
            other_entries: Every other gallery entry

        Returns:
            CalibrationReport

        Raises:
            InsufficientSamples: If fewer than min_samples samples are valid.
        """
        self_embedding = np.asarray(self_entry.embedding, dtype=np.float32).reshape(-1)
        valid = self._valid_samples(samples, self_embedding.shape[0])

        if len(valid) < self.min_samples:
            raise InsufficientSamples(
                required=self.min_samples,
                received=len(valid),
                what="calibration samples",
            )

        others = [
            e for e in other_entries
            if e.identity != self_entry.identity
            and np.asarray(e.embedding).reshape(-1).shape[0] == self_embedding.shape[0]
        ]

        self_scores = [self.matcher.score(s, [self_entry])[0][1] for s in valid]
        other_scores = [
            score
            for s in valid
            for _, score in self.matcher.score(s, others)
        ]

        report = recommend_from_scores(self_scores, other_scores)
        logger.info(
            f"Calibration for '{self_entry.identity}': min_self={report.min_self_score:.3f}, "
            f"max_other={report.max_other_score:.3f}, threshold={report.threshold:.3f} "
            f"({report.num_samples} samples, {len(others)} others)"
        )
        return report

    def recommend(
        self,
        samples: Sequence[Optional[np.ndarray]],
        self_entry: GalleryEntry,
        other_entries: Sequence[GalleryEntry],
    ) -> float:
        """Recommended threshold in [0.35, 0.95]. See analyze()."""
        return self.analyze(samples, self_entry, other_entries).threshold

    def __repr__(self) -> str:
        """String representation of calibrator."""
        return f"Calibrator(min_samples={self.min_samples})"
