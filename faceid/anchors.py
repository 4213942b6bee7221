"""Anchor (prior) box generation for the RetinaFace detector.

The detector's regression output is expressed relative to a fixed grid of
anchors. Decoding relies on positional correspondence between output rows and
anchors, so the enumeration order here must match the network exactly:
stride-major, then feature-map cells row-major, then anchor size.
"""

from __future__ import annotations

import math
from typing import Dict, Sequence, Tuple

import numpy as np

from faceid.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_STEPS: Tuple[int, ...] = (8, 16, 32)
DEFAULT_MIN_SIZES: Tuple[Tuple[int, ...], ...] = ((16, 32), (64, 128), (256, 512))


class AnchorGrid:
    """Generator of normalized anchor boxes, memoized per input resolution.

    Each anchor is a row ``(cx, cy, s_kx, s_ky)`` in [0, 1] coordinates of the
    model input. Arrays are returned read-only and shared between callers.

    Attributes:
        steps: Feature-map strides
        min_sizes: Anchor sizes (pixels) for each stride

    Example:
        >>> grid = AnchorGrid()
        >>> anchors = grid.generate(640, 608)
        >>> anchors.shape
        (15960, 4)
    """

    def __init__(
        self,
        steps: Sequence[int] = DEFAULT_STEPS,
        min_sizes: Sequence[Sequence[int]] = DEFAULT_MIN_SIZES,
    ):
        if len(steps) != len(min_sizes):
            raise ValueError(
                f"Need one size list per stride, got {len(steps)} strides "
                f"and {len(min_sizes)} size lists"
            )
        self.steps = tuple(int(s) for s in steps)
        self.min_sizes = tuple(tuple(int(m) for m in sizes) for sizes in min_sizes)
        self._cache: Dict[Tuple[int, int], np.ndarray] = {}

    def expected_count(self, input_width: int, input_height: int) -> int:
        """Number of anchors generated for a resolution."""
        return sum(
            math.ceil(input_height / step) * math.ceil(input_width / step) * len(sizes)
            for step, sizes in zip(self.steps, self.min_sizes)
        )

    def generate(self, input_width: int, input_height: int) -> np.ndarray:
        """Return the anchors for a model input resolution.

        Args:
            input_width: Model input width in pixels
            input_height: Model input height in pixels

        Returns:
            Read-only float32 array of shape [N, 4].
        """
        key = (int(input_width), int(input_height))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        if key[0] <= 0 or key[1] <= 0:
            raise ValueError(f"Input size must be positive, got {key[0]}x{key[1]}")

        width, height = key
        levels = []
        for step, sizes in zip(self.steps, self.min_sizes):
            feature_h = math.ceil(height / step)
            feature_w = math.ceil(width / step)
            num_sizes = len(sizes)

            rows, cols = np.meshgrid(
                np.arange(feature_h, dtype=np.float64),
                np.arange(feature_w, dtype=np.float64),
                indexing="ij",
            )
            shape = (feature_h, feature_w, num_sizes)
            cx = np.broadcast_to(((cols + 0.5) * step / width)[..., None], shape)
            cy = np.broadcast_to(((rows + 0.5) * step / height)[..., None], shape)
            sizes_arr = np.asarray(sizes, dtype=np.float64)
            s_kx = np.broadcast_to(sizes_arr / width, shape)
            s_ky = np.broadcast_to(sizes_arr / height, shape)

            levels.append(np.stack([cx, cy, s_kx, s_ky], axis=-1).reshape(-1, 4))

        anchors = np.concatenate(levels, axis=0).astype(np.float32)
        anchors.setflags(write=False)
        self._cache[key] = anchors

        logger.debug(f"Generated {len(anchors)} anchors for {width}x{height}")
        return anchors

    def __repr__(self) -> str:
        """String representation."""
        return f"AnchorGrid(steps={self.steps}, cached={sorted(self._cache)})"
