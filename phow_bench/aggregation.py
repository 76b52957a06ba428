"""
Spatial pyramid aggregation of visual words.

Each descriptor is mapped to one visual word and, for every pyramid level,
to one grid cell. The output vector is laid out as:

    for level in pyramid_levels (configured order):
        for cell in row-major order over (rows x cols):
            for word in 0..K-1

so its length is K * sum(rows * cols) regardless of how many descriptors the
image has.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np

from phow_bench.clustering.vector_quantizer import VectorQuantizer
from phow_bench.errors import ConfigurationError
from phow_bench.feature_extraction.types import DescriptorSet, ImageBounds, LocalDescriptor

logger = logging.getLogger(__name__)

PyramidLevels = Sequence[Tuple[int, int]]

DEFAULT_PYRAMID_LEVELS: List[Tuple[int, int]] = [(2, 2), (4, 4)]
NORMALIZATION_MODES = ('none', 'l1', 'l2')


def _validate_levels(levels: PyramidLevels) -> List[Tuple[int, int]]:
    if not levels:
        raise ConfigurationError("At least one pyramid level is required")
    validated = []
    for level in levels:
        rows, cols = (int(v) for v in level)
        if rows <= 0 or cols <= 0:
            raise ConfigurationError(f"Pyramid level must have positive rows and cols, got {level}")
        validated.append((rows, cols))
    return validated


def output_length(k: int, pyramid_levels: PyramidLevels) -> int:
    """Histogram length for a vocabulary of size k and the given levels."""
    return int(k) * sum(rows * cols for rows, cols in _validate_levels(pyramid_levels))


class SpatialAggregator:
    """Pools visual-word counts over a spatial pyramid of image regions."""

    def __init__(
        self,
        quantizer: VectorQuantizer,
        pyramid_levels: PyramidLevels = None,
        normalization: str = 'l2'
    ):
        """
        Args:
            quantizer: Trained vocabulary used for word assignment
            pyramid_levels: (rows, cols) per level; defaults to [(2, 2), (4, 4)]
            normalization: 'none', 'l1' or 'l2', applied to the full vector
        """
        if normalization not in NORMALIZATION_MODES:
            raise ConfigurationError(
                f"Unknown normalization: {normalization}. Available: {', '.join(NORMALIZATION_MODES)}"
            )
        self.quantizer = quantizer
        self.pyramid_levels = _validate_levels(
            DEFAULT_PYRAMID_LEVELS if pyramid_levels is None else pyramid_levels
        )
        self.normalization = normalization

    @property
    def output_length(self) -> int:
        return output_length(self.quantizer.k, self.pyramid_levels)

    def aggregate(
        self,
        descriptors: Union[DescriptorSet, Sequence[LocalDescriptor]],
        image_bounds: ImageBounds,
        pyramid_levels: Optional[PyramidLevels] = None
    ) -> np.ndarray:
        """
        Build the pyramid histogram for one image.

        Args:
            descriptors: Local descriptors with their locations
            image_bounds: Width and height the locations refer to
            pyramid_levels: Per-call override of the configured levels

        Returns:
            float64 vector of length K * sum(rows * cols)

        Raises:
            ConfigurationError: On descriptor/vocabulary dimensionality mismatch
                or non-positive bounds
        """
        if not isinstance(descriptors, DescriptorSet):
            descriptors = DescriptorSet.from_descriptors(list(descriptors))
        levels = self.pyramid_levels if pyramid_levels is None else _validate_levels(pyramid_levels)

        if image_bounds.width <= 0 or image_bounds.height <= 0:
            raise ConfigurationError(f"Image bounds must be positive, got {image_bounds}")

        k = self.quantizer.k
        length = output_length(k, levels)
        histogram = np.zeros(length, dtype=np.float64)
        if len(descriptors) == 0:
            return histogram

        words = self.quantizer.assign_batch(descriptors)
        xs = descriptors.locations[:, 0].astype(np.float64)
        ys = descriptors.locations[:, 1].astype(np.float64)

        offset = 0
        for rows, cols in levels:
            cell_rows = self._cell_index(ys, image_bounds.height, rows)
            cell_cols = self._cell_index(xs, image_bounds.width, cols)
            cells = cell_rows * cols + cell_cols
            bins = offset + cells * k + words
            histogram += np.bincount(bins, minlength=length)[:length]
            offset += rows * cols * k

        return self._normalize(histogram)

    @staticmethod
    def _cell_index(coords: np.ndarray, extent: int, divisions: int) -> np.ndarray:
        """Equal-width cell index along one axis; out-of-bounds points are clipped in."""
        index = np.floor(coords * divisions / float(extent)).astype(np.int64)
        return np.clip(index, 0, divisions - 1)

    def _normalize(self, histogram: np.ndarray) -> np.ndarray:
        if self.normalization == 'none':
            return histogram
        if self.normalization == 'l1':
            norm = np.sum(np.abs(histogram))
        else:
            norm = np.linalg.norm(histogram)
        if norm == 0:
            return histogram
        return histogram / norm
