"""Tests for spatial pyramid aggregation."""

import numpy as np
import pytest

from phow_bench.aggregation import SpatialAggregator, output_length
from phow_bench.errors import ConfigurationError
from phow_bench.feature_extraction import DescriptorSet, ImageBounds, LocalDescriptor


def make_set(points, words_at):
    """Descriptors placed at (x, y) points, each sitting exactly on a word centroid."""
    centroids = {0: [0.0, 0.0], 1: [10.0, 10.0]}
    return DescriptorSet(
        descriptors=np.array([centroids[w] for w in words_at]),
        locations=np.array(points, dtype=np.float32),
    )


class TestLayout:

    def test_output_length(self):
        assert output_length(600, [(2, 2), (4, 4)]) == 600 * 20
        assert output_length(3, [(1, 1)]) == 3

    def test_default_levels(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer)
        assert aggregator.pyramid_levels == [(2, 2), (4, 4)]
        assert aggregator.output_length == 2 * 20

    def test_level_cell_word_order(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer, pyramid_levels=[(1, 1), (2, 2)], normalization='none')
        descriptors = make_set([(15.0, 5.0)], words_at=[1])

        histogram = aggregator.aggregate(descriptors, ImageBounds(width=20, height=20))

        expected = np.zeros(10)
        expected[1] = 1.0          # level 0, only cell, word 1
        expected[2 + 1 * 2 + 1] = 1.0  # level 1, top-right cell, word 1
        np.testing.assert_array_equal(histogram, expected)

    def test_counts_accumulate(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer, pyramid_levels=[(1, 1)], normalization='none')
        descriptors = make_set([(1, 1), (2, 2), (3, 3)], words_at=[0, 0, 1])
        histogram = aggregator.aggregate(descriptors, ImageBounds(width=10, height=10))
        np.testing.assert_array_equal(histogram, [2.0, 1.0])

    def test_points_on_far_edge_are_clipped_into_last_cell(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer, pyramid_levels=[(2, 2)], normalization='none')
        descriptors = make_set([(20.0, 20.0), (25.0, -3.0)], words_at=[0, 0])
        histogram = aggregator.aggregate(descriptors, ImageBounds(width=20, height=20))

        # bottom-right cell (index 3) and top-right cell (index 1), word 0
        assert histogram[3 * 2] == 1.0
        assert histogram[1 * 2] == 1.0
        assert histogram.sum() == 2.0

    def test_level_override(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer)
        descriptors = make_set([(1, 1)], words_at=[0])
        histogram = aggregator.aggregate(descriptors, ImageBounds(10, 10), pyramid_levels=[(1, 1)])
        assert len(histogram) == 2


class TestNormalization:

    @pytest.fixture
    def descriptors(self):
        return make_set([(1, 1), (8, 8), (8, 1)], words_at=[0, 1, 1])

    def test_l2(self, two_word_quantizer, descriptors):
        aggregator = SpatialAggregator(two_word_quantizer, normalization='l2')
        histogram = aggregator.aggregate(descriptors, ImageBounds(10, 10))
        assert np.linalg.norm(histogram) == pytest.approx(1.0)

    def test_l1(self, two_word_quantizer, descriptors):
        aggregator = SpatialAggregator(two_word_quantizer, normalization='l1')
        histogram = aggregator.aggregate(descriptors, ImageBounds(10, 10))
        assert histogram.sum() == pytest.approx(1.0)

    def test_unknown_mode(self, two_word_quantizer):
        with pytest.raises(ConfigurationError, match="Unknown normalization"):
            SpatialAggregator(two_word_quantizer, normalization='max')


class TestEdgeCases:

    def test_no_descriptors_gives_zero_vector(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer)
        histogram = aggregator.aggregate(DescriptorSet.empty(2), ImageBounds(10, 10))
        assert histogram.shape == (aggregator.output_length,)
        assert not histogram.any()

    def test_local_descriptor_list(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer, pyramid_levels=[(1, 1)], normalization='none')
        items = [LocalDescriptor(vector=np.array([10.0, 10.0]), x=2.0, y=3.0)]
        np.testing.assert_array_equal(aggregator.aggregate(items, ImageBounds(10, 10)), [0.0, 1.0])

    def test_zero_bounds(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer)
        with pytest.raises(ConfigurationError, match="positive"):
            aggregator.aggregate(make_set([(0, 0)], [0]), ImageBounds(0, 10))

    def test_invalid_level(self, two_word_quantizer):
        with pytest.raises(ConfigurationError):
            SpatialAggregator(two_word_quantizer, pyramid_levels=[(0, 2)])

    def test_descriptor_dimensionality_mismatch(self, two_word_quantizer):
        aggregator = SpatialAggregator(two_word_quantizer)
        descriptors = DescriptorSet(np.zeros((1, 3)), np.zeros((1, 2)))
        with pytest.raises(ConfigurationError):
            aggregator.aggregate(descriptors, ImageBounds(10, 10))
