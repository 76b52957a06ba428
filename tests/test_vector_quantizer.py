"""Tests for vocabulary training, assignment and persistence."""

import pickle

import numpy as np
import pytest

from phow_bench.clustering import VectorQuantizer
from phow_bench.errors import ConfigurationError, UntrainedModelError
from phow_bench.feature_extraction import DescriptorSet, LocalDescriptor


class TestTraining:

    def test_clusters_never_share_a_word(self, two_cluster_points):
        quantizer = VectorQuantizer()
        centroids = quantizer.train(two_cluster_points, k=4, seed=0)

        assert centroids.shape == (4, 4)
        words_a = set(quantizer.assign_batch(two_cluster_points[:10]).tolist())
        words_b = set(quantizer.assign_batch(two_cluster_points[10:]).tolist())
        assert words_a.isdisjoint(words_b)

    def test_same_seed_same_vocabulary(self, two_cluster_points):
        first = VectorQuantizer()
        second = VectorQuantizer()
        first.train(two_cluster_points, k=3, seed=7)
        second.train(two_cluster_points, k=3, seed=7)
        np.testing.assert_array_equal(first.centroids, second.centroids)
        assert first.fingerprint() == second.fingerprint()

    def test_accepts_descriptor_sets(self, two_cluster_points):
        sets = [
            DescriptorSet(two_cluster_points[:10], np.zeros((10, 2))),
            DescriptorSet.empty(4),
            DescriptorSet(two_cluster_points[10:], np.zeros((10, 2))),
        ]
        quantizer = VectorQuantizer()
        quantizer.train(sets, k=2, seed=0)
        assert quantizer.k == 2
        assert quantizer.dimensionality == 4

    def test_too_few_samples(self, two_cluster_points):
        with pytest.raises(ConfigurationError, match="Need at least 25"):
            VectorQuantizer().train(two_cluster_points, k=25)

    def test_sample_is_capped_before_clustering(self, two_cluster_points):
        quantizer = VectorQuantizer(max_samples=3)
        with pytest.raises(ConfigurationError, match="got 3"):
            quantizer.train(two_cluster_points, k=4)

    def test_non_positive_k(self, two_cluster_points):
        with pytest.raises(ConfigurationError):
            VectorQuantizer().train(two_cluster_points, k=0)

    def test_centroids_are_read_only(self, two_cluster_points):
        quantizer = VectorQuantizer()
        quantizer.train(two_cluster_points, k=2, seed=0)
        with pytest.raises(ValueError):
            quantizer.centroids[0, 0] = 1.0


class TestAssignment:

    def test_untrained(self):
        quantizer = VectorQuantizer()
        assert not quantizer.is_trained
        with pytest.raises(UntrainedModelError):
            quantizer.assign(np.zeros(4))

    def test_nearest_word(self, two_word_quantizer):
        assert two_word_quantizer.assign(np.array([1.0, 0.5])) == 0
        assert two_word_quantizer.assign(np.array([9.0, 11.0])) == 1

    def test_local_descriptor_input(self, two_word_quantizer):
        descriptor = LocalDescriptor(vector=np.array([9.5, 9.5]), x=0.0, y=0.0)
        assert two_word_quantizer.assign(descriptor) == 1

    def test_ties_go_to_lowest_index(self):
        quantizer = VectorQuantizer.from_centroids(np.array([[0.0, 0.0], [2.0, 0.0]]))
        assert quantizer.assign(np.array([1.0, 0.0])) == 0

    def test_batch_matches_single(self, two_cluster_points):
        quantizer = VectorQuantizer(chunk_size=3)
        quantizer.train(two_cluster_points, k=4, seed=0)
        batch = quantizer.assign_batch(two_cluster_points)
        single = [quantizer.assign(row) for row in two_cluster_points]
        assert batch.tolist() == single

    def test_empty_batch(self, two_word_quantizer):
        assert len(two_word_quantizer.assign_batch(np.zeros((0, 0)))) == 0
        assert len(two_word_quantizer.assign_batch(DescriptorSet.empty(2))) == 0

    def test_dimensionality_mismatch(self, two_word_quantizer):
        with pytest.raises(ConfigurationError, match="dimensionality 3"):
            two_word_quantizer.assign(np.zeros(3))


class TestPersistence:

    def test_reload_reproduces_assignments(self, tmp_path, two_cluster_points):
        quantizer = VectorQuantizer()
        quantizer.train(two_cluster_points, k=4, seed=0)
        path = quantizer.save(tmp_path / 'vocab' / 'vocabulary.pkl')

        restored = VectorQuantizer.load(path)
        assert restored.fingerprint() == quantizer.fingerprint()
        np.testing.assert_array_equal(
            restored.assign_batch(two_cluster_points),
            quantizer.assign_batch(two_cluster_points)
        )

    def test_inconsistent_file(self, tmp_path):
        path = tmp_path / 'bad.pkl'
        with open(path, 'wb') as f:
            pickle.dump({
                'format_version': 1,
                'k': 5,
                'dimensionality': 2,
                'cluster_centers': np.zeros((4, 2)),
            }, f)
        with pytest.raises(ConfigurationError, match="declares k=5"):
            VectorQuantizer.load(path)

    def test_save_untrained(self, tmp_path):
        with pytest.raises(UntrainedModelError):
            VectorQuantizer().save(tmp_path / 'vocab.pkl')
