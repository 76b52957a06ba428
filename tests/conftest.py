"""Shared fixtures: synthetic descriptors, images and temporary stores."""

import cv2
import numpy as np
import pytest

from phow_bench.clustering import VectorQuantizer
from phow_bench.feature_cache import CacheConfig, FeatureCache


@pytest.fixture
def two_cluster_points():
    """20 points in two tight, well-separated 4-D clusters (10 each)."""
    rng = np.random.default_rng(0)
    near_origin = rng.normal(0.0, 0.1, size=(10, 4))
    far_away = rng.normal(10.0, 0.1, size=(10, 4))
    return np.vstack([near_origin, far_away])


@pytest.fixture
def two_word_quantizer():
    """Fixed 2-word vocabulary in 2-D: word 0 at the origin, word 1 at (10, 10)."""
    return VectorQuantizer.from_centroids(np.array([[0.0, 0.0], [10.0, 10.0]]))


@pytest.fixture
def noise_image():
    """Factory for textured uint8 test images."""
    def make(seed: int = 0, size: int = 64) -> np.ndarray:
        rng = np.random.default_rng(seed)
        return rng.integers(0, 256, size=(size, size), dtype=np.uint8)
    return make


@pytest.fixture
def stripe_image():
    """Factory for vertical-stripe images with a little noise."""
    def make(seed: int = 0, size: int = 64, period: int = 8) -> np.ndarray:
        rng = np.random.default_rng(seed)
        columns = ((np.arange(size) // (period // 2)) % 2) * 200 + 20
        image = np.tile(columns, (size, 1)).astype(np.int64)
        image += rng.integers(0, 20, size=(size, size))
        return np.clip(image, 0, 255).astype(np.uint8)
    return make


@pytest.fixture
def encode_png():
    def encode(image: np.ndarray) -> bytes:
        ok, buffer = cv2.imencode('.png', image)
        assert ok
        return buffer.tobytes()
    return encode


@pytest.fixture
def small_extractor_config():
    """Dense SIFT settings small enough for 64x64 images."""
    return {
        'extractor': 'dense_sift',
        'step': 4,
        'bin_sizes': [4, 6],
        'magnification': 6,
        'energy_threshold': 0.015,
        'training_energy_threshold': 0.005,
    }


@pytest.fixture
def cache_config(tmp_path):
    return CacheConfig(store_location=tmp_path / 'cache', namespace_key='test_ns')


@pytest.fixture
def feature_cache(cache_config):
    cache = FeatureCache(cache_config, vector_length=6)
    yield cache
    cache.close()
