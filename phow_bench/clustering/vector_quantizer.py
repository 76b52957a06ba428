"""
Visual vocabulary: k-means over local descriptors plus hard assignment.

Training runs once over a bounded sample of descriptors; the resulting
centroids are persisted and shared read-only by every later assignment.
"""

import hashlib
import logging
import pickle
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np
from sklearn.cluster import KMeans

from phow_bench.errors import ConfigurationError, UntrainedModelError
from phow_bench.feature_extraction.types import DescriptorSet, LocalDescriptor
from phow_bench.utils.atomic import atomic_pickle_dump

logger = logging.getLogger(__name__)

DEFAULT_MAX_SAMPLES = 10000
VOCABULARY_FORMAT_VERSION = 1

DescriptorSample = Union[np.ndarray, DescriptorSet, Sequence[LocalDescriptor], Sequence[DescriptorSet]]


def _as_matrix(sample: DescriptorSample) -> np.ndarray:
    """Flatten any accepted descriptor collection into an [N, D] float64 matrix."""
    if isinstance(sample, np.ndarray):
        matrix = sample
    elif isinstance(sample, DescriptorSet):
        matrix = sample.descriptors
    else:
        items = list(sample)
        if not items:
            return np.zeros((0, 0), dtype=np.float64)
        if isinstance(items[0], DescriptorSet):
            non_empty = [s.descriptors for s in items if len(s) > 0]
            if not non_empty:
                return np.zeros((0, items[0].dimensionality), dtype=np.float64)
            matrix = np.vstack(non_empty)
        else:
            matrix = np.vstack([np.asarray(d.vector) for d in items])

    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2:
        raise ConfigurationError(f"Descriptor sample must be 2D, got shape {matrix.shape}")
    return matrix


class VectorQuantizer:
    """Learns K visual words and maps descriptors to their nearest word."""

    def __init__(
        self,
        max_samples: int = DEFAULT_MAX_SAMPLES,
        max_iter: int = 300,
        n_init: int = 1,
        chunk_size: int = 4096
    ):
        """
        Args:
            max_samples: Ceiling on the training sample; extra rows are dropped
            max_iter: Lloyd iterations per k-means run
            n_init: Number of k-means restarts (best inertia wins)
            chunk_size: Rows per block when computing assignment distances
        """
        self.max_samples = int(max_samples)
        self.max_iter = int(max_iter)
        self.n_init = int(n_init)
        self.chunk_size = int(chunk_size)

        self._centroids: Optional[np.ndarray] = None
        self._centroid_sq_norms: Optional[np.ndarray] = None
        self.inertia: Optional[float] = None

    @classmethod
    def from_config(cls, vocabulary_config: Dict[str, Any]) -> 'VectorQuantizer':
        return cls(
            max_samples=vocabulary_config.get('max_samples', DEFAULT_MAX_SAMPLES),
            max_iter=vocabulary_config.get('kmeans_max_iter', 300),
            n_init=vocabulary_config.get('n_init', 1),
        )

    @classmethod
    def from_centroids(cls, centroids: np.ndarray, **kwargs) -> 'VectorQuantizer':
        quantizer = cls(**kwargs)
        quantizer._set_centroids(centroids)
        return quantizer

    # -- training -----------------------------------------------------------

    def train(self, sample: DescriptorSample, k: int, seed: int = 42) -> np.ndarray:
        """
        Cluster a descriptor sample into k centroids.

        Args:
            sample: Descriptors as a matrix, DescriptorSet(s) or LocalDescriptors
            k: Vocabulary size
            seed: Random state for k-means initialisation

        Returns:
            Centroid matrix [k, D] (float64)

        Raises:
            ConfigurationError: If k is not positive or the sample has fewer than k rows
        """
        k = int(k)
        if k <= 0:
            raise ConfigurationError(f"Vocabulary size must be positive, got {k}")

        data = _as_matrix(sample)
        if len(data) > self.max_samples:
            logger.info(f"Truncating vocabulary sample from {len(data)} to {self.max_samples} descriptors")
            data = data[:self.max_samples]
        if len(data) < k:
            raise ConfigurationError(f"Need at least {k} descriptors to train {k} visual words, got {len(data)}")

        logger.info(f"Training vocabulary: k={k}, samples={len(data)}, dim={data.shape[1]}, seed={seed}")
        km = KMeans(
            n_clusters=k,
            init='k-means++',
            n_init=self.n_init,
            max_iter=self.max_iter,
            algorithm='lloyd',
            random_state=seed
        )
        km.fit(data)

        self.inertia = float(km.inertia_)
        self._set_centroids(km.cluster_centers_)
        logger.info(f"Vocabulary trained: inertia={self.inertia:.4f}, iterations={km.n_iter_}")
        return self.centroids

    def _set_centroids(self, centroids: np.ndarray) -> None:
        centroids = np.array(centroids, dtype=np.float64)
        if centroids.ndim != 2 or centroids.shape[0] == 0:
            raise ConfigurationError(f"Centroids must be a non-empty 2D matrix, got shape {centroids.shape}")
        centroids.setflags(write=False)
        self._centroids = centroids
        self._centroid_sq_norms = np.sum(centroids ** 2, axis=1)

    # -- assignment ---------------------------------------------------------

    @property
    def is_trained(self) -> bool:
        return self._centroids is not None

    @property
    def centroids(self) -> np.ndarray:
        self._require_trained()
        return self._centroids

    @property
    def k(self) -> int:
        return int(self.centroids.shape[0])

    @property
    def dimensionality(self) -> int:
        return int(self.centroids.shape[1])

    def _require_trained(self) -> None:
        if self._centroids is None:
            raise UntrainedModelError("VectorQuantizer has no vocabulary; call train() or load() first")

    def assign(self, descriptor: Union[np.ndarray, LocalDescriptor]) -> int:
        """Index of the nearest centroid (squared Euclidean, lowest index on ties)."""
        vector = descriptor.vector if isinstance(descriptor, LocalDescriptor) else descriptor
        vector = np.asarray(vector, dtype=np.float64).reshape(1, -1)
        return int(self.assign_batch(vector)[0])

    def assign_batch(self, descriptors: Union[np.ndarray, DescriptorSet]) -> np.ndarray:
        """
        Assign every row to its nearest centroid.

        Args:
            descriptors: [N, D] matrix or DescriptorSet

        Returns:
            int64 array of N visual word ids

        Raises:
            ConfigurationError: If D differs from the vocabulary dimensionality
        """
        self._require_trained()
        if isinstance(descriptors, DescriptorSet):
            descriptors = descriptors.descriptors
        data = np.asarray(descriptors, dtype=np.float64)
        if data.ndim == 1:
            data = data.reshape(1, -1)

        if len(data) == 0 and data.shape[1] == 0:
            return np.zeros(0, dtype=np.int64)
        if data.shape[1] != self.dimensionality:
            raise ConfigurationError(
                f"Descriptor dimensionality {data.shape[1]} does not match vocabulary "
                f"dimensionality {self.dimensionality}"
            )

        centers = self._centroids
        labels = np.empty(len(data), dtype=np.int64)
        for start in range(0, len(data), self.chunk_size):
            block = data[start:start + self.chunk_size]
            # ||x||^2 is constant per row and does not change the argmin
            d2 = self._centroid_sq_norms[None, :] - 2.0 * block.dot(centers.T)
            labels[start:start + self.chunk_size] = np.argmin(d2, axis=1)
        return labels

    # -- persistence --------------------------------------------------------

    def fingerprint(self) -> str:
        """Short stable hash of the vocabulary contents."""
        centers = self.centroids
        digest = hashlib.sha256()
        digest.update(np.array(centers.shape, dtype=np.int64).tobytes())
        digest.update(np.ascontiguousarray(centers).tobytes())
        return digest.hexdigest()[:16]

    def to_dict(self) -> Dict[str, Any]:
        centers = self.centroids
        return {
            'format_version': VOCABULARY_FORMAT_VERSION,
            'k': int(centers.shape[0]),
            'dimensionality': int(centers.shape[1]),
            'cluster_centers': np.array(centers, dtype=np.float64),
        }

    def save(self, path: Union[str, Path]) -> Path:
        """Persist the vocabulary atomically (write to temp file, then rename)."""
        path = atomic_pickle_dump(self.to_dict(), path)
        logger.info(f"Saved vocabulary (k={self.k}, dim={self.dimensionality}) to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path], **kwargs) -> 'VectorQuantizer':
        """
        Restore a vocabulary written by save().

        Raises:
            ConfigurationError: If the stored shape disagrees with the stored k/dimensionality
        """
        path = Path(path)
        with open(path, 'rb') as f:
            payload = pickle.load(f)

        centers = np.asarray(payload['cluster_centers'], dtype=np.float64)
        k = int(payload['k'])
        dim = int(payload['dimensionality'])
        if centers.shape != (k, dim):
            raise ConfigurationError(
                f"Vocabulary file {path} declares k={k}, dimensionality={dim} "
                f"but holds centroids of shape {centers.shape}"
            )

        quantizer = cls.from_centroids(centers, **kwargs)
        logger.info(f"Loaded vocabulary (k={k}, dim={dim}) from {path}")
        return quantizer

    def __str__(self) -> str:
        if not self.is_trained:
            return "VectorQuantizer(untrained)"
        return f"VectorQuantizer(k={self.k}, dim={self.dimensionality})"
