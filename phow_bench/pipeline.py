"""
PHOW feature pipeline: image -> dense SIFT -> spatial pyramid of visual words
-> explicit kernel map, with an optional persistent cache in front.

The pipeline is read-only after construction, so one instance can serve any
number of extraction threads.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import numpy as np

from phow_bench.aggregation import SpatialAggregator
from phow_bench.clustering.vector_quantizer import VectorQuantizer
from phow_bench.config import PipelineConfig
from phow_bench.datasets.base import ImageRecord
from phow_bench.errors import ConfigurationError
from phow_bench.feature_cache import FeatureCache, open_feature_cache
from phow_bench.feature_extraction.base import KeypointExtractor, create_keypoint_extractor
from phow_bench.feature_extraction.types import ImageBounds
from phow_bench.image_io import content_key, decode, decode_file
from phow_bench.kernel_map import KernelFeatureMap
from phow_bench.parallel import parallel_map

logger = logging.getLogger(__name__)

ImageSource = Union[ImageRecord, bytes, np.ndarray]


class PhowPipeline:
    """Composes extractor, aggregator and kernel map into one feature function."""

    def __init__(
        self,
        extractor: KeypointExtractor,
        quantizer: VectorQuantizer,
        aggregator: Optional[SpatialAggregator] = None,
        kernel_map: Optional[KernelFeatureMap] = None,
        cache: Optional[FeatureCache] = None,
        dataset_id: Optional[str] = None
    ):
        """
        Args:
            extractor: Local descriptor extractor
            quantizer: Trained vocabulary
            aggregator: Spatial pyramid pooling; defaults to 2x2 + 4x4, L2
            kernel_map: Explicit kernel map; defaults to chi-squared
            cache: Persistent store for final vectors (None disables caching)
            dataset_id: Folded into the cache namespace so record keys from
                different datasets never collide
        """
        if not quantizer.is_trained:
            raise ConfigurationError("Pipeline needs a trained vocabulary")
        if quantizer.dimensionality != extractor.dimensionality:
            raise ConfigurationError(
                f"Vocabulary dimensionality {quantizer.dimensionality} does not match "
                f"extractor ({extractor.dimensionality})"
            )

        self.extractor = extractor
        self.quantizer = quantizer
        self.aggregator = aggregator or SpatialAggregator(quantizer)
        self.kernel_map = kernel_map or KernelFeatureMap('chi2')
        self.cache = cache
        self.dataset_id = dataset_id

    @property
    def output_length(self) -> int:
        return self.kernel_map.output_length(self.aggregator.output_length)

    def feature_config(self) -> Dict[str, Any]:
        """Everything that determines the value of a feature vector."""
        return {
            'extractor': self.extractor.config_signature(),
            'vocabulary': self.quantizer.fingerprint(),
            'k': self.quantizer.k,
            'pyramid_levels': [list(level) for level in self.aggregator.pyramid_levels],
            'normalization': self.aggregator.normalization,
            'kernel_map': self.kernel_map.config_signature(),
            'dataset': self.dataset_id,
        }

    def describe(self, image: np.ndarray) -> np.ndarray:
        """Feature vector for a decoded pixel grid (never cached)."""
        descriptors = self.extractor.detect(image)
        histogram = self.aggregator.aggregate(descriptors, ImageBounds.from_image(image))
        return self.kernel_map.expand(histogram)

    def _resolve(self, source: ImageSource, key: Optional[str]) -> Tuple[Optional[str], Callable[[], np.ndarray]]:
        if isinstance(source, ImageRecord):
            return key or source.key, lambda: decode_file(source.path)
        if isinstance(source, (bytes, bytearray)):
            data = bytes(source)
            return key or content_key(data), lambda: decode(data)
        if isinstance(source, np.ndarray):
            return key, lambda: source
        raise TypeError(f"Unsupported image source: {type(source).__name__}")

    def extract(self, source: ImageSource, key: Optional[str] = None) -> np.ndarray:
        """
        Feature vector for a record, encoded bytes or a pixel grid.

        Records are keyed by their dataset-relative path and bytes by their
        content hash; pixel grids are only cached when key is given.

        Raises:
            DecodeError: If the image cannot be decoded
            CacheCorruptionError: If a corrupt entry is found and recompute is off
        """
        cache_key, load = self._resolve(source, key)
        if self.cache is None or cache_key is None:
            return self.describe(load())
        return self.cache.get_or_compute(cache_key, lambda: self.describe(load()))

    def extract_many(
        self,
        sources: Sequence[ImageSource],
        num_workers: Optional[int] = 1,
        desc: Optional[str] = None
    ) -> np.ndarray:
        """Feature matrix [len(sources), output_length], rows in input order."""
        if not sources:
            return np.zeros((0, self.output_length), dtype=np.float64)
        vectors = parallel_map(self.extract, list(sources), num_workers=num_workers, desc=desc)
        return np.vstack(vectors)

    def __str__(self) -> str:
        return (
            f"PhowPipeline({self.extractor}, k={self.quantizer.k}, "
            f"levels={self.aggregator.pyramid_levels}, kernel={self.kernel_map.kernel}, "
            f"output_length={self.output_length})"
        )


def build_pipeline(
    config: Union[PipelineConfig, Dict[str, Any]],
    quantizer: VectorQuantizer,
    cache_root: Optional[Union[str, Path]] = None,
    recompute_on_corruption: bool = True,
    dataset_id: Optional[str] = None
) -> PhowPipeline:
    """
    Build a pipeline from configuration, optionally backed by a cache.

    Args:
        config: PipelineConfig or a run configuration dictionary
        quantizer: Trained vocabulary
        cache_root: Store location for the feature cache (None disables it)
        recompute_on_corruption: Cache behaviour on unreadable entries
        dataset_id: Extra namespace component (usually the dataset root)
    """
    if not isinstance(config, PipelineConfig):
        config = PipelineConfig.from_dict(config)

    extractor = create_keypoint_extractor(config.extractor)
    aggregator = SpatialAggregator(
        quantizer,
        pyramid_levels=config.pyramid_levels,
        normalization=config.normalization,
    )
    kernel_map = KernelFeatureMap.from_config(config.kernel_map, input_length=aggregator.output_length)
    pipeline = PhowPipeline(extractor, quantizer, aggregator, kernel_map, dataset_id=dataset_id)

    if cache_root is not None:
        pipeline.cache = open_feature_cache(
            cache_root,
            pipeline.feature_config(),
            vector_length=pipeline.output_length,
            recompute_on_corruption=recompute_on_corruption,
        )
        logger.info(f"Feature cache enabled: {pipeline.cache}")

    logger.info(f"Built {pipeline}")
    return pipeline
