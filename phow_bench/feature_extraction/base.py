"""
Abstract base class for keypoint extractors in phow-bench.
Concrete extractors are selected by name through the registry below.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import numpy as np

from phow_bench.errors import ConfigurationError
from phow_bench.feature_extraction.types import DescriptorSet


class KeypointExtractor(ABC):
    """Turns a pixel grid into a set of local descriptors."""

    def __init__(self, extractor_config: Dict[str, Any]):
        """
        Initialize extractor with configuration.

        Args:
            extractor_config: Extractor configuration dictionary loaded from YAML
        """
        self.extractor_config = extractor_config
        self.name = extractor_config.get('extractor', self.__class__.__name__)
        self.training_energy_threshold = extractor_config.get('training_energy_threshold')

    @property
    @abstractmethod
    def dimensionality(self) -> int:
        """Length of every descriptor this extractor produces."""
        pass

    @abstractmethod
    def detect(self, image: np.ndarray, energy_threshold: Optional[float] = None) -> DescriptorSet:
        """
        Extract local descriptors from one image.

        Args:
            image: Pixel grid [height, width] (uint8, or float in [0, 1])
            energy_threshold: Override for the extractor's contrast filter,
                where the extractor has one

        Returns:
            DescriptorSet, possibly empty
        """
        pass

    def config_signature(self) -> Dict[str, Any]:
        """Parameters that change the descriptors; used to namespace caches."""
        return dict(sorted(self.extractor_config.items()))

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.name})"


def create_keypoint_extractor(extractor_config: Dict[str, Any]) -> KeypointExtractor:
    """
    Factory function to create a keypoint extractor by name.

    Args:
        extractor_config: Configuration with an 'extractor' key

    Returns:
        Instantiated extractor

    Raises:
        ConfigurationError: If the extractor name is not recognized
    """
    from phow_bench.feature_extraction.dense_sift import DenseSIFTExtractor
    from phow_bench.feature_extraction.sift import SIFTExtractor, ORBExtractor

    extractor_registry = {
        'dense_sift': DenseSIFTExtractor,
        'phow': DenseSIFTExtractor,
        'sift': SIFTExtractor,
        'orb': ORBExtractor,
    }

    name = extractor_config.get('extractor', 'dense_sift')
    if name not in extractor_registry:
        available = ', '.join(extractor_registry.keys())
        raise ConfigurationError(f"Unknown extractor: {name}. Available: {available}")

    return extractor_registry[name](extractor_config)
