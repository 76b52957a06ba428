"""Local feature extraction for phow-bench."""

from .types import DescriptorSet, ImageBounds, LocalDescriptor
from .base import KeypointExtractor, create_keypoint_extractor
from .dense_sift import DenseSIFTExtractor
from .sift import SIFTExtractor, ORBExtractor

__all__ = [
    'DescriptorSet',
    'ImageBounds',
    'LocalDescriptor',
    'KeypointExtractor',
    'create_keypoint_extractor',
    'DenseSIFTExtractor',
    'SIFTExtractor',
    'ORBExtractor',
]
