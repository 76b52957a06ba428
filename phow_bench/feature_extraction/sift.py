"""
Interest-point extractors: SIFT and ORB.
Alternatives to dense sampling, selected with extractor: sift | orb.
"""

from typing import Any, Dict, Optional

import cv2
import numpy as np

from phow_bench.feature_extraction.base import KeypointExtractor
from phow_bench.feature_extraction.types import DescriptorSet
from phow_bench.image_io import to_uint8


def _pack(keypoints, descriptors: Optional[np.ndarray], dimensionality: int) -> DescriptorSet:
    if descriptors is None or len(keypoints) == 0:
        return DescriptorSet.empty(dimensionality)
    return DescriptorSet(
        descriptors=descriptors.astype(np.float32),
        locations=np.array([kp.pt for kp in keypoints], dtype=np.float32),
        scales=np.array([kp.size for kp in keypoints], dtype=np.float32),
    )


class SIFTExtractor(KeypointExtractor):
    """SIFT local features at detected keypoints."""

    def __init__(self, extractor_config: Dict[str, Any]):
        super().__init__(extractor_config)
        self.n_features = int(extractor_config.get('n_features', 800))

    @property
    def dimensionality(self) -> int:
        return 128

    def _sift(self):
        """Create SIFT detector."""
        try:
            return cv2.SIFT_create(nfeatures=self.n_features)
        except (AttributeError, cv2.error) as e:
            raise RuntimeError("SIFT requires opencv-python >= 4.4.") from e

    def detect(self, image: np.ndarray, energy_threshold: Optional[float] = None) -> DescriptorSet:
        """Extract SIFT descriptors; energy_threshold is not used by this extractor."""
        keypoints, des = self._sift().detectAndCompute(to_uint8(image), None)
        return _pack(keypoints, des, self.dimensionality)


class ORBExtractor(KeypointExtractor):
    """ORB binary descriptors, unpacked to one float per bit."""

    def __init__(self, extractor_config: Dict[str, Any]):
        super().__init__(extractor_config)
        self.n_features = int(extractor_config.get('n_features', 500))

    @property
    def dimensionality(self) -> int:
        return 256

    def detect(self, image: np.ndarray, energy_threshold: Optional[float] = None) -> DescriptorSet:
        orb = cv2.ORB_create(nfeatures=self.n_features)
        keypoints, des = orb.detectAndCompute(to_uint8(image), None)
        if des is not None:
            des = np.unpackbits(des, axis=1)
        return _pack(keypoints, des, self.dimensionality)
