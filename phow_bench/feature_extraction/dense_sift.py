"""
Pyramid dense SIFT (the local feature behind PHOW).

SIFT descriptors are sampled on a regular grid at several bin sizes instead of
at detected interest points. Each scale is computed on a copy of the image
smoothed with sigma = bin_size / magnification, and low-contrast samples are
discarded by a gradient-energy threshold.
"""

import logging
from typing import Any, Dict, List, Optional

import cv2
import numpy as np

from phow_bench.errors import ConfigurationError
from phow_bench.feature_extraction.base import KeypointExtractor
from phow_bench.feature_extraction.types import DescriptorSet
from phow_bench.image_io import to_uint8

logger = logging.getLogger(__name__)

# OpenCV SIFT spatial bins are 1.5 * keypoint size wide
_OPENCV_BIN_FACTOR = 1.5
_SIFT_BINS_PER_SIDE = 4


class DenseSIFTExtractor(KeypointExtractor):
    """Dense SIFT evaluated at multiple bin sizes on a shared grid step."""

    def __init__(self, extractor_config: Dict[str, Any]):
        super().__init__(extractor_config)

        self.step = int(extractor_config.get('step', 3))
        self.bin_sizes: List[int] = [int(s) for s in extractor_config.get('bin_sizes', [4, 6, 8, 10])]
        self.magnification = float(extractor_config.get('magnification', 6.0))
        self.energy_threshold = float(extractor_config.get('energy_threshold', 0.015))
        if self.training_energy_threshold is None:
            self.training_energy_threshold = 0.005

        if self.step <= 0:
            raise ConfigurationError(f"step must be positive, got {self.step}")
        if not self.bin_sizes or min(self.bin_sizes) <= 0:
            raise ConfigurationError(f"bin_sizes must be positive, got {self.bin_sizes}")

    @property
    def dimensionality(self) -> int:
        return 128

    def detect(self, image: np.ndarray, energy_threshold: Optional[float] = None) -> DescriptorSet:
        """Extract dense SIFT descriptors at every configured scale."""
        gray = to_uint8(image)
        threshold = self.energy_threshold if energy_threshold is None else float(energy_threshold)

        sift = cv2.SIFT_create()
        all_desc, all_locs, all_scales = [], [], []

        for bin_size in self.bin_sizes:
            smoothed = self._smooth(gray, bin_size)
            points = self._grid(smoothed.shape)
            if len(points) == 0:
                continue

            if threshold > 0:
                energy = self._patch_energy(smoothed, points, bin_size)
                points = points[energy >= threshold]
                if len(points) == 0:
                    continue

            size = bin_size / _OPENCV_BIN_FACTOR
            keypoints = [cv2.KeyPoint(float(x), float(y), size, 0) for x, y in points]
            keypoints, des = sift.compute(smoothed, keypoints)
            if des is None or len(keypoints) == 0:
                continue

            all_desc.append(des.astype(np.float32))
            all_locs.append(np.array([kp.pt for kp in keypoints], dtype=np.float32))
            all_scales.append(np.full(len(keypoints), bin_size, dtype=np.float32))

        if not all_desc:
            return DescriptorSet.empty(self.dimensionality)

        result = DescriptorSet(
            descriptors=np.vstack(all_desc),
            locations=np.vstack(all_locs),
            scales=np.concatenate(all_scales),
        )
        logger.debug(f"Dense SIFT: {len(result)} descriptors from {gray.shape[1]}x{gray.shape[0]} image")
        return result

    def _smooth(self, gray: np.ndarray, bin_size: int) -> np.ndarray:
        sigma = bin_size / self.magnification
        if sigma <= 0:
            return gray
        return cv2.GaussianBlur(gray, (0, 0), sigmaX=sigma, sigmaY=sigma)

    def _grid(self, shape) -> np.ndarray:
        """Sample centres whose full descriptor patch lies inside the image."""
        height, width = shape[:2]
        # Align every scale on the grid of the largest one
        margin = _SIFT_BINS_PER_SIDE * max(self.bin_sizes) // 2
        xs = np.arange(margin, width - margin + 1, self.step, dtype=np.float32)
        ys = np.arange(margin, height - margin + 1, self.step, dtype=np.float32)
        if len(xs) == 0 or len(ys) == 0:
            return np.zeros((0, 2), dtype=np.float32)
        grid_x, grid_y = np.meshgrid(xs, ys)
        return np.stack([grid_x.ravel(), grid_y.ravel()], axis=1)

    def _patch_energy(self, smoothed: np.ndarray, points: np.ndarray, bin_size: int) -> np.ndarray:
        """Mean gradient magnitude (image scaled to [0, 1]) over each descriptor patch."""
        img = smoothed.astype(np.float32) / 255.0
        gx = cv2.Sobel(img, cv2.CV_32F, 1, 0, ksize=1)
        gy = cv2.Sobel(img, cv2.CV_32F, 0, 1, ksize=1)
        magnitude = np.sqrt(gx * gx + gy * gy)
        integral = cv2.integral(magnitude, sdepth=cv2.CV_64F)

        height, width = img.shape
        half = _SIFT_BINS_PER_SIDE * bin_size / 2.0
        x0 = np.clip(np.floor(points[:, 0] - half), 0, width).astype(int)
        x1 = np.clip(np.floor(points[:, 0] + half), 0, width).astype(int)
        y0 = np.clip(np.floor(points[:, 1] - half), 0, height).astype(int)
        y1 = np.clip(np.floor(points[:, 1] + half), 0, height).astype(int)

        sums = integral[y1, x1] - integral[y0, x1] - integral[y1, x0] + integral[y0, x0]
        areas = np.maximum((x1 - x0) * (y1 - y0), 1)
        return sums / areas
