"""Data types for local feature extraction."""

from dataclasses import dataclass, field
from typing import Iterator, Sequence

import numpy as np


@dataclass(frozen=True)
class ImageBounds:
    """Pixel extent of an image."""
    width: int
    height: int

    @classmethod
    def from_image(cls, image: np.ndarray) -> 'ImageBounds':
        """Bounds of a pixel grid with shape (height, width[, channels])."""
        return cls(width=int(image.shape[1]), height=int(image.shape[0]))


@dataclass(frozen=True, eq=False)
class LocalDescriptor:
    """A single keypoint: descriptor vector plus its location and scale."""
    vector: np.ndarray
    x: float
    y: float
    scale: float = 1.0


@dataclass(frozen=True, eq=False)
class DescriptorSet:
    """
    All local descriptors extracted from one image, stored as parallel arrays.

    descriptors: [N, D] float32
    locations:   [N, 2] float32, columns are (x, y)
    scales:      [N]    float32
    """
    descriptors: np.ndarray
    locations: np.ndarray
    scales: np.ndarray = field(default=None)

    def __post_init__(self):
        descriptors = np.array(self.descriptors, dtype=np.float32)
        if descriptors.ndim == 1 and descriptors.size == 0:
            descriptors = descriptors.reshape(0, 0)
        if descriptors.ndim != 2:
            raise ValueError(f"descriptors must be 2D, got shape {descriptors.shape}")

        locations = np.array(self.locations, dtype=np.float32).reshape(-1, 2)
        if len(locations) != len(descriptors):
            raise ValueError(
                f"{len(descriptors)} descriptors but {len(locations)} locations"
            )

        if self.scales is None:
            scales = np.ones(len(descriptors), dtype=np.float32)
        else:
            scales = np.array(self.scales, dtype=np.float32).reshape(-1)
        if len(scales) != len(descriptors):
            raise ValueError(f"{len(descriptors)} descriptors but {len(scales)} scales")

        for array in (descriptors, locations, scales):
            array.setflags(write=False)

        # Frozen dataclass: bypass __setattr__ to store the normalised arrays
        object.__setattr__(self, 'descriptors', descriptors)
        object.__setattr__(self, 'locations', locations)
        object.__setattr__(self, 'scales', scales)

    @classmethod
    def empty(cls, dimensionality: int = 0) -> 'DescriptorSet':
        return cls(
            descriptors=np.zeros((0, dimensionality), dtype=np.float32),
            locations=np.zeros((0, 2), dtype=np.float32),
            scales=np.zeros(0, dtype=np.float32),
        )

    @classmethod
    def from_descriptors(cls, items: Sequence[LocalDescriptor]) -> 'DescriptorSet':
        """Pack a sequence of LocalDescriptor objects into one set."""
        if not items:
            return cls.empty()
        return cls(
            descriptors=np.vstack([np.asarray(d.vector, dtype=np.float32) for d in items]),
            locations=np.array([[d.x, d.y] for d in items], dtype=np.float32),
            scales=np.array([d.scale for d in items], dtype=np.float32),
        )

    @property
    def dimensionality(self) -> int:
        return int(self.descriptors.shape[1])

    def __len__(self) -> int:
        return int(self.descriptors.shape[0])

    def __iter__(self) -> Iterator[LocalDescriptor]:
        for vector, (x, y), scale in zip(self.descriptors, self.locations, self.scales):
            yield LocalDescriptor(vector=vector, x=float(x), y=float(y), scale=float(scale))

    def subset(self, indices: np.ndarray) -> 'DescriptorSet':
        """New set holding only the given rows."""
        return DescriptorSet(
            descriptors=self.descriptors[indices],
            locations=self.locations[indices],
            scales=self.scales[indices],
        )
