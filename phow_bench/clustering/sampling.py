"""
Descriptor sampling for vocabulary training.
"""

import logging
import math
from typing import Callable, Optional, Sequence

import numpy as np

from phow_bench.datasets.base import ImageRecord, uniform_sample
from phow_bench.feature_extraction.base import KeypointExtractor
from phow_bench.image_io import decode_file
from phow_bench.parallel import parallel_map

logger = logging.getLogger(__name__)


def _load_record(record: ImageRecord) -> np.ndarray:
    return decode_file(record.path)


def build_training_sample(
    records: Sequence[ImageRecord],
    extractor: KeypointExtractor,
    n_images: int = 30,
    descriptors_per_image: Optional[int] = None,
    max_descriptors: Optional[int] = None,
    seed: int = 42,
    num_workers: Optional[int] = 1,
    load_image: Callable[[ImageRecord], np.ndarray] = _load_record
) -> np.ndarray:
    """
    Pool descriptors from a uniform random subset of images.

    Extraction uses the extractor's training energy threshold, which is
    looser than the one used for final features. Descriptors are stacked in
    the order of the sampled images, so the result only depends on seed.

    Args:
        records: Candidate images (normally the training split)
        extractor: Keypoint extractor
        n_images: Number of images to draw
        descriptors_per_image: If set, keep a seeded random subset of this
            many descriptors from each image. Defaults to an even share of
            max_descriptors, so a capped sample still covers every image
        max_descriptors: If set, keep a seeded random subset of this many rows
        seed: Seed for both the image draw and the row subset
        num_workers: Threads used for extraction
        load_image: Maps a record to a pixel grid

    Returns:
        Descriptor matrix [N, D] (float64)
    """
    chosen = uniform_sample(records, n_images, seed=seed)
    threshold = extractor.training_energy_threshold
    if descriptors_per_image is None and max_descriptors is not None and chosen:
        descriptors_per_image = math.ceil(max_descriptors / len(chosen))

    def extract(job) -> np.ndarray:
        index, record = job
        descriptors = extractor.detect(load_image(record), energy_threshold=threshold).descriptors
        if descriptors_per_image is not None and len(descriptors) > descriptors_per_image:
            rng = np.random.default_rng(seed + index)
            keep = np.sort(rng.choice(len(descriptors), size=descriptors_per_image, replace=False))
            descriptors = descriptors[keep]
        return descriptors

    jobs = list(enumerate(chosen))
    blocks = parallel_map(extract, jobs, num_workers=num_workers, desc="Sampling descriptors")
    blocks = [b for b in blocks if len(b) > 0]
    if not blocks:
        logger.warning(f"No descriptors survived extraction on {len(chosen)} sampled images")
        return np.zeros((0, extractor.dimensionality), dtype=np.float64)

    sample = np.vstack(blocks).astype(np.float64)
    if max_descriptors is not None and len(sample) > max_descriptors:
        rng = np.random.default_rng(seed)
        keep = np.sort(rng.choice(len(sample), size=max_descriptors, replace=False))
        sample = sample[keep]

    logger.info(f"Built vocabulary training sample: {sample.shape[0]} descriptors from {len(chosen)} images")
    return sample
