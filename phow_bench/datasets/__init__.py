"""Grouped image datasets, sampling and splitting."""

from phow_bench.datasets.base import (
    DatasetSplit,
    GroupedImageDataset,
    ImageRecord,
    grouped_random_split,
    sample_groups,
    uniform_sample,
)

__all__ = [
    'DatasetSplit',
    'GroupedImageDataset',
    'ImageRecord',
    'grouped_random_split',
    'sample_groups',
    'uniform_sample',
]
