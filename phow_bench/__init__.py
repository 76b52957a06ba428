"""
phow-bench: image classification with pyramid histograms of visual words.

Dense SIFT descriptors are quantised against a k-means vocabulary, pooled
over a spatial pyramid, lifted through an explicit chi-squared kernel map and
classified by one-vs-rest linear models.
"""

from phow_bench.errors import (
    CacheCorruptionError,
    ConfigurationError,
    DecodeError,
    PhowError,
    TrainingError,
    UntrainedModelError,
)

__version__ = '0.1.0'

__all__ = [
    '__version__',
    'PhowError',
    'DecodeError',
    'ConfigurationError',
    'CacheCorruptionError',
    'UntrainedModelError',
    'TrainingError',
]
