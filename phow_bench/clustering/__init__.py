"""Visual vocabulary learning and assignment."""

from phow_bench.clustering.vector_quantizer import VectorQuantizer
from phow_bench.clustering.sampling import build_training_sample

__all__ = [
    'VectorQuantizer',
    'build_training_sample',
]
