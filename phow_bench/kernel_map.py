"""
Explicit feature maps that let a linear classifier approximate an additive
homogeneous kernel.

The chi-squared map follows Vedaldi & Zisserman: every input dimension is
expanded to 2 * sample_steps - 1 outputs (3 with the default of 2 steps), so
a dot product of mapped histograms approximates the chi-squared kernel of the
originals.
"""

import logging
from typing import Any, Dict, Optional

import numpy as np
from sklearn.kernel_approximation import AdditiveChi2Sampler

from phow_bench.errors import ConfigurationError

logger = logging.getLogger(__name__)

KERNEL_TYPES = ('chi2', 'none')


class KernelFeatureMap:
    """Stateless per-dimension kernel expansion."""

    def __init__(
        self,
        kernel: str = 'chi2',
        sample_steps: int = 2,
        sample_interval: Optional[float] = None,
        input_length: Optional[int] = None
    ):
        """
        Args:
            kernel: 'chi2' for the additive chi-squared map, 'none' for identity
            sample_steps: Number of Fourier samples per dimension (1-3 unless
                sample_interval is given)
            sample_interval: Sampling period; library default for 1-3 steps
            input_length: Expected input length; validated on every call when set
        """
        if kernel not in KERNEL_TYPES:
            raise ConfigurationError(f"Unknown kernel: {kernel}. Available: {', '.join(KERNEL_TYPES)}")
        if sample_steps < 1:
            raise ConfigurationError(f"sample_steps must be >= 1, got {sample_steps}")
        if kernel == 'chi2' and sample_interval is None and sample_steps not in (1, 2, 3):
            raise ConfigurationError("sample_interval is required when sample_steps > 3")

        self.kernel = kernel
        self.sample_steps = int(sample_steps)
        self.sample_interval = sample_interval
        self.input_length = input_length

    @classmethod
    def from_config(cls, kernel_config: Dict[str, Any], input_length: Optional[int] = None) -> 'KernelFeatureMap':
        return cls(
            kernel=kernel_config.get('kernel', 'chi2'),
            sample_steps=kernel_config.get('sample_steps', 2),
            sample_interval=kernel_config.get('sample_interval'),
            input_length=input_length,
        )

    @property
    def expansion_factor(self) -> int:
        if self.kernel == 'none':
            return 1
        return 2 * self.sample_steps - 1

    def output_length(self, input_length: int) -> int:
        return int(input_length) * self.expansion_factor

    def config_signature(self) -> Dict[str, Any]:
        return {
            'kernel': self.kernel,
            'sample_steps': self.sample_steps,
            'sample_interval': self.sample_interval,
        }

    def expand(self, vector: np.ndarray) -> np.ndarray:
        """Map one vector; output length is input length * expansion_factor."""
        vector = np.asarray(vector, dtype=np.float64)
        if vector.ndim != 1:
            raise ConfigurationError(f"expand() takes a 1D vector, got shape {vector.shape}")
        return self.expand_batch(vector.reshape(1, -1))[0]

    def expand_batch(self, vectors: np.ndarray) -> np.ndarray:
        """Map every row of an [N, D] matrix."""
        vectors = np.asarray(vectors, dtype=np.float64)
        if vectors.ndim != 2:
            raise ConfigurationError(f"expand_batch() takes a 2D matrix, got shape {vectors.shape}")
        if self.input_length is not None and vectors.shape[1] != self.input_length:
            raise ConfigurationError(
                f"Kernel map expects vectors of length {self.input_length}, got {vectors.shape[1]}"
            )

        if self.kernel == 'none':
            return vectors.copy()

        if np.any(vectors < 0):
            raise ConfigurationError("Chi-squared kernel map requires non-negative input")

        # fit_transform sets attributes on the sampler, so never share one
        sampler = AdditiveChi2Sampler(
            sample_steps=self.sample_steps,
            sample_interval=self.sample_interval
        )
        return np.asarray(sampler.fit_transform(vectors), dtype=np.float64)

    def __str__(self) -> str:
        return f"KernelFeatureMap({self.kernel}, x{self.expansion_factor})"
