"""
Exception taxonomy for phow-bench.

Only CacheCorruptionError is recoverable (treat as a miss and recompute).
Everything else is fatal for the operation that raised it.
"""


class PhowError(Exception):
    """Base class for all phow-bench errors."""


class DecodeError(PhowError):
    """Input bytes could not be decoded into a pixel grid."""


class ConfigurationError(PhowError):
    """Dimensionality or parameter mismatch between pipeline stages."""


class CacheCorruptionError(PhowError):
    """A persisted cache entry could not be read back as the expected vector."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Corrupt cache entry '{key}': {reason}")


class UntrainedModelError(PhowError):
    """A model was used for inference before it was trained."""


class TrainingError(PhowError):
    """The solver failed to produce a usable model."""


__all__ = [
    'PhowError',
    'DecodeError',
    'ConfigurationError',
    'CacheCorruptionError',
    'UntrainedModelError',
    'TrainingError',
]
