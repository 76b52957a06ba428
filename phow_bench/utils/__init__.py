"""Shared helpers for phow-bench."""

from .atomic import atomic_write_bytes, atomic_pickle_dump

__all__ = ['atomic_write_bytes', 'atomic_pickle_dump']
