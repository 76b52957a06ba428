"""Crash-safe file writes: write to a sibling temp file, then rename over the target."""

import os
import pickle
import tempfile
from pathlib import Path
from typing import Any, Union


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> Path:
    """
    Write data to path so readers only ever see the old or the new content.

    Args:
        path: Destination file (parent directories are created)
        data: Full file content

    Returns:
        The destination path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix='.tmp')
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    return path


def atomic_pickle_dump(obj: Any, path: Union[str, Path]) -> Path:
    """Pickle obj to path atomically."""
    return atomic_write_bytes(path, pickle.dumps(obj, protocol=pickle.HIGHEST_PROTOCOL))
