"""
Image decoding and content hashing.

Decoded images are single-channel uint8 pixel grids, the input every
keypoint extractor expects.
"""

import hashlib
import logging
from pathlib import Path
from typing import Union

import cv2
import numpy as np

from phow_bench.errors import DecodeError

logger = logging.getLogger(__name__)


def decode(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes into a grayscale pixel grid.

    Args:
        data: Encoded image (any format OpenCV can read)

    Returns:
        uint8 array of shape [height, width]

    Raises:
        DecodeError: If the bytes are empty or not a readable image
    """
    if not data:
        raise DecodeError("Empty image data")

    buffer = np.frombuffer(data, dtype=np.uint8)
    try:
        image = cv2.imdecode(buffer, cv2.IMREAD_GRAYSCALE)
    except cv2.error as e:
        raise DecodeError(f"OpenCV failed to decode image: {e}") from e

    if image is None or image.size == 0:
        raise DecodeError(f"Unreadable image data ({len(data)} bytes)")
    return image


def decode_file(path: Union[str, Path]) -> np.ndarray:
    """Read and decode an image file."""
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as e:
        raise DecodeError(f"Cannot read image {path}: {e}") from e

    try:
        return decode(data)
    except DecodeError as e:
        raise DecodeError(f"{path}: {e}") from e


def content_key(data: bytes) -> str:
    """Stable content-addressed identity for encoded image bytes."""
    return hashlib.sha256(data).hexdigest()


def to_uint8(image: np.ndarray) -> np.ndarray:
    """
    Convert a pixel grid to single-channel uint8.

    Float images are assumed to be in [0, 1].
    """
    if np.issubdtype(image.dtype, np.floating):
        image = np.clip(np.round(image * 255.0), 0, 255).astype(np.uint8)
    elif image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 3:
        if image.shape[2] == 1:
            return image[:, :, 0]
        return cv2.cvtColor(np.ascontiguousarray(image), cv2.COLOR_BGR2GRAY)
    return image
