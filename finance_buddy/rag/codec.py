"""
Embedding wire format.

Format ``f32le/v1``: an embedding is stored as a contiguous buffer of
little-endian IEEE-754 float32 values, ``dimension * 4`` bytes, no header.
The byte order is fixed so index files move between hosts unchanged.
"""

from typing import Sequence

import numpy as np

from finance_buddy.errors import VectorDecodeError

EMBEDDING_FORMAT = "f32le/v1"

_DTYPE = np.dtype('<f4')


def encode_embedding(vector: Sequence[float]) -> bytes:
    """Serialize a 1-D vector to the f32le/v1 blob"""
    arr = np.asarray(vector, dtype=_DTYPE)
    if arr.ndim != 1:
        raise ValueError(f"Embedding must be 1-D, got shape {arr.shape}")
    return arr.tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    """Parse an f32le/v1 blob back into a float32 vector"""
    if blob is None or len(blob) == 0:
        raise VectorDecodeError("Empty embedding blob")
    if len(blob) % _DTYPE.itemsize != 0:
        raise VectorDecodeError(
            f"Embedding blob length {len(blob)} is not a multiple of {_DTYPE.itemsize}"
        )
    # Native-endian copy so downstream math never sees a byte-swapped view
    return np.frombuffer(blob, dtype=_DTYPE).astype(np.float32)
