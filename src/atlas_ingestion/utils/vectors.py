"""Fixed-width binary encoding for embedding vectors.

Vectors are stored as packed little-endian float32 values, four bytes per
component, with no header. The dimension is therefore ``len(blob) // 4`` and is
cross-checked against the dimension recorded next to the blob.
"""

from typing import Optional, Sequence

import numpy as np

FLOAT32_LE = np.dtype("<f4")
BYTES_PER_COMPONENT = FLOAT32_LE.itemsize


def encode_vector(vector: Sequence[float]) -> bytes:
    """Pack a vector into little-endian float32 bytes."""
    array = np.asarray(vector, dtype=FLOAT32_LE)
    if array.ndim != 1:
        raise ValueError(f"Expected a one-dimensional vector, got shape {array.shape}")
    return array.tobytes()


def decode_vector(blob: bytes, dimension: Optional[int] = None) -> list[float]:
    """Unpack little-endian float32 bytes into a list of floats.

    Raises:
        ValueError: If the blob is not a whole number of float32 values or does
            not hold exactly ``dimension`` components.
    """
    if len(blob) % BYTES_PER_COMPONENT != 0:
        raise ValueError(
            f"Vector blob length {len(blob)} is not a multiple of {BYTES_PER_COMPONENT}"
        )
    components = len(blob) // BYTES_PER_COMPONENT
    if dimension is not None and components != dimension:
        raise ValueError(f"Vector blob holds {components} components, expected {dimension}")
    return np.frombuffer(blob, dtype=FLOAT32_LE).astype(float).tolist()
