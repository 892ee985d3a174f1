"""
Binary encoding of embedding vectors and the cosine similarity metric.

Vectors are stored as raw little-endian float32 values with no header; the
element count is recovered from the blob length.
"""

from typing import Sequence, Union

import numpy as np

from ..core.errors import FormatError

_FLOAT32_LE = np.dtype("<f4")

VectorLike = Union[Sequence[float], np.ndarray]


def encode_vector(vector: VectorLike) -> bytes:
    """Serialize a vector into a little-endian float32 blob."""
    return np.asarray(vector, dtype=_FLOAT32_LE).reshape(-1).tobytes()


def decode_vector(blob: bytes) -> np.ndarray:
    """
    Deserialize a blob produced by encode_vector.

    Raises:
        FormatError: If the blob length is not a multiple of 4
    """
    if len(blob) % _FLOAT32_LE.itemsize != 0:
        raise FormatError(f"invalid vector blob length {len(blob)}")
    return np.frombuffer(blob, dtype=_FLOAT32_LE).astype(np.float32)


def cosine_similarity(vec_a: VectorLike, vec_b: VectorLike) -> float:
    """
    Compute cosine similarity between two vectors.

    Returns 0.0 when either vector is empty, the lengths differ, or either
    vector has zero magnitude.
    """
    a = np.asarray(vec_a, dtype=np.float64).reshape(-1)
    b = np.asarray(vec_b, dtype=np.float64).reshape(-1)
    if a.size == 0 or b.size == 0 or a.size != b.size:
        return 0.0

    norm_a = np.sqrt(np.dot(a, a))
    norm_b = np.sqrt(np.dot(b, b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    score = float(np.dot(a, b) / (norm_a * norm_b))
    # rounding can push parallel vectors a hair past the bounds
    return max(-1.0, min(1.0, score))
