"""
Tests for the float32 blob codec and cosine similarity.
"""

import struct

import numpy as np
import pytest

from csvsearch.core.errors import FormatError
from csvsearch.vector.codec import cosine_similarity, decode_vector, encode_vector


def test_encode_is_little_endian_float32():
    """Each element is 4 little-endian bytes, no header."""
    blob = encode_vector([1.0, -2.5, 0.0])
    assert blob == struct.pack("<3f", 1.0, -2.5, 0.0)
    assert len(blob) == 12


def test_decode_restores_float32_values():
    vector = np.array([0.1, 0.2, -3.75], dtype=np.float32)
    decoded = decode_vector(encode_vector(vector))
    assert decoded.dtype == np.float32
    assert np.array_equal(decoded, vector)


def test_empty_blob_decodes_to_empty_vector():
    assert encode_vector([]) == b""
    assert decode_vector(b"").size == 0


@pytest.mark.parametrize("length", [1, 3, 7, 9])
def test_decode_rejects_partial_floats(length):
    with pytest.raises(FormatError):
        decode_vector(b"\x00" * length)


class TestCosineSimilarity:
    """Cosine similarity bounds and degenerate inputs."""

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_magnitude_does_not_matter(self):
        assert cosine_similarity([1.0, 1.0], [10.0, 10.0]) == pytest.approx(1.0)

    def test_empty_vector_scores_zero(self):
        assert cosine_similarity([], [1.0]) == 0.0
        assert cosine_similarity([], []) == 0.0

    def test_length_mismatch_scores_zero(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0]) == 0.0

    def test_zero_norm_scores_zero(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_random_vectors_stay_in_bounds(self):
        rng = np.random.default_rng(7)
        for _ in range(50):
            a = rng.normal(size=16).astype(np.float32)
            b = rng.normal(size=16).astype(np.float32)
            score = cosine_similarity(a, b)
            assert -1.0 <= score <= 1.0
