"""
Vector layer: blob codec, similarity metric and embedding providers.
"""

from .codec import encode_vector, decode_vector, cosine_similarity
from .types import StoredEmbedding, QueryResult
from .embeddings import (
    IEmbeddingProvider,
    DeterministicHashEmbedding,
    SentenceTransformerEmbedding,
    SerializedEncoder,
)

__all__ = [
    'encode_vector',
    'decode_vector',
    'cosine_similarity',
    'StoredEmbedding',
    'QueryResult',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding',
    'SerializedEncoder',
]
