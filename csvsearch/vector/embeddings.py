"""
Embedding providers and the serialized encoder shared by ingestion and search.

Providers turn text into dense vectors. The core never calls a provider
directly: it goes through SerializedEncoder, which funnels every call through
one lock (inference runtimes must not be driven concurrently) and converts
provider failures into EncodingError.
"""

from abc import ABC, abstractmethod
import hashlib
import threading
from typing import Optional

import numpy as np

from ..core.errors import EncodingError


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider.

    Produces reproducible, L2-normalized vectors without any model download,
    which keeps tests and offline runs cheap. Identical text always yields
    the identical vector; there is no semantic relationship between vectors.
    """

    def __init__(self, dimension: int = 384):
        if dimension <= 0:
            raise ValueError("dimension must be positive")
        self.dimension = dimension

    def embed_text(self, text: str) -> list[float]:
        """Generate deterministic embedding vector using SHA-256 blocks."""
        seed = text.encode("utf-8")
        raw = bytearray()
        counter = 0
        while len(raw) < self.dimension * 4:
            raw.extend(hashlib.sha256(seed + counter.to_bytes(4, "little")).digest())
            counter += 1

        # Map each unsigned 32-bit chunk to [-1, 1]
        values = np.frombuffer(bytes(raw[: self.dimension * 4]), dtype="<u4").astype(np.float64)
        vector = values / float(2**32) * 2.0 - 1.0

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.astype(np.float32).tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    The model is loaded lazily on first use and emits normalized vectors so
    cosine similarity and dot product coincide.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", max_seq_len: Optional[int] = None):
        self.model_name = model_name
        self.max_seq_len = max_seq_len
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name)
            if self.max_seq_len:
                self._model.max_seq_length = self.max_seq_len
        return self._model

    def embed_text(self, text: str) -> list[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False, normalize_embeddings=True)
        return embedding.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension


class SerializedEncoder:
    """
    Single critical section around an embedding provider.

    Both the ingestion pipeline and query encoding hold a reference to the
    same instance, so at most one embed_text call is in flight at a time.
    """

    def __init__(self, provider: IEmbeddingProvider):
        self.provider = provider
        self._lock = threading.Lock()
        self.calls = 0

    def encode(self, text: str) -> np.ndarray:
        """
        Embed non-empty text into a float32 vector.

        Raises:
            EncodingError: If the text is blank or the provider fails
        """
        if not text or not text.strip():
            raise EncodingError("cannot encode empty text")

        with self._lock:
            self.calls += 1
            try:
                embedding = self.provider.embed_text(text)
            except EncodingError:
                raise
            except Exception as e:
                raise EncodingError(f"encode failed: {e}") from e

        vector = np.asarray(embedding, dtype=np.float32).reshape(-1)
        if vector.size == 0:
            raise EncodingError("provider returned an empty vector")
        if not np.all(np.isfinite(vector)):
            raise EncodingError("provider returned non-finite values")
        return vector

    def get_dimension(self) -> int:
        return self.provider.get_dimension()
