"""
Ranked retrieval over stored embeddings.

Exhaustive scan of a namespace: every record with an embedding is checked
against the metadata filters, scored by cosine similarity against the query
vector, and ranked by score descending with ties broken by ascending id.
"""

import time
from typing import Iterable, List, Optional

from .context import OperationContext
from .schema import Filter
from .store import DatasetStore
from ..vector.codec import cosine_similarity, decode_vector
from ..vector.types import QueryResult, StoredEmbedding
from ..util.logging import logger

DEFAULT_LIMIT = 10

# Deadline/cancel is checked every this many scanned records
CHECK_INTERVAL = 64


def matches_filters(metadata, filters: Iterable[Filter]) -> bool:
    """AND of exact, case-sensitive field equality checks."""
    for condition in filters:
        value = metadata.get(condition.field)
        if value is None or value != condition.value:
            return False
    return True


def rank_results(results: List[QueryResult], limit: int) -> List[QueryResult]:
    """Sort by score descending, then id ascending, and keep the top limit."""
    results.sort(key=lambda r: (-r.score, r.id))
    return results[:limit]


class RetrievalEngine:
    """Scores the embeddings of one namespace against a query vector."""

    def __init__(self, store: DatasetStore):
        self.store = store

    def search(
        self,
        namespace: str,
        query_vector,
        limit: Optional[int] = DEFAULT_LIMIT,
        filters: Iterable[Filter] = (),
        context: Optional[OperationContext] = None,
    ) -> List[QueryResult]:
        """
        Rank every record in namespace by similarity to query_vector.

        Args:
            namespace: Namespace to scan
            query_vector: Encoded query (same dimension as stored vectors)
            limit: Maximum results; None or <= 0 means 10
            filters: Exact-match metadata conditions, combined with AND
            context: Optional deadline/cancel signal checked during the scan

        Returns:
            At most limit QueryResult objects in rank order

        Raises:
            DeadlineExceeded: If the deadline passes during the scan
            OperationCancelled: If the context is cancelled
            FormatError: If a stored blob is corrupt
            StorageError: If the scan fails
        """
        if limit is None or limit <= 0:
            limit = DEFAULT_LIMIT
        filters = list(filters)
        started = time.time()

        if context is not None:
            context.check("search")

        candidates: List[QueryResult] = []
        scanned = 0
        scan = self.store.scan_embeddings(namespace, context=context)
        try:
            for stored in scan:
                scanned += 1
                if context is not None and scanned % CHECK_INTERVAL == 0:
                    context.check("search")
                if not matches_filters(stored.metadata, filters):
                    continue
                candidates.append(self._score(namespace, stored, query_vector))
        finally:
            scan.close()

        if context is not None:
            context.check("search")

        results = rank_results(candidates, limit)
        logger.log_search(
            namespace,
            candidates=len(candidates),
            returned=len(results),
            duration_ms=(time.time() - started) * 1000,
            filters=len(filters),
        )
        return results

    @staticmethod
    def _score(namespace: str, stored: StoredEmbedding, query_vector) -> QueryResult:
        vector = decode_vector(stored.blob)
        return QueryResult(
            namespace=namespace,
            id=stored.id,
            score=cosine_similarity(query_vector, vector),
            metadata=dict(stored.metadata),
            lat=stored.lat,
            lng=stored.lng,
        )
