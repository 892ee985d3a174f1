"""
Value types passed between the dataset store and the retrieval engine.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass
class StoredEmbedding:
    """One row of a namespace scan: a record joined with its vector blob."""

    id: str
    """Record identifier within the namespace"""

    metadata: Dict[str, str]
    """Metadata snapshot stored with the record"""

    lat: Optional[float]
    lng: Optional[float]

    blob: bytes
    """Raw little-endian float32 vector"""


@dataclass
class QueryResult:
    """Represents a ranked search hit."""

    namespace: str
    id: str
    score: float
    """Cosine similarity against the query vector (-1..1)"""

    metadata: Dict[str, str] = field(default_factory=dict)
    lat: Optional[float] = None
    lng: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        """Serialize in the shape returned by the search surfaces."""
        payload: Dict[str, object] = {
            "dataset": self.namespace,
            "id": self.id,
            "fields": dict(self.metadata),
            "score": self.score,
        }
        if self.lat is not None:
            payload["lat"] = self.lat
        if self.lng is not None:
            payload["lng"] = self.lng
        return payload
