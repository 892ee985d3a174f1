"""
Shared value types for column resolution, ingestion and search.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class ColumnConfig:
    """Column roles as given by the caller (raw, unresolved names)."""

    id: str = "id"
    text: List[str] = field(default_factory=list)
    metadata: List[str] = field(default_factory=list)  # empty or ["*"] keeps every column
    lat: str = ""
    lng: str = ""


@dataclass(frozen=True)
class ColumnRef:
    name: str
    index: int


@dataclass(frozen=True)
class ResolvedColumns:
    """Column roles mapped onto header positions. lat/lng are None when unused."""

    id: ColumnRef
    text: List[ColumnRef]
    metadata: List[ColumnRef]
    lat: Optional[ColumnRef] = None
    lng: Optional[ColumnRef] = None


@dataclass
class ParsedRecord:
    id: str
    metadata: Dict[str, str]
    text_parts: List[str]
    lat: Optional[float] = None
    lng: Optional[float] = None

    @property
    def text(self) -> str:
        """Embeddable text: non-blank text parts joined by newlines."""
        return "\n".join(self.text_parts)

    @property
    def has_point(self) -> bool:
        return self.lat is not None and self.lng is not None


@dataclass
class StoredRecord:
    """Primary record as persisted in the store."""

    namespace: str
    id: str
    metadata: Dict[str, str]
    lat: Optional[float]
    lng: Optional[float]
    fingerprint: Optional[str]


@dataclass(frozen=True)
class Filter:
    """Exact-match metadata condition."""

    field: str
    value: str

    @classmethod
    def parse(cls, raw: str) -> "Filter":
        """Parse a `field=value` expression."""
        if "=" not in raw:
            raise ValueError("filter must be in the form field=value")
        name, value = raw.split("=", 1)
        name = name.strip()
        if not name:
            raise ValueError("filter field must not be empty")
        return cls(field=name, value=value)


@dataclass
class IngestSummary:
    namespace: str
    rows_read: int = 0
    rows_written: int = 0
    rows_skipped: int = 0
    embeddings_written: int = 0
    batches_committed: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "namespace": self.namespace,
            "rows_read": self.rows_read,
            "rows_written": self.rows_written,
            "rows_skipped": self.rows_skipped,
            "embeddings_written": self.embeddings_written,
            "batches_committed": self.batches_committed,
        }
