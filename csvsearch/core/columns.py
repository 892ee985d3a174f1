"""
Column resolution: maps a CSV header plus column roles onto header positions.

Resolution runs once per ingestion run and has no side effects. Downstream
code only ever sees the validated ResolvedColumns mapping.
"""

from typing import Dict, List, Optional, Sequence

from .errors import ConfigurationError
from .schema import ColumnConfig, ColumnRef, ResolvedColumns

WILDCARD = "*"


def _build_lookup(header: Sequence[str]) -> Dict[str, ColumnRef]:
    lookup: Dict[str, ColumnRef] = {}
    for index, raw in enumerate(header):
        name = (raw or "").strip()
        if not name:
            continue
        lookup[name.lower()] = ColumnRef(name=name, index=index)
    return lookup


def _find(lookup: Dict[str, ColumnRef], name: str, role: str) -> ColumnRef:
    column = lookup.get(name.strip().lower())
    if column is None:
        raise ConfigurationError(f"{role} column {name.strip()!r} not found")
    return column


def _optional(lookup: Dict[str, ColumnRef], name: Optional[str], role: str) -> Optional[ColumnRef]:
    if name is None or not name.strip():
        return None
    return _find(lookup, name, role)


def _wants_all_metadata(names: Sequence[str]) -> bool:
    if not names:
        return True
    return len(names) == 1 and names[0].strip() == WILDCARD


def resolve_columns(header: Sequence[str], config: ColumnConfig) -> ResolvedColumns:
    """
    Resolve column roles against a header row.

    Args:
        header: Column names in file order
        config: Requested roles (names are trimmed and matched case-insensitively)

    Returns:
        ResolvedColumns with concrete header positions

    Raises:
        ConfigurationError: If the identifier column is missing, or any
            explicitly named column does not exist in the header
    """
    lookup = _build_lookup(header)

    if not config.id or not config.id.strip():
        raise ConfigurationError("id column is required")
    id_col = _find(lookup, config.id, "id")
    lat_col = _optional(lookup, config.lat, "latitude")
    lng_col = _optional(lookup, config.lng, "longitude")

    metadata: List[ColumnRef] = []
    seen = set()

    def add_metadata(column: ColumnRef) -> None:
        if column.name in seen:
            return
        seen.add(column.name)
        metadata.append(column)

    if _wants_all_metadata(config.metadata):
        for index, raw in enumerate(header):
            name = (raw or "").strip()
            if name:
                add_metadata(ColumnRef(name=name, index=index))
    else:
        for name in config.metadata:
            add_metadata(_find(lookup, name, "metadata"))

    # The identifier and coordinates are always kept with the record
    add_metadata(id_col)
    for column in (lat_col, lng_col):
        if column is not None:
            add_metadata(column)

    text: List[ColumnRef] = []
    if config.text:
        text_seen = set()
        for name in config.text:
            column = _find(lookup, name, "text")
            if column.name in text_seen:
                continue
            text_seen.add(column.name)
            text.append(column)
    else:
        excluded = {id_col.index}
        excluded.update(c.index for c in (lat_col, lng_col) if c is not None)
        text = [column for column in metadata if column.index not in excluded]

    return ResolvedColumns(id=id_col, text=text, metadata=metadata, lat=lat_col, lng=lng_col)


def parse_column_list(value: Optional[str]) -> List[str]:
    """Split a comma-separated column list, dropping blanks."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
