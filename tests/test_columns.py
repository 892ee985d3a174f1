"""
Tests for column role resolution.
"""

import pytest

from csvsearch.core.columns import parse_column_list, resolve_columns
from csvsearch.core.errors import ConfigurationError
from csvsearch.core.schema import ColumnConfig

HEADER = ["id", "name", "description", "lat", "lng"]


def names(columns):
    return [c.name for c in columns]


def test_defaults_keep_all_metadata_and_embed_non_key_columns():
    resolved = resolve_columns(HEADER, ColumnConfig(id="id", lat="lat", lng="lng"))

    assert resolved.id.index == 0
    assert names(resolved.metadata) == HEADER
    assert names(resolved.text) == ["name", "description"]
    assert resolved.lat.index == 3
    assert resolved.lng.index == 4


def test_wildcard_equals_unspecified_metadata():
    default = resolve_columns(HEADER, ColumnConfig(id="id"))
    wildcard = resolve_columns(HEADER, ColumnConfig(id="id", metadata=["*"]))
    assert wildcard == default


def test_matching_is_case_insensitive_and_trimmed():
    header = [" ID ", "Name"]
    resolved = resolve_columns(header, ColumnConfig(id="id", text=[" NAME "]))

    assert resolved.id.name == "ID"
    assert resolved.id.index == 0
    assert names(resolved.text) == ["Name"]


@pytest.mark.parametrize("identifier", ["", "   "])
def test_blank_identifier_is_configuration_error(identifier):
    with pytest.raises(ConfigurationError, match="id column is required"):
        resolve_columns(HEADER, ColumnConfig(id=identifier))


def test_unknown_identifier_is_configuration_error():
    with pytest.raises(ConfigurationError, match="not found"):
        resolve_columns(HEADER, ColumnConfig(id="code"))


@pytest.mark.parametrize("config", [
    ColumnConfig(id="id", text=["missing"]),
    ColumnConfig(id="id", metadata=["name", "missing"]),
    ColumnConfig(id="id", lat="latitude"),
    ColumnConfig(id="id", lng="longitude"),
])
def test_unknown_explicit_columns_are_configuration_errors(config):
    with pytest.raises(ConfigurationError):
        resolve_columns(HEADER, config)


def test_identifier_and_coordinates_always_kept_as_metadata():
    resolved = resolve_columns(HEADER, ColumnConfig(id="id", metadata=["name"], lat="lat", lng="lng"))
    assert names(resolved.metadata) == ["name", "id", "lat", "lng"]


def test_absent_coordinates_are_none():
    resolved = resolve_columns(HEADER, ColumnConfig(id="id"))
    assert resolved.lat is None
    assert resolved.lng is None
    # Without coordinate roles the lat/lng columns are ordinary text
    assert names(resolved.text) == ["name", "description", "lat", "lng"]


def test_duplicates_are_removed():
    resolved = resolve_columns(
        HEADER,
        ColumnConfig(id="id", text=["name", "NAME"], metadata=["name", "Name", "id"]),
    )
    assert names(resolved.text) == ["name"]
    assert names(resolved.metadata) == ["name", "id"]


def test_blank_header_cells_are_ignored():
    resolved = resolve_columns(["id", "", "note"], ColumnConfig(id="id"))
    assert [(c.name, c.index) for c in resolved.metadata] == [("id", 0), ("note", 2)]


def test_column_may_be_text_and_metadata():
    resolved = resolve_columns(HEADER, ColumnConfig(id="id", text=["name"], metadata=["name"]))
    assert "name" in names(resolved.text)
    assert "name" in names(resolved.metadata)


def test_parse_column_list():
    assert parse_column_list(" a, ,b ,") == ["a", "b"]
    assert parse_column_list("*") == ["*"]
    assert parse_column_list("") == []
    assert parse_column_list(None) == []
