"""
Tests for the JSON configuration file and environment defaults.
"""

import json
import os

import pytest

from csvsearch.core.config import (
    AppConfig,
    DatasetConfig,
    first_non_empty,
    first_positive,
    get_embedding_provider,
    load_config,
    resolve_config_path,
    resolve_dataset,
    resolve_db_path,
    resolve_default_topk,
    resolve_table,
)
from csvsearch.core.errors import ConfigurationError
from csvsearch.vector.embeddings import DeterministicHashEmbedding, SentenceTransformerEmbedding


def write_config(tmp_path, content, name="csv-search_config.json"):
    path = tmp_path / name
    if isinstance(content, str):
        path.write_text(content, encoding="utf-8")
    else:
        path.write_text(json.dumps(content), encoding="utf-8")
    return str(path)


FULL_CONFIG = {
    "database": {"path": "db/app.db"},
    "embedding": {"provider": "hash", "dimension": 16},
    "default_dataset": "places",
    "datasets": {
        "places": {
            "table": "spots",
            "csv": "data/places.csv",
            "batch_size": 50,
            "id_column": "code",
            "text_columns": ["name", "summary"],
            "meta_columns": ["*"],
            "lat_column": "lat",
            "lng_column": "lng",
        }
    },
    "search": {"default_topk": 5},
}


class TestLoadConfig:
    def test_full_config(self, tmp_path):
        cfg = load_config(write_config(tmp_path, FULL_CONFIG), required=True)

        assert cfg.default_dataset == "places"
        assert cfg.datasets["places"].text_columns == ["name", "summary"]
        assert cfg.search.default_topk == 5
        assert cfg.base_dir == str(tmp_path)

    def test_relative_paths_resolve_against_config_dir(self, tmp_path):
        cfg = load_config(write_config(tmp_path, FULL_CONFIG), required=True)

        assert cfg.resolve_path("data/places.csv") == os.path.join(str(tmp_path), "data", "places.csv")
        assert cfg.resolve_path("/abs/file.csv") == "/abs/file.csv"
        assert cfg.resolve_path("") == ""

    def test_missing_optional_file_returns_none(self, tmp_path):
        assert load_config(str(tmp_path / "nope.json"), required=False) is None

    def test_default_file_picked_up_from_cwd(self, tmp_path):
        write_config(tmp_path, {"default_dataset": "x"})
        cfg = load_config()
        assert cfg is not None
        assert cfg.default_dataset == "x"

    def test_missing_required_file_is_error(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(str(tmp_path / "nope.json"), required=True)

    def test_unknown_keys_rejected(self, tmp_path):
        path = write_config(tmp_path, {"database": {"path": "x", "bogus": 1}})
        with pytest.raises(ConfigurationError):
            load_config(path, required=True)

    def test_unknown_top_level_key_rejected(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(write_config(tmp_path, {"base_dir": "/tmp"}), required=True)

    def test_trailing_data_rejected(self, tmp_path):
        path = write_config(tmp_path, '{"default_dataset": "a"} {"x": 1}')
        with pytest.raises(ConfigurationError):
            load_config(path, required=True)

    def test_empty_file_is_empty_config(self, tmp_path):
        cfg = load_config(write_config(tmp_path, ""), required=True)
        assert cfg.datasets == {}

    def test_unknown_provider_rejected(self, tmp_path):
        path = write_config(tmp_path, {"embedding": {"provider": "onnx"}})
        with pytest.raises(ConfigurationError):
            load_config(path, required=True)


class TestResolution:
    def test_first_non_empty_and_first_positive(self):
        assert first_non_empty("", "  ", None, "a", "b") == "a"
        assert first_non_empty("", None) == ""
        assert first_positive(0, -1, None, 7, 3) == 7
        assert first_positive(0) == 0

    def test_resolve_config_path_without_config(self):
        assert resolve_config_path(None, "data/places.csv") == "data/places.csv"
        assert resolve_config_path(None, None) == ""
        assert resolve_dataset(None, "places") == ("places", DatasetConfig(), False)

    def test_resolve_config_path_against_config_dir(self, tmp_path):
        cfg = load_config(write_config(tmp_path, {}))
        assert resolve_config_path(cfg, "places.csv") == str(tmp_path / "places.csv")
        assert resolve_config_path(cfg, "") == ""

    def test_resolve_dataset_uses_default_dataset(self):
        cfg = AppConfig.model_validate(FULL_CONFIG)
        name, dataset, found = resolve_dataset(cfg, "")

        assert name == "places"
        assert found
        assert dataset.table == "spots"

    def test_unknown_dataset_keeps_name(self):
        cfg = AppConfig.model_validate(FULL_CONFIG)
        name, dataset, found = resolve_dataset(cfg, "other")

        assert name == "other"
        assert not found
        assert dataset == DatasetConfig()

    @pytest.mark.parametrize("dataset_name, table, override, expected", [
        ("places", "spots", "", "spots"),
        ("places", "spots", "forced", "forced"),
        ("places", "", "", "places"),
        ("", "", "", "default"),
    ])
    def test_resolve_table(self, dataset_name, table, override, expected):
        assert resolve_table(dataset_name, DatasetConfig(table=table), override) == expected

    def test_db_path_precedence(self, tmp_path, monkeypatch):
        cfg = load_config(write_config(tmp_path, FULL_CONFIG), required=True)

        assert resolve_db_path(cfg, "explicit.db") == "explicit.db"
        assert resolve_db_path(cfg) == os.path.join(str(tmp_path), "db", "app.db")

        monkeypatch.setenv("CSVSEARCH_DB_PATH", "env.db")
        assert resolve_db_path(None) == "env.db"
        monkeypatch.delenv("CSVSEARCH_DB_PATH")
        assert resolve_db_path(None) == "data/app.db"

    def test_default_topk_precedence(self, monkeypatch):
        cfg = AppConfig.model_validate(FULL_CONFIG)
        assert resolve_default_topk(cfg, 3) == 3
        assert resolve_default_topk(cfg) == 5
        assert resolve_default_topk(None) == 10

        monkeypatch.setenv("CSVSEARCH_DEFAULT_TOPK", "7")
        assert resolve_default_topk(None) == 7

    def test_bad_integer_env_is_configuration_error(self, monkeypatch):
        monkeypatch.setenv("CSVSEARCH_DEFAULT_TOPK", "many")
        with pytest.raises(ConfigurationError):
            resolve_default_topk(None)


class TestEmbeddingProvider:
    def test_hash_is_default(self):
        provider = get_embedding_provider(None)
        assert isinstance(provider, DeterministicHashEmbedding)
        assert provider.get_dimension() == 384

    def test_dimension_from_config(self):
        cfg = AppConfig.model_validate(FULL_CONFIG)
        assert get_embedding_provider(cfg).get_dimension() == 16

    def test_env_selects_sentence_transformers(self, monkeypatch):
        monkeypatch.setenv("CSVSEARCH_EMBED_PROVIDER", "sentence-transformers")
        monkeypatch.setenv("CSVSEARCH_EMBED_MODEL", "paraphrase-MiniLM-L3-v2")

        provider = get_embedding_provider(None)
        assert isinstance(provider, SentenceTransformerEmbedding)
        assert provider.model_name == "paraphrase-MiniLM-L3-v2"

    def test_explicit_arguments_win(self):
        cfg = AppConfig.model_validate(FULL_CONFIG)
        provider = get_embedding_provider(cfg, provider="sentence-transformers", model="m", max_seq_len=64)

        assert isinstance(provider, SentenceTransformerEmbedding)
        assert provider.model_name == "m"
        assert provider.max_seq_len == 64

    def test_unknown_env_provider_rejected(self, monkeypatch):
        monkeypatch.setenv("CSVSEARCH_EMBED_PROVIDER", "onnx")
        with pytest.raises(ConfigurationError):
            get_embedding_provider(None)
