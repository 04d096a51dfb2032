"""Tests for layered config loading: TOML, local.toml merge, env overrides, validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from catalog_etl.config import AppConfig, DocumentStoreConfig, LoggingConfig, _deep_merge, load_config

_ENV_VARS = (
    "CATALOG_ETL_DB_PATH",
    "CATALOG_ETL_MONGO_URI",
    "CATALOG_ETL_MONGO_DB",
    "CATALOG_ETL_LOG_LEVEL",
    "CATALOG_ETL_DEBUG",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "default.toml"
    path.write_text(
        """
[database]
db_path = "data/db/test.sqlite"

[docstore]
uri = "mongodb://db.example:27017"
db_name = "catalog_test"

[logging]
level = "debug"
""",
        encoding="utf-8",
    )
    return path


class TestLoadConfig:
    def test_values_from_file(self, config_file):
        config = load_config(config_file)
        assert config.database.db_path == "data/db/test.sqlite"
        assert config.docstore.uri == "mongodb://db.example:27017"
        assert config.docstore.db_name == "catalog_test"
        assert config.logging.level == "DEBUG"

    def test_defaults_for_missing_sections(self, config_file):
        config = load_config(config_file)
        assert config.docstore.enriched_collection == "enriched_products"
        assert config.docstore.raw_collection == "raw_products"
        assert config.data.taxonomy_file == "config/taxonomy/product_taxonomy.json"
        assert config.debug is False

    def test_local_toml_overrides(self, config_file):
        (config_file.parent / "local.toml").write_text(
            '[docstore]\ndb_name = "local_db"\n', encoding="utf-8"
        )
        config = load_config(config_file)
        assert config.docstore.db_name == "local_db"
        assert config.docstore.uri == "mongodb://db.example:27017"

    def test_env_overrides(self, config_file, monkeypatch):
        monkeypatch.setenv("CATALOG_ETL_DB_PATH", "/tmp/env.sqlite")
        monkeypatch.setenv("CATALOG_ETL_MONGO_URI", "mongodb://env:27017")
        monkeypatch.setenv("CATALOG_ETL_MONGO_DB", "env_db")
        monkeypatch.setenv("CATALOG_ETL_LOG_LEVEL", "warning")
        monkeypatch.setenv("CATALOG_ETL_DEBUG", "true")

        config = load_config(config_file)
        assert config.database.db_path == "/tmp/env.sqlite"
        assert config.docstore.uri == "mongodb://env:27017"
        assert config.docstore.db_name == "env_db"
        assert config.logging.level == "WARNING"
        assert config.debug is True

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.toml")

    def test_invalid_level(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text('[logging]\nlevel = "LOUD"\n', encoding="utf-8")
        with pytest.raises(ValidationError):
            load_config(path)

    def test_shipped_default_loads(self):
        config = load_config()
        assert config.docstore.db_name == "pipeline_db"


class TestModels:
    def test_frozen(self):
        with pytest.raises(ValidationError):
            AppConfig().debug = True

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            DocumentStoreConfig(server_selection_timeout_ms=0)

    def test_level_upper_cased(self):
        assert LoggingConfig(level="info").level == "INFO"

    def test_deep_merge(self):
        merged = _deep_merge({"a": {"x": 1, "y": 2}, "b": 1}, {"a": {"y": 3}, "c": 4})
        assert merged == {"a": {"x": 1, "y": 3}, "b": 1, "c": 4}
