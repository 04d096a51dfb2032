"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      : committed static defaults
  2. ``config/local.toml``        : optional local overrides (gitignored)
  3. ``.env``                     : local secrets and env overrides (gitignored)
  4. Environment variables        : ``CATALOG_ETL_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Every stage, the resync protocol and every CLI command receive an
``AppConfig`` instance; store locations are never read from the environment
anywhere else.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite (relational projection store) connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/catalog.sqlite"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class DocumentStoreConfig(BaseModel):
    """MongoDB (secondary document store) settings.

    ``enriched_collection`` and ``raw_collection`` belong to the upstream
    collector/enrichment jobs; this project only reads them.
    """

    model_config = ConfigDict(frozen=True)

    uri: str = "mongodb://localhost:27017"
    db_name: str = "pipeline_db"
    enriched_collection: str = "enriched_products"
    raw_collection: str = "raw_products"
    server_selection_timeout_ms: int = 5000

    @field_validator("server_selection_timeout_ms")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"server_selection_timeout_ms must be positive, got {v}.")
        return v


class DataConfig(BaseModel):
    """Filesystem paths for static reference data."""

    model_config = ConfigDict(frozen=True)

    taxonomy_file: str = "config/taxonomy/product_taxonomy.json"


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/catalog_etl.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration, the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    docstore: DocumentStoreConfig = DocumentStoreConfig()
    data: DataConfig = DataConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply CATALOG_ETL_* env vars to the raw config dict.

    Supported overrides:
      CATALOG_ETL_DB_PATH    → raw["database"]["db_path"]
      CATALOG_ETL_MONGO_URI  → raw["docstore"]["uri"]
      CATALOG_ETL_MONGO_DB   → raw["docstore"]["db_name"]
      CATALOG_ETL_LOG_LEVEL  → raw["logging"]["level"]
      CATALOG_ETL_DEBUG      → raw["debug"]
    """
    if db_path := os.environ.get("CATALOG_ETL_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if mongo_uri := os.environ.get("CATALOG_ETL_MONGO_URI"):
        raw.setdefault("docstore", {})["uri"] = mongo_uri

    if mongo_db := os.environ.get("CATALOG_ETL_MONGO_DB"):
        raw.setdefault("docstore", {})["db_name"] = mongo_db

    if log_level := os.environ.get("CATALOG_ETL_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("CATALOG_ETL_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        docstore=DocumentStoreConfig(**raw.get("docstore", {})),
        data=DataConfig(**raw.get("data", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
