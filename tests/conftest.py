"""
Shared pytest fixtures for the catalog-etl test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema applied. Created anew for each test that requests it.
  - ``taxonomy`` / ``seeded_db``: a small synthetic taxonomy and a DB seeded
    with it.
  - ``mongo_client`` / ``mongo_db``: ``mongomock`` standing in for MongoDB.
  - ``app_config``: an ``AppConfig`` pointing at a temp-file database.
  - ``make_enriched``: factory for enrichment documents.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Callable, Generator

import mongomock
import pytest

from catalog_etl.config import AppConfig, DatabaseConfig, DataConfig, LoggingConfig
from catalog_etl.db.schema import apply_schema
from catalog_etl.pipeline.seed import seed_allergens, seed_taxonomy
from catalog_etl.taxonomy.product_taxonomy import Taxonomy, build_taxonomy, load_taxonomy

PROJECT_ROOT = Path(__file__).parent.parent
TAXONOMY_FILE = PROJECT_ROOT / "config" / "taxonomy" / "product_taxonomy.json"


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    yield conn
    conn.close()


# ── Taxonomy fixtures ─────────────────────────────────────────────────────────

@pytest.fixture
def taxonomy() -> Taxonomy:
    """Three-category synthetic taxonomy; Drinks is declared first."""
    return build_taxonomy(
        categories=[
            {"name": "Drinks", "icon": "D", "subcategories": ["Sodas", "Teas"]},
            {"name": "Snacks", "icon": "S", "subcategories": ["Bars", "Chips"]},
            {"name": "Dairy", "icon": "M", "subcategories": ["Cheese"]},
        ],
        keywords={
            "Drinks": ["soda", "drink", "tea"],
            "Snacks": ["bar", "chips", "snack"],
            "Dairy": ["cheese", "milk"],
        },
        allergens=["Milk", "Gluten", "Peanuts", "Sesame seeds"],
    )


@pytest.fixture
def shipped_taxonomy() -> Taxonomy:
    """The taxonomy committed under ``config/taxonomy/``."""
    return load_taxonomy(TAXONOMY_FILE)


@pytest.fixture
def seeded_db(in_memory_db, taxonomy) -> sqlite3.Connection:
    """``in_memory_db`` seeded with the synthetic taxonomy and allergens."""
    seed_taxonomy(in_memory_db, taxonomy)
    seed_allergens(in_memory_db, taxonomy.allergens)
    in_memory_db.commit()
    return in_memory_db


# ── Document store fixtures ───────────────────────────────────────────────────

@pytest.fixture
def mongo_client() -> mongomock.MongoClient:
    return mongomock.MongoClient()


@pytest.fixture
def mongo_db(mongo_client):
    return mongo_client["pipeline_db"]


# ── Config fixture ────────────────────────────────────────────────────────────

@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """AppConfig with a temp-file database, the shipped taxonomy and no log file."""
    return AppConfig(
        database=DatabaseConfig(db_path=str(tmp_path / "catalog.sqlite")),
        data=DataConfig(taxonomy_file=str(TAXONOMY_FILE)),
        logging=LoggingConfig(log_file=""),
    )


# ── Sample record factory ─────────────────────────────────────────────────────

@pytest.fixture
def make_enriched() -> Callable[..., dict[str, Any]]:
    """Build an enrichment document in the nested ``{raw_id, status, data}`` shape."""

    def _make(raw_id: str = "r1", status: str = "success", **data: Any) -> dict[str, Any]:
        payload = {
            "product_name": "Cola Soda",
            "brand": "Fizz",
            "category": "Beverages",
            "nutriscore": "E",
            "energy_kcal_100g": 42,
            "sugars_100g": 10.6,
            "salt_100g": 0.01,
        }
        payload.update(data)
        return {"raw_id": raw_id, "status": status, "data": payload}

    return _make
