"""
SQLite schema DDL for the relational projection store.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Table creation order respects foreign key dependencies:
  1. categories         (no FKs)
  2. subcategories      (→ categories)
  3. allergens          (no FKs)
  4. products           (→ subcategories)
  5. product_allergens  (→ products, allergens)
  6. run_metadata       (no FKs)
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_CATEGORIES = """
CREATE TABLE IF NOT EXISTS categories (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT    NOT NULL UNIQUE,
    icon        TEXT    NOT NULL DEFAULT '',
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_SUBCATEGORIES = """
CREATE TABLE IF NOT EXISTS subcategories (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    category_id  INTEGER NOT NULL REFERENCES categories(id),
    name         TEXT    NOT NULL,
    created_at   TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE(category_id, name)
);
"""

_DDL_ALLERGENS = """
CREATE TABLE IF NOT EXISTS allergens (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    name        TEXT    NOT NULL UNIQUE COLLATE NOCASE,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_PRODUCTS = """
CREATE TABLE IF NOT EXISTS products (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    raw_id            TEXT    NOT NULL UNIQUE,
    barcode           TEXT,
    subcategory_id    INTEGER NOT NULL REFERENCES subcategories(id),
    product_name      TEXT    NOT NULL,
    brand             TEXT    NOT NULL,
    nutriscore        TEXT,
    energy_kcal_100g  REAL    NOT NULL DEFAULT 0,
    sugars_100g       REAL    NOT NULL DEFAULT 0,
    salt_100g         REAL    NOT NULL DEFAULT 0,
    protein_100g      REAL    NOT NULL,
    price             REAL,
    healthy_score     INTEGER NOT NULL,
    image_url         TEXT,
    created_at        TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at        TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);
"""

_DDL_PRODUCTS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_products_subcategory
    ON products(subcategory_id);
CREATE INDEX IF NOT EXISTS idx_products_barcode
    ON products(barcode);
"""

_DDL_PRODUCT_ALLERGENS = """
CREATE TABLE IF NOT EXISTS product_allergens (
    product_id   INTEGER NOT NULL REFERENCES products(id),
    allergen_id  INTEGER NOT NULL REFERENCES allergens(id),
    PRIMARY KEY (product_id, allergen_id)
);
"""

_DDL_RUN_METADATA = """
CREATE TABLE IF NOT EXISTS run_metadata (
    run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
    run_slug        TEXT    NOT NULL UNIQUE,
    pipeline_stage  TEXT    NOT NULL,
    status          TEXT    NOT NULL DEFAULT 'started',
    config_snapshot TEXT    NOT NULL,
    rows_processed  INTEGER NOT NULL DEFAULT 0,
    error_message   TEXT,
    started_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    finished_at     TEXT
);
"""

# ── Ordered list of all DDL to apply ──────────────────────────────────────────

_ALL_DDL: list[str] = [
    _DDL_CATEGORIES,
    _DDL_SUBCATEGORIES,
    _DDL_ALLERGENS,
    _DDL_PRODUCTS,
    _DDL_PRODUCTS_INDEXES,
    _DDL_PRODUCT_ALLERGENS,
    _DDL_RUN_METADATA,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "categories",
    "subcategories",
    "allergens",
    "products",
    "product_allergens",
    "run_metadata",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent: safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the table names present in the database, sorted alphabetically."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def ensure_schema(
    db_path: str,
    wal_mode: bool = True,
    busy_timeout_ms: int = 5000,
) -> None:
    """Open the database at ``db_path`` and apply the schema.

    Used as the pre-flight check before any stage writes.

    Raises:
        StoreUnavailableError: If the file cannot be created or opened, or the
            DDL cannot be applied.
    """
    from catalog_etl.db.connection import get_connection
    from catalog_etl.docstore.connection import StoreUnavailableError

    try:
        with get_connection(db_path, wal_mode=wal_mode, busy_timeout_ms=busy_timeout_ms) as conn:
            apply_schema(conn)
    except (sqlite3.Error, OSError) as exc:
        raise StoreUnavailableError(f"SQLite database unavailable at {db_path}: {exc}") from exc
