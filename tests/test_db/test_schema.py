"""Tests for SQLite schema: idempotency, table creation, FK and uniqueness enforcement."""

from __future__ import annotations

import sqlite3

import pytest

from catalog_etl.db.connection import get_connection
from catalog_etl.db.schema import (
    ALL_TABLE_NAMES,
    apply_schema,
    ensure_schema,
    get_existing_tables,
)
from catalog_etl.docstore.connection import StoreUnavailableError


class TestApplySchema:
    def test_all_tables_created(self, in_memory_db):
        tables = get_existing_tables(in_memory_db)
        for expected_table in ALL_TABLE_NAMES:
            assert expected_table in tables, (
                f"Expected table '{expected_table}' not found in database. Found: {tables}"
            )

    def test_idempotent_double_apply(self, in_memory_db):
        """apply_schema() called twice must not raise errors."""
        apply_schema(in_memory_db)
        assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(in_memory_db))

    def test_file_database_via_get_connection(self, tmp_path):
        db_path = tmp_path / "nested" / "catalog.sqlite"
        with get_connection(str(db_path)) as conn:
            apply_schema(conn)
            mode = conn.execute("PRAGMA journal_mode;").fetchone()[0]
        assert db_path.exists()
        assert mode.lower() == "wal"


class TestConstraints:
    def test_fk_enforcement_is_on(self, in_memory_db):
        row = in_memory_db.execute("PRAGMA foreign_keys;").fetchone()
        assert row[0] == 1

    def test_product_with_unknown_subcategory_rejected(self, in_memory_db):
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                """
                INSERT INTO products (raw_id, subcategory_id, product_name, brand,
                                      protein_100g, healthy_score)
                VALUES ('r1', 999, 'X', 'Y', 1.0, 50);
                """
            )

    def test_allergen_names_unique_case_insensitive(self, in_memory_db):
        in_memory_db.execute("INSERT INTO allergens (name) VALUES ('Milk');")
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute("INSERT INTO allergens (name) VALUES ('MILK');")

    def test_subcategory_unique_per_category(self, in_memory_db):
        in_memory_db.execute("INSERT INTO categories (name) VALUES ('A');")
        in_memory_db.execute("INSERT INTO subcategories (category_id, name) VALUES (1, 'Other');")
        with pytest.raises(sqlite3.IntegrityError):
            in_memory_db.execute(
                "INSERT INTO subcategories (category_id, name) VALUES (1, 'Other');"
            )


class TestGetConnection:
    def test_rolls_back_on_error(self, tmp_path):
        db_path = str(tmp_path / "rb.sqlite")
        with get_connection(db_path) as conn:
            apply_schema(conn)

        with pytest.raises(RuntimeError):
            with get_connection(db_path) as conn:
                conn.execute("INSERT INTO categories (name) VALUES ('Temp');")
                raise RuntimeError("boom")

        with get_connection(db_path) as conn:
            assert conn.execute("SELECT COUNT(*) FROM categories;").fetchone()[0] == 0


class TestEnsureSchema:
    def test_creates_tables(self, tmp_path):
        db_path = str(tmp_path / "ok.sqlite")
        ensure_schema(db_path)
        with get_connection(db_path) as conn:
            assert set(ALL_TABLE_NAMES) <= set(get_existing_tables(conn))

    def test_unopenable_path_raises_store_unavailable(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(StoreUnavailableError, match="SQLite database unavailable"):
            ensure_schema(str(blocker / "sub" / "db.sqlite"))
