"""
Repositories for the seeded reference tables: categories, subcategories
and allergens.

Seeding is insert-if-absent (``INSERT OR IGNORE`` on the natural key).
There is no update path: names are immutable once created.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from catalog_etl.db.repositories.base import BaseRepository
from catalog_etl.models.taxonomy import Allergen, Category, Subcategory

logger = logging.getLogger(__name__)


class CategoryRepository(BaseRepository):
    """Read/write access to the ``categories`` table."""

    table = "categories"

    def insert_if_absent(self, name: str, icon: str = "") -> bool:
        """Insert a category unless one with ``name`` already exists.

        Returns:
            ``True`` if a row was inserted.
        """
        cur = self.execute(
            "INSERT OR IGNORE INTO categories (name, icon) VALUES (?, ?);",
            (name, icon),
        )
        return cur.rowcount == 1

    def get_by_name(self, name: str) -> Optional[Category]:
        row = self.fetchone("SELECT * FROM categories WHERE name = ?;", (name,))
        return _row_to_category(row) if row else None

    def get_all(self) -> list[Category]:
        """All categories ordered by surrogate id."""
        rows = self.fetchall("SELECT * FROM categories ORDER BY id;")
        return [_row_to_category(r) for r in rows]


class SubcategoryRepository(BaseRepository):
    """Read/write access to the ``subcategories`` table."""

    table = "subcategories"

    def insert_if_absent(self, category_id: int, name: str) -> bool:
        """Insert a subcategory unless ``(category_id, name)`` already exists.

        Returns:
            ``True`` if a row was inserted.
        """
        cur = self.execute(
            "INSERT OR IGNORE INTO subcategories (category_id, name) VALUES (?, ?);",
            (category_id, name),
        )
        return cur.rowcount == 1

    def get_id(self, category_name: str, subcategory_name: str) -> Optional[int]:
        """Resolve a ``(category, subcategory)`` name pair to its surrogate id."""
        row = self.fetchone(
            """
            SELECT s.id
            FROM subcategories s
            JOIN categories c ON c.id = s.category_id
            WHERE c.name = ? AND s.name = ?;
            """,
            (category_name, subcategory_name),
        )
        return int(row["id"]) if row else None

    def id_map(self) -> dict[tuple[str, str], int]:
        """Map every ``(category_name, subcategory_name)`` to its id."""
        rows = self.fetchall(
            """
            SELECT s.id, c.name AS category_name, s.name AS subcategory_name
            FROM subcategories s
            JOIN categories c ON c.id = s.category_id;
            """
        )
        return {(r["category_name"], r["subcategory_name"]): int(r["id"]) for r in rows}

    def get_all(self) -> list[Subcategory]:
        """All subcategories ordered by surrogate id."""
        rows = self.fetchall("SELECT * FROM subcategories ORDER BY id;")
        return [_row_to_subcategory(r) for r in rows]


class AllergenRepository(BaseRepository):
    """Read/write access to the ``allergens`` table."""

    table = "allergens"

    def insert_if_absent(self, name: str) -> bool:
        """Insert an allergen unless one with ``name`` (case-insensitive) exists."""
        cur = self.execute("INSERT OR IGNORE INTO allergens (name) VALUES (?);", (name,))
        return cur.rowcount == 1

    def get_all(self) -> list[Allergen]:
        """All allergens ordered by surrogate id."""
        rows = self.fetchall("SELECT * FROM allergens ORDER BY id;")
        return [Allergen(id=r["id"], name=r["name"]) for r in rows]

    def id_by_lower_name(self) -> dict[str, int]:
        """Map lower-cased allergen name → id, for tag matching."""
        return {a.name.lower(): a.id for a in self.get_all() if a.id is not None}


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_category(row: sqlite3.Row) -> Category:
    return Category(id=row["id"], name=row["name"], icon=row["icon"])


def _row_to_subcategory(row: sqlite3.Row) -> Subcategory:
    return Subcategory(id=row["id"], category_id=row["category_id"], name=row["name"])
