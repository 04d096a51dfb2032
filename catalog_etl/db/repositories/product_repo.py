"""
Repositories for products and product ↔ allergen links.

``ProductRepository.upsert()`` is the idempotency boundary of the pipeline:
``INSERT ... ON CONFLICT(raw_id) DO UPDATE`` replaces every mutable column
with the incoming value (``NULL`` included), keeps ``id``, ``raw_id`` and
``created_at``, and bumps ``updated_at``. Re-running the transform over the
same records therefore converges to one row per ``raw_id`` holding the
latest computed values.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, Iterator, Optional

from catalog_etl.db.repositories.base import BaseRepository
from catalog_etl.models.product import Product, ProductAllergenLink, ProductRow

logger = logging.getLogger(__name__)

_UPSERT_PRODUCT = """
INSERT INTO products (
    raw_id, barcode, subcategory_id, product_name, brand, nutriscore,
    energy_kcal_100g, sugars_100g, salt_100g, protein_100g,
    price, healthy_score, image_url
) VALUES (
    :raw_id, :barcode, :subcategory_id, :product_name, :brand, :nutriscore,
    :energy_kcal_100g, :sugars_100g, :salt_100g, :protein_100g,
    :price, :healthy_score, :image_url
)
ON CONFLICT(raw_id) DO UPDATE SET
    barcode          = excluded.barcode,
    subcategory_id   = excluded.subcategory_id,
    product_name     = excluded.product_name,
    brand            = excluded.brand,
    nutriscore       = excluded.nutriscore,
    energy_kcal_100g = excluded.energy_kcal_100g,
    sugars_100g      = excluded.sugars_100g,
    salt_100g        = excluded.salt_100g,
    protein_100g     = excluded.protein_100g,
    price            = excluded.price,
    healthy_score    = excluded.healthy_score,
    image_url        = excluded.image_url,
    updated_at       = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
"""


class ProductRepository(BaseRepository):
    """Read/write access to the ``products`` table."""

    table = "products"

    def upsert(self, row: ProductRow) -> int:
        """Insert ``row`` or replace the existing row with the same ``raw_id``.

        Args:
            row: Fully computed product row.

        Returns:
            The product's surrogate ``id`` (unchanged across repeated upserts).
        """
        self.execute(_UPSERT_PRODUCT, row.model_dump())
        found = self.fetchone("SELECT id FROM products WHERE raw_id = ?;", (row.raw_id,))
        assert found is not None
        return int(found["id"])

    def get_by_raw_id(self, raw_id: str) -> Optional[Product]:
        row = self.fetchone("SELECT * FROM products WHERE raw_id = ?;", (raw_id,))
        return _row_to_product(row) if row else None

    def get_by_id(self, product_id: int) -> Optional[Product]:
        row = self.fetchone("SELECT * FROM products WHERE id = ?;", (product_id,))
        return _row_to_product(row) if row else None

    def get_by_subcategory(self, subcategory_id: int) -> list[Product]:
        rows = self.fetchall(
            "SELECT * FROM products WHERE subcategory_id = ? ORDER BY id;",
            (subcategory_id,),
        )
        return [_row_to_product(r) for r in rows]

    def iter_all(self) -> Iterator[Product]:
        """Yield every product in surrogate-id order."""
        for row in self.iterate("SELECT * FROM products ORDER BY id;"):
            yield _row_to_product(row)


class ProductAllergenRepository(BaseRepository):
    """Read/write access to the ``product_allergens`` junction table."""

    table = "product_allergens"

    def replace_for_product(self, product_id: int, allergen_ids: Iterable[int]) -> int:
        """Make ``allergen_ids`` the complete link set of ``product_id``.

        Returns:
            Number of links now stored for the product.
        """
        ids = sorted(set(allergen_ids))
        self.execute("DELETE FROM product_allergens WHERE product_id = ?;", (product_id,))
        if ids:
            self.executemany(
                "INSERT INTO product_allergens (product_id, allergen_id) VALUES (?, ?);",
                [(product_id, allergen_id) for allergen_id in ids],
            )
        return len(ids)

    def get_for_product(self, product_id: int) -> list[int]:
        rows = self.fetchall(
            "SELECT allergen_id FROM product_allergens WHERE product_id = ? ORDER BY allergen_id;",
            (product_id,),
        )
        return [int(r["allergen_id"]) for r in rows]

    def iter_all(self) -> Iterator[ProductAllergenLink]:
        """Yield every link ordered by ``(product_id, allergen_id)``."""
        for row in self.iterate(
            "SELECT product_id, allergen_id FROM product_allergens "
            "ORDER BY product_id, allergen_id;"
        ):
            yield ProductAllergenLink(product_id=row["product_id"], allergen_id=row["allergen_id"])


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_product(row: sqlite3.Row) -> Product:
    return Product(
        id=row["id"],
        raw_id=row["raw_id"],
        barcode=row["barcode"],
        subcategory_id=row["subcategory_id"],
        product_name=row["product_name"],
        brand=row["brand"],
        nutriscore=row["nutriscore"],
        energy_kcal_100g=row["energy_kcal_100g"],
        sugars_100g=row["sugars_100g"],
        salt_100g=row["salt_100g"],
        protein_100g=row["protein_100g"],
        price=row["price"],
        healthy_score=row["healthy_score"],
        image_url=row["image_url"],
    )
