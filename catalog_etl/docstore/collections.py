"""
Collection names of the secondary document store.

The six mirrored collections are fully rewritten by every resync. The
collector and enrichment collections belong to the upstream jobs and are only
read (the enriched records as pipeline input, the raw records for counts).
"""

from __future__ import annotations

from pymongo.database import Database

ALLERGENS = "allergens"
CATEGORIES = "categories"
SUBCATEGORIES = "subcategories"
PRODUCTS = "products"
PRODUCT_ALLERGENS = "product_allergens"
SYNC_METADATA = "sync_metadata"

MIRRORED_COLLECTIONS: tuple[str, ...] = (
    ALLERGENS,
    CATEGORIES,
    SUBCATEGORIES,
    PRODUCTS,
    PRODUCT_ALLERGENS,
    SYNC_METADATA,
)


def collection_counts(db: Database, extra: tuple[str, ...] = ()) -> dict[str, int]:
    """Document count of every mirrored collection plus ``extra`` ones.

    Collections that do not exist count as 0.
    """
    return {name: db[name].count_documents({}) for name in MIRRORED_COLLECTIONS + extra}
