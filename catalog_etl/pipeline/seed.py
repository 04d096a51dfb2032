"""
SeedStage: insert-if-absent seeding of the taxonomy and allergen tables.

Seeding order follows the foreign keys: categories, then each category's
subcategories, then allergens. Existing rows are left untouched, so running
the stage on every pipeline run is safe and keeps surrogate ids stable.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Iterable

from catalog_etl.db.repositories.taxonomy_repo import (
    AllergenRepository,
    CategoryRepository,
    SubcategoryRepository,
)
from catalog_etl.db.schema import apply_schema
from catalog_etl.models.meta import RunMetadata
from catalog_etl.pipeline.base import PipelineStage
from catalog_etl.taxonomy.product_taxonomy import Taxonomy

logger = logging.getLogger(__name__)


@dataclass
class SeedResult:
    """Rows inserted by one seeding pass (0 everywhere on a re-run)."""

    categories_inserted: int = 0
    subcategories_inserted: int = 0
    allergens_inserted: int = 0

    @property
    def total(self) -> int:
        return self.categories_inserted + self.subcategories_inserted + self.allergens_inserted


def seed_taxonomy(conn: sqlite3.Connection, taxonomy: Taxonomy) -> tuple[int, int]:
    """Insert missing categories and subcategories.

    Returns:
        ``(categories_inserted, subcategories_inserted)``.
    """
    categories = CategoryRepository(conn)
    subcategories = SubcategoryRepository(conn)
    new_categories = new_subcategories = 0

    for definition in taxonomy.categories:
        if categories.insert_if_absent(definition.name, definition.icon):
            new_categories += 1
        stored = categories.get_by_name(definition.name)
        assert stored is not None and stored.id is not None
        for name in definition.subcategories:
            if subcategories.insert_if_absent(stored.id, name):
                new_subcategories += 1

    return new_categories, new_subcategories


def seed_allergens(conn: sqlite3.Connection, names: Iterable[str]) -> int:
    """Insert missing allergens. Returns the number inserted."""
    repo = AllergenRepository(conn)
    return sum(1 for name in names if repo.insert_if_absent(name))


class SeedStage(PipelineStage):
    """Seed taxonomy + allergen reference rows."""

    stage_name = "seed"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.result = SeedResult()

    def _execute(self, run: RunMetadata, taxonomy: Taxonomy, **kwargs) -> int:
        with self._connection() as conn:
            apply_schema(conn)
            cats, subs = seed_taxonomy(conn, taxonomy)
            allergens = seed_allergens(conn, taxonomy.allergens)

        self.result = SeedResult(cats, subs, allergens)
        logger.info(
            "SeedStage: inserted %d categories, %d subcategories, %d allergens.",
            cats, subs, allergens,
        )
        return self.result.total
