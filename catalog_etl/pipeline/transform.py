"""
TransformStage: project enriched records into the relational store.

Per record:
  1. Parse the enrichment document (``parse_enriched_record``).
  2. Skip it unless ``status == "success"``.
  3. Classify, estimate protein, score (``project_record``).
  4. Upsert the product by ``raw_id`` and replace its allergen links.

Steps 3–4 run inside a SAVEPOINT. A malformed record or a constraint
violation rolls back that record's writes only; it is counted in
``records_failed``, logged with its ``raw_id``, and the batch continues.
Any other database error propagates and fails the stage.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from catalog_etl.db.repositories.product_repo import (
    ProductAllergenRepository,
    ProductRepository,
)
from catalog_etl.db.repositories.taxonomy_repo import (
    AllergenRepository,
    SubcategoryRepository,
)
from catalog_etl.db.schema import apply_schema
from catalog_etl.models.meta import RunMetadata
from catalog_etl.pipeline.base import PipelineStage
from catalog_etl.taxonomy.product_taxonomy import Taxonomy
from catalog_etl.transform.estimator import DEFAULT_PROTEIN_TABLE, ProteinTable
from catalog_etl.transform.records import (
    MalformedRecordError,
    parse_enriched_record,
    project_record,
)

logger = logging.getLogger(__name__)

_LANG_PREFIX = re.compile(r"^[a-z]{2}:")


@dataclass
class TransformStats:
    """Counters for one transform pass.

    Attributes:
        records_read:       Documents read from the input.
        enriched_records:   Documents with ``status == "success"``.
        records_skipped:    Documents with any other status.
        records_failed:     Documents that could not be projected.
        products_projected: Successful product upserts.
        links_written:      Product ↔ allergen links stored.
    """

    records_read: int = 0
    enriched_records: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    products_projected: int = 0
    links_written: int = 0


def allergen_key(tag: str) -> str:
    """``"en:sesame-seeds"`` → ``"sesame seeds"``; plain names are lower-cased."""
    key = _LANG_PREFIX.sub("", tag.strip().lower())
    return key.replace("-", " ").replace("_", " ").strip()


def project_records(
    conn: sqlite3.Connection,
    records: Iterable[Mapping[str, Any]],
    taxonomy: Taxonomy,
    protein_table: ProteinTable = DEFAULT_PROTEIN_TABLE,
) -> TransformStats:
    """Upsert every successful record of ``records`` into the store.

    The taxonomy and allergens must already be seeded.

    Args:
        conn: Open connection with the schema applied.
        records: Enrichment documents, consumed once in order.
        taxonomy: The run's taxonomy.
        protein_table: Estimation tables for missing protein.

    Returns:
        ``TransformStats`` for the pass.
    """
    stats = TransformStats()
    subcategory_ids = SubcategoryRepository(conn).id_map()
    allergen_ids = AllergenRepository(conn).id_by_lower_name()
    products = ProductRepository(conn)
    links = ProductAllergenRepository(conn)

    for doc in records:
        stats.records_read += 1
        try:
            record = parse_enriched_record(doc)
        except MalformedRecordError as exc:
            stats.records_failed += 1
            logger.warning("Skipping malformed enriched record: %s", exc)
            continue

        if not record.is_success:
            stats.records_skipped += 1
            logger.debug("Skipping raw_id=%s with status=%s", record.raw_id, record.status)
            continue
        stats.enriched_records += 1

        conn.execute("SAVEPOINT project_record;")
        try:
            projected = project_record(record, taxonomy, subcategory_ids, protein_table)
            product_id = products.upsert(projected.row)

            matched: list[int] = []
            for tag in projected.allergens:
                allergen_id = allergen_ids.get(allergen_key(tag))
                if allergen_id is None:
                    logger.debug("raw_id=%s: unknown allergen %r ignored", record.raw_id, tag)
                else:
                    matched.append(allergen_id)
            stats.links_written += links.replace_for_product(product_id, matched)

        except (MalformedRecordError, sqlite3.IntegrityError) as exc:
            conn.execute("ROLLBACK TO SAVEPOINT project_record;")
            conn.execute("RELEASE SAVEPOINT project_record;")
            stats.records_failed += 1
            logger.warning("Failed to project raw_id=%s: %s", record.raw_id, exc)
            continue

        conn.execute("RELEASE SAVEPOINT project_record;")
        stats.products_projected += 1

    logger.info(
        "Projected %d products from %d records (%d skipped, %d failed).",
        stats.products_projected, stats.records_read,
        stats.records_skipped, stats.records_failed,
    )
    return stats


class TransformStage(PipelineStage):
    """Classify, score and upsert enriched records."""

    stage_name = "transform"

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.stats = TransformStats()

    def _execute(
        self,
        run: RunMetadata,
        records: Iterable[Mapping[str, Any]],
        taxonomy: Taxonomy,
        protein_table: ProteinTable = DEFAULT_PROTEIN_TABLE,
        **kwargs,
    ) -> int:
        with self._connection() as conn:
            apply_schema(conn)
            self.stats = project_records(conn, records, taxonomy, protein_table)
        return self.stats.products_projected
