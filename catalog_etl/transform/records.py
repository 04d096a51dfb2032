"""
Enriched record parsing and projection to a product row.

``parse_enriched_record()`` accepts the enrichment job's document shape::

    {"raw_id": "...", "status": "success", "data": {"product_name": ..., ...}}

as well as a flat document with the same fields at the top level. Both
``snake_case`` and ``camelCase`` field names are read. Missing names and
brands become ``"Unknown"``, missing or non-finite nutrients become 0, and
the nutriscore is kept only when it is one of ``A``–``E``.

``project_record()`` is the pure classify → estimate → score step. It needs
the subcategory surrogate ids, so the caller passes the ``(category,
subcategory) → id`` map read once from the store after seeding.
"""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Any, Mapping, NamedTuple, Optional

from pydantic import ValidationError

from catalog_etl.models.product import VALID_NUTRISCORES, EnrichedRecord, ProductRow
from catalog_etl.taxonomy.product_taxonomy import Taxonomy
from catalog_etl.transform.classifier import Classification, classify
from catalog_etl.transform.estimator import (
    DEFAULT_PROTEIN_TABLE,
    ProteinTable,
    estimate_protein,
)
from catalog_etl.transform.score import finite_or_zero, healthy_score

logger = logging.getLogger(__name__)


class MalformedRecordError(ValueError):
    """An enriched document cannot be turned into a product row."""


class ProjectedProduct(NamedTuple):
    row: ProductRow
    classification: Classification
    allergens: tuple[str, ...]


def _first(data: Mapping[str, Any], *keys: str) -> Any:
    """Value of the first key present with a non-``None`` value."""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _text(value: Any, default: str) -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def _optional_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_nutriscore(value: Any) -> Optional[str]:
    """Upper-case grade ``A``–``E``, anything else (``unknown``, ``""``) → ``None``."""
    if not value:
        return None
    grade = str(value).strip().upper()
    return grade if grade in VALID_NUTRISCORES else None


def _allergen_list(raw_id: Any, value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    elif not isinstance(value, (list, tuple)):
        raise MalformedRecordError(
            f"Record {raw_id}: allergens must be a list or a comma-separated "
            f"string, got {type(value).__name__}."
        )
    return tuple(str(v).strip() for v in value if v and str(v).strip())


def parse_enriched_record(doc: Any) -> EnrichedRecord:
    """Build an ``EnrichedRecord`` from an enrichment document.

    Args:
        doc: Mapping as stored by the enrichment job (nested ``data`` or flat).

    Returns:
        Validated ``EnrichedRecord``.

    Raises:
        MalformedRecordError: If ``doc`` is not a mapping, has no raw id, or
            fails validation.
    """
    if not isinstance(doc, Mapping):
        raise MalformedRecordError(f"Enriched record must be a mapping, got {type(doc).__name__}.")

    raw_id = _first(doc, "raw_id", "rawId")
    if raw_id is None or not str(raw_id).strip():
        raise MalformedRecordError("Enriched record has no raw_id.")

    data = doc.get("data", doc)
    if not isinstance(data, Mapping):
        raise MalformedRecordError(f"Record {raw_id}: 'data' must be a mapping.")

    brand = _first(data, "brand", "brands")
    if isinstance(brand, str) and "," in brand:
        brand = brand.split(",")[0]

    allergens = _allergen_list(raw_id, _first(data, "allergens", "allergens_tags"))

    try:
        return EnrichedRecord(
            raw_id=str(raw_id),
            status=str(doc.get("status", "success")),
            product_name=_text(_first(data, "product_name", "productName"), "Unknown"),
            brand=_text(brand, "Unknown"),
            category=_text(data.get("category"), ""),
            nutriscore=normalize_nutriscore(_first(data, "nutriscore", "nutriscore_grade")),
            energy_kcal_100g=finite_or_zero(_first(data, "energy_kcal_100g", "energyKcal100g")),
            sugars_100g=finite_or_zero(_first(data, "sugars_100g", "sugars100g")),
            salt_100g=finite_or_zero(_first(data, "salt_100g", "salt100g")),
            protein_100g=_optional_number(
                _first(data, "protein_100g", "protein100g", "proteins_100g")
            ),
            price=_optional_number(data.get("price")),
            image_url=_first(data, "image_url", "imageUrl"),
            barcode=_text(_first(data, "barcode", "code"), "") or None,
            allergens=allergens,
        )
    except ValidationError as exc:
        raise MalformedRecordError(f"Record {raw_id}: {exc}") from exc


def project_record(
    record: EnrichedRecord,
    taxonomy: Taxonomy,
    subcategory_ids: Mapping[tuple[str, str], int],
    protein_table: ProteinTable = DEFAULT_PROTEIN_TABLE,
) -> ProjectedProduct:
    """Classify, estimate and score one record into a ``ProductRow``.

    Args:
        record: A ``status == "success"`` enriched record.
        taxonomy: The run's taxonomy.
        subcategory_ids: ``(category, subcategory) → id`` from the seeded store.
        protein_table: Estimation tables for missing protein.

    Returns:
        ``ProjectedProduct`` with the row, the classification and the
        record's declared allergens.

    Raises:
        MalformedRecordError: If the classified subcategory was never seeded.
    """
    placement = classify(taxonomy, record.product_name, record.brand, record.category)

    subcategory_id = subcategory_ids.get((placement.category, placement.subcategory))
    if subcategory_id is None:
        raise MalformedRecordError(
            f"Record {record.raw_id}: subcategory {placement.subcategory!r} of "
            f"{placement.category!r} is not seeded."
        )

    protein = estimate_protein(
        record.product_name,
        placement.subcategory,
        record.protein_100g,
        category_name=placement.category,
        table=protein_table,
    )

    score = healthy_score(
        sugars_100g=record.sugars_100g,
        salt_100g=record.salt_100g,
        energy_kcal_100g=record.energy_kcal_100g,
        protein_100g=protein,
        nutriscore=record.nutriscore,
    )

    row = ProductRow(
        raw_id=record.raw_id,
        barcode=record.barcode,
        subcategory_id=subcategory_id,
        product_name=record.product_name,
        brand=record.brand,
        nutriscore=record.nutriscore,
        energy_kcal_100g=record.energy_kcal_100g,
        sugars_100g=record.sugars_100g,
        salt_100g=record.salt_100g,
        protein_100g=protein,
        price=record.price,
        healthy_score=score,
        image_url=record.image_url,
    )
    return ProjectedProduct(row, placement, record.allergens)


def read_records_file(path: Path) -> list[dict[str, Any]]:
    """Read enrichment documents from a ``.jsonl`` or ``.json`` file.

    A ``.json`` file holds either an array of documents or a single document.
    Blank lines in a ``.jsonl`` file are ignored.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the content is not valid JSON.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    with open(path, encoding="utf-8") as f:
        if path.suffix == ".jsonl":
            return [json.loads(line) for line in f if line.strip()]
        payload = json.load(f)

    return payload if isinstance(payload, list) else [payload]
