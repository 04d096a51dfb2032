"""
Product models: the enriched input record and the relational projection.

``EnrichedRecord`` is what the upstream enrichment job produces, one per raw
catalog record. Only ``status == "success"`` records are projected.

``ProductRow`` is the fully computed row handed to
``ProductRepository.upsert()``; ``Product`` is the same row read back with
its surrogate ``id``. ``raw_id`` is the idempotency anchor: one ``products``
row per distinct ``raw_id``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

VALID_STATUSES = frozenset({"success", "failed"})
VALID_NUTRISCORES = frozenset({"A", "B", "C", "D", "E"})


class EnrichedRecord(BaseModel):
    """Normalized product fact sheet from the enrichment stage.

    Attributes:
        raw_id: Stable external key of the source record.
        status: ``"success"`` or ``"failed"`` (enrichment outcome).
        product_name: Display name; ``"Unknown"`` when the source had none.
        brand: First listed brand; ``"Unknown"`` when the source had none.
        category: Unclassified free-text category from the source.
        nutriscore: Grade ``A``–``E`` or ``None``.
        energy_kcal_100g: Energy, kcal per 100g (0 when unknown).
        sugars_100g: Sugars, g per 100g (0 when unknown).
        salt_100g: Salt, g per 100g (0 when unknown).
        protein_100g: Protein, g per 100g, or ``None`` when unknown.
        price: Shelf price, if the source carried one.
        image_url: Product image URL, if any.
        barcode: EAN/UPC code, if any.
        allergens: Allergen names or ``en:``-style tags declared on the pack.
    """

    model_config = ConfigDict(frozen=True)

    raw_id: str
    status: str = "success"
    product_name: str = "Unknown"
    brand: str = "Unknown"
    category: str = ""
    nutriscore: Optional[str] = None
    energy_kcal_100g: float = 0.0
    sugars_100g: float = 0.0
    salt_100g: float = 0.0
    protein_100g: Optional[float] = None
    price: Optional[float] = None
    image_url: Optional[str] = None
    barcode: Optional[str] = None
    allergens: tuple[str, ...] = ()

    @field_validator("raw_id")
    @classmethod
    def validate_raw_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("raw_id must be non-empty.")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_STATUSES:
            raise ValueError(
                f"Unknown status '{v}'. Must be one of {sorted(VALID_STATUSES)}."
            )
        return v

    @field_validator("nutriscore")
    @classmethod
    def validate_nutriscore(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in VALID_NUTRISCORES:
            raise ValueError(
                f"Invalid nutriscore '{v}'. Must be one of {sorted(VALID_NUTRISCORES)} or None."
            )
        return v

    @property
    def is_success(self) -> bool:
        return self.status == "success"


class ProductRow(BaseModel):
    """A computed product row, ready to upsert.

    ``protein_100g`` is always populated (estimated when the source lacked it)
    and ``healthy_score`` is always in ``[0, 100]``.
    """

    model_config = ConfigDict(frozen=True)

    raw_id: str
    barcode: Optional[str] = None
    subcategory_id: int
    product_name: str
    brand: str
    nutriscore: Optional[str] = None
    energy_kcal_100g: float
    sugars_100g: float
    salt_100g: float
    protein_100g: float
    price: Optional[float] = None
    healthy_score: int
    image_url: Optional[str] = None

    @field_validator("healthy_score")
    @classmethod
    def validate_score(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError(f"healthy_score must be in [0, 100], got {v}.")
        return v


class Product(ProductRow):
    """A ``products`` row as stored, with its surrogate key."""

    id: int


class ProductAllergenLink(BaseModel):
    """Junction row: product ↔ allergen."""

    model_config = ConfigDict(frozen=True)

    product_id: int
    allergen_id: int
