"""
Relational rows for the seeded reference tables.

``Category`` → ``Subcategory`` is a two-level tree; ``Allergen`` is a flat
list. All three are seeded insert-if-absent once per run and are read-only
for the rest of the run. ``id`` is the SQLite surrogate key and is ``None``
before insertion.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Category(BaseModel):
    """A top-level taxonomy category row."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    name: str
    icon: str = ""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Category name must be non-empty.")
        return v


class Subcategory(BaseModel):
    """A subcategory row; always owned by exactly one category."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    category_id: int
    name: str


class Allergen(BaseModel):
    """An allergen reference row."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    name: str
