"""
Static product taxonomy and allergen reference list.

Hierarchy: ``CategoryDefinition`` (top level, carries the classification
keywords) → subcategory names (second level, ordered).

The taxonomy is loaded once per run from ``config/taxonomy/product_taxonomy.json``
and passed explicitly to the classifier, the estimator and the seed stage.
Nothing in this module holds module-level mutable state; tests build
synthetic taxonomies with ``build_taxonomy()``.

File format::

    {
      "categories": [
        {"name": "Beverages", "icon": "🥤", "subcategories": ["Soft Drinks", "Juices"]}
      ],
      "keywords": {"Beverages": ["drink", "soda", "juice"]},
      "allergens": ["Gluten", "Milk"]
    }

Integrity contract (enforced by the validators below):
  - Category names are unique and non-empty.
  - Every category has at least one subcategory; a category declared without
    any gets the single fallback subcategory ``"Other"``.
  - ``keywords`` may only reference declared categories.
  - Keywords are stored lower-cased (matching is case-insensitive).

This module has NO imports from any other ``catalog_etl`` package.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

FALLBACK_SUBCATEGORY = "Other"


class CategoryDefinition(BaseModel):
    """One top-level taxonomy category.

    Attributes:
        name: Display name, unique across the taxonomy.
        icon: Short icon string (an emoji) shown by the dashboard.
        subcategories: Ordered subcategory names; the first one is the
            classifier's default placement.
        keywords: Lower-cased substrings that vote for this category.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    icon: str = ""
    subcategories: tuple[str, ...] = ()
    keywords: tuple[str, ...] = ()

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Category name must be non-empty.")
        return v

    @field_validator("subcategories")
    @classmethod
    def ensure_fallback(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(s.strip() for s in v if s and s.strip())
        if len(set(cleaned)) != len(cleaned):
            raise ValueError(f"Duplicate subcategory names: {list(cleaned)}.")
        return cleaned or (FALLBACK_SUBCATEGORY,)

    @field_validator("keywords")
    @classmethod
    def lower_keywords(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(k.strip().lower() for k in v if k and k.strip())

    @property
    def default_subcategory(self) -> str:
        return self.subcategories[0]


class Taxonomy(BaseModel):
    """Immutable taxonomy configuration: ordered categories + allergen names.

    Category order is significant: it is the classifier's scan order and
    therefore its tie-break order.
    """

    model_config = ConfigDict(frozen=True)

    categories: tuple[CategoryDefinition, ...]
    allergens: tuple[str, ...] = ()

    @field_validator("categories")
    @classmethod
    def validate_categories(
        cls, v: tuple[CategoryDefinition, ...]
    ) -> tuple[CategoryDefinition, ...]:
        if not v:
            raise ValueError("Taxonomy must declare at least one category.")
        names = [c.name for c in v]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate category names in taxonomy: {dupes}.")
        return v

    @field_validator("allergens")
    @classmethod
    def validate_allergens(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        cleaned = tuple(a.strip() for a in v if a and a.strip())
        lowered = [a.lower() for a in cleaned]
        if len(set(lowered)) != len(lowered):
            raise ValueError(f"Duplicate allergen names: {list(cleaned)}.")
        return cleaned

    def get(self, name: str) -> Optional[CategoryDefinition]:
        """Return the category called ``name``, or ``None``."""
        for category in self.categories:
            if category.name == name:
                return category
        return None

    @property
    def fallback(self) -> CategoryDefinition:
        """The first declared category, used when nothing matches."""
        return self.categories[0]

    def subcategory_pairs(self) -> list[tuple[str, str]]:
        """Every ``(category_name, subcategory_name)`` pair in declaration order."""
        return [(c.name, s) for c in self.categories for s in c.subcategories]


def build_taxonomy(
    categories: Iterable[Mapping[str, Any]],
    keywords: Optional[Mapping[str, Iterable[str]]] = None,
    allergens: Iterable[str] = (),
) -> Taxonomy:
    """Assemble a ``Taxonomy`` from the on-disk shape.

    Args:
        categories: Ordered category dicts with ``name``, ``icon`` and
            ``subcategories`` keys.
        keywords: Keyword lists keyed by category name. Categories with no
            entry classify on nothing (score 0).
        allergens: Flat allergen name list.

    Returns:
        Validated ``Taxonomy``.

    Raises:
        ValueError: If ``keywords`` names an undeclared category, or a
            category/allergen fails validation.
    """
    categories = list(categories)
    keywords = dict(keywords or {})
    declared = [c.get("name", "").strip() for c in categories]
    unknown = sorted(set(keywords) - set(declared))
    if unknown:
        raise ValueError(f"Keywords reference unknown categories: {unknown}.")

    defs = [
        CategoryDefinition(
            name=c["name"],
            icon=c.get("icon", ""),
            subcategories=tuple(c.get("subcategories", ())),
            keywords=tuple(keywords.get(c["name"].strip(), ())),
        )
        for c in categories
    ]
    return Taxonomy(categories=tuple(defs), allergens=tuple(allergens))


def load_taxonomy(path: Path) -> Taxonomy:
    """Load and validate a taxonomy JSON file.

    Args:
        path: Path to the taxonomy JSON file.

    Returns:
        Validated ``Taxonomy``.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the file is not a JSON object or fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Taxonomy file not found: {path}")

    with open(path, encoding="utf-8") as f:
        raw = json.load(f)

    if not isinstance(raw, dict) or "categories" not in raw:
        raise ValueError(f"Taxonomy file {path} must be an object with a 'categories' array.")

    return build_taxonomy(
        categories=raw["categories"],
        keywords=raw.get("keywords", {}),
        allergens=raw.get("allergens", ()),
    )
