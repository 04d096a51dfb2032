"""
Heuristic estimation of missing nutrient attributes (protein, g/100g).

Resolution order, first hit wins:
  1. A known positive value on the record is returned unchanged.
  2. ``keyword_rules``: ordered ``(keyword, grams)`` pairs matched as
     substrings of ``"<product name> <subcategory name>"`` (lower-cased).
     Order matters: ``"peanut"`` is listed before ``"nut"``.
  3. ``category_defaults``: grams keyed by taxonomy category name.
  4. ``default`` (4 g/100g).

Values are typical per-100g protein contents for the food family and are
only meant to place a product in the right scoring bracket.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

DEFAULT_PROTEIN_G = 4.0

_KEYWORD_PROTEIN: tuple[tuple[str, float], ...] = (
    ("whey", 75.0),
    ("protein", 20.0),
    ("turkey", 29.0),
    ("chicken", 27.0),
    ("beef", 26.0),
    ("pork", 25.0),
    ("ham", 21.0),
    ("tuna", 25.0),
    ("salmon", 22.0),
    ("fish", 20.0),
    ("cheese", 25.0),
    ("egg", 13.0),
    ("yogurt", 10.0),
    ("yoghurt", 10.0),
    ("milk", 3.4),
    ("tofu", 8.0),
    ("lentil", 9.0),
    ("chickpea", 8.0),
    ("bean", 7.0),
    ("peanut", 25.0),
    ("almond", 21.0),
    ("nut", 15.0),
    ("pasta", 12.0),
    ("bread", 9.0),
    ("rice", 7.0),
    ("chocolate", 6.0),
    ("biscuit", 6.0),
    ("cookie", 6.0),
    ("chips", 6.0),
    ("juice", 0.5),
    ("soda", 0.0),
)

_CATEGORY_PROTEIN: dict[str, float] = {
    "Beverages": 0.5,
    "Dairy & Eggs": 8.0,
    "Meat & Fish": 20.0,
    "Breakfast & Cereals": 8.0,
    "Snacks": 6.0,
    "Sweets & Desserts": 5.0,
    "Bakery": 8.0,
    "Pantry Staples": 9.0,
    "Fruits & Vegetables": 1.5,
}


@dataclass(frozen=True)
class ProteinTable:
    """Ordered estimation tables for protein per 100g."""

    keyword_rules: tuple[tuple[str, float], ...] = _KEYWORD_PROTEIN
    category_defaults: Mapping[str, float] = field(
        default_factory=lambda: dict(_CATEGORY_PROTEIN)
    )
    default: float = DEFAULT_PROTEIN_G

    def lookup_keyword(self, text: str) -> Optional[float]:
        for keyword, grams in self.keyword_rules:
            if keyword in text:
                return grams
        return None


DEFAULT_PROTEIN_TABLE = ProteinTable()


def _known_positive(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isfinite(number) and number > 0:
        return number
    return None


def estimate_protein(
    product_name: Optional[str],
    subcategory_name: Optional[str],
    current_protein: Any = None,
    category_name: Optional[str] = None,
    table: ProteinTable = DEFAULT_PROTEIN_TABLE,
) -> float:
    """Return the record's protein value, estimating it when missing.

    Args:
        product_name: Free-text product name.
        subcategory_name: Taxonomy subcategory assigned by the classifier.
        current_protein: Value from the source record; used as-is when it is
            a positive finite number.
        category_name: Taxonomy category for the coarse fallback.
        table: Estimation tables.

    Returns:
        Protein in g/100g. Never ``NaN``.
    """
    known = _known_positive(current_protein)
    if known is not None:
        return known

    text = f"{product_name or ''} {subcategory_name or ''}".lower()
    by_keyword = table.lookup_keyword(text)
    if by_keyword is not None:
        return by_keyword

    if category_name is not None and category_name in table.category_defaults:
        return table.category_defaults[category_name]

    return table.default
