"""
Keyword-overlap taxonomy classifier.

Scoring
-------
The product name, brand and free-text category are joined with spaces and
lower-cased. A category's score is the number of its keywords contained in
that text (plain substring containment: ``"tea"`` matches ``"steak"``).

Selection
---------
Categories are scanned in taxonomy declaration order and a later category
only replaces the current best when its score is strictly greater, so ties
go to the earlier-declared category. When every score is 0 the first
declared category is returned.

The subcategory is always the chosen category's first declared subcategory.
"""

from __future__ import annotations

from typing import NamedTuple, Optional

from catalog_etl.taxonomy.product_taxonomy import CategoryDefinition, Taxonomy


class Classification(NamedTuple):
    category: str
    subcategory: str


def match_score(category: CategoryDefinition, text: str) -> int:
    """Number of ``category`` keywords found in the already lower-cased ``text``."""
    return sum(1 for keyword in category.keywords if keyword in text)


def classify(
    taxonomy: Taxonomy,
    product_name: Optional[str],
    brand: Optional[str],
    category_text: Optional[str],
) -> Classification:
    """Assign a product to a ``(category, subcategory)`` pair.

    Total function: every input, including all-``None``, yields a pair.

    Args:
        taxonomy: The run's taxonomy configuration.
        product_name: Free-text product name.
        brand: Free-text brand.
        category_text: Unclassified category text from the source record.

    Returns:
        ``Classification(category, subcategory)`` naming taxonomy entries.
    """
    text = " ".join(part or "" for part in (product_name, brand, category_text)).lower()

    best = taxonomy.fallback
    best_score = 0
    for category in taxonomy.categories:
        score = match_score(category, text)
        if score > best_score:
            best, best_score = category, score

    return Classification(best.name, best.default_subcategory)
