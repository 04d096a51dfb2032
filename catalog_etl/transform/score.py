"""
Healthy score: an internal 0–100 rating (higher = healthier).

Score formula (weights version ``v1``)
--------------------------------------
    score = 50
          + nutriscore bonus
          + sugar bracket
          + salt bracket
          + energy bracket
          + protein bracket
    clamped to [0, 100], rounded to an integer.

Each factor contributes at most one bracket. Brackets are ordered
``(predicate, points)`` pairs and the first matching predicate wins, so the
order below is part of the contract:

    nutriscore   A +30 | B +20 | C +10 | D −10 | E −30 | other/absent 0
    sugars_100g  <5 +10 | <10 +5 | >30 −25 | >20 −15 | else 0
    salt_100g    <0.5 +10 | >2 −15 | else 0
    kcal_100g    <150 +10 | >400 −10 | else 0
    protein_100g >15 +15 | >8 +8 | >3 +3 | else 0

Missing or non-finite inputs are treated as 0 before bracket evaluation.
The thresholds and points are heuristic; change them only together with
``SCORE_WEIGHTS_VERSION``.
"""

from __future__ import annotations

import math
from typing import Any, Callable, Optional

SCORE_WEIGHTS_VERSION = "v1"

BASE_SCORE = 50
MIN_SCORE = 0
MAX_SCORE = 100

Bracket = tuple[Callable[[float], bool], int]

NUTRISCORE_POINTS: dict[str, int] = {
    "A": 30,
    "B": 20,
    "C": 10,
    "D": -10,
    "E": -30,
}

SUGAR_BRACKETS: tuple[Bracket, ...] = (
    (lambda g: g < 5, 10),
    (lambda g: g < 10, 5),
    (lambda g: g > 30, -25),
    (lambda g: g > 20, -15),
)

SALT_BRACKETS: tuple[Bracket, ...] = (
    (lambda g: g < 0.5, 10),
    (lambda g: g > 2, -15),
)

ENERGY_BRACKETS: tuple[Bracket, ...] = (
    (lambda kcal: kcal < 150, 10),
    (lambda kcal: kcal > 400, -10),
)

PROTEIN_BRACKETS: tuple[Bracket, ...] = (
    (lambda g: g > 15, 15),
    (lambda g: g > 8, 8),
    (lambda g: g > 3, 3),
)


def finite_or_zero(value: Any) -> float:
    """Coerce ``value`` to a finite float; anything else becomes 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def bracket_points(value: float, brackets: tuple[Bracket, ...]) -> int:
    """Points of the first bracket whose predicate accepts ``value``, else 0."""
    for predicate, points in brackets:
        if predicate(value):
            return points
    return 0


def nutriscore_points(nutriscore: Optional[str]) -> int:
    if not nutriscore:
        return 0
    return NUTRISCORE_POINTS.get(str(nutriscore).strip().upper(), 0)


def healthy_score(
    sugars_100g: Any = None,
    salt_100g: Any = None,
    energy_kcal_100g: Any = None,
    protein_100g: Any = None,
    nutriscore: Optional[str] = None,
) -> int:
    """Compute the healthy score for one product.

    Args:
        sugars_100g: Sugars in g/100g.
        salt_100g: Salt in g/100g.
        energy_kcal_100g: Energy in kcal/100g.
        protein_100g: Protein in g/100g.
        nutriscore: Nutri-Score grade ``A``–``E`` (case-insensitive) or ``None``.

    Returns:
        Integer in ``[0, 100]``.
    """
    score = BASE_SCORE
    score += nutriscore_points(nutriscore)
    score += bracket_points(finite_or_zero(sugars_100g), SUGAR_BRACKETS)
    score += bracket_points(finite_or_zero(salt_100g), SALT_BRACKETS)
    score += bracket_points(finite_or_zero(energy_kcal_100g), ENERGY_BRACKETS)
    score += bracket_points(finite_or_zero(protein_100g), PROTEIN_BRACKETS)

    return int(round(max(MIN_SCORE, min(MAX_SCORE, score))))
