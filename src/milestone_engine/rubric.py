"""
rubric.py – Weighted rubric checks and scoring
==============================================
  V-04  per-criterion: criterion / description non-empty, 0 < weight ≤ 100,
        maxScore ≥ 1
  V-05  weights of a non-empty rubric sum to 100 (tolerance 0.01)
  V-09  scores: one per criterion, 0 ≤ score ≤ maxScore

``weight_total`` is a plain read so a form can show a live running total
without re-running the full validation on every keystroke.
"""

from __future__ import annotations

from typing import Sequence, Union

from milestone_engine.errors import ValidationError, ValidationResult
from milestone_engine.models import (
    MAX_CRITERION_DESCRIPTION_LENGTH,
    MAX_CRITERION_LENGTH,
    RubricCriterion,
)
from milestone_engine.validation import check_text

WEIGHT_TOTAL        = 100.0
WEIGHT_TOLERANCE    = 0.01
RUBRIC_WEIGHT_ERROR = "Rubric criteria weights must sum to 100%"

Number = Union[int, float]


def weight_total(criteria: Sequence[RubricCriterion]) -> float:
    return sum((c.weight or 0) for c in criteria)


def rubric_result(criteria: Sequence[RubricCriterion]) -> ValidationResult:
    result = ValidationResult()

    for i, c in enumerate(criteria):
        check_text(result, f"rubric_{i}_criterion", c.criterion,
                   "Criterion name is required",
                   MAX_CRITERION_LENGTH, "Criterion", code="V-04")
        check_text(result, f"rubric_{i}_description", c.description,
                   "Criterion description is required",
                   MAX_CRITERION_DESCRIPTION_LENGTH, "Criterion description", code="V-04")
        if not (0 < c.weight <= 100):
            result.add("V-04", f"rubric_{i}_weight",
                       "Weight must be greater than 0 and at most 100")
        if c.max_score < 1:
            result.add("V-04", f"rubric_{i}_maxScore", "Max score must be greater than 0")

    if criteria and abs(weight_total(criteria) - WEIGHT_TOTAL) > WEIGHT_TOLERANCE:
        result.add("V-05", "rubricWeight", RUBRIC_WEIGHT_ERROR)

    return result


def validate_rubric(criteria: Sequence[RubricCriterion]) -> dict[str, str]:
    """Return ``{field_key: message}``; empty dict means the rubric is valid."""
    return rubric_result(criteria).errors


# ─── Scoring ─────────────────────────────────────────────────────────────────

def validate_scores(
    criteria: Sequence[RubricCriterion],
    scores: Sequence[Number],
) -> dict[str, str]:
    """Scores are positional: ``scores[i]`` grades ``criteria[i]``."""
    result = ValidationResult()
    if len(scores) != len(criteria):
        result.add("V-09", "scores",
                   f"Expected {len(criteria)} scores, got {len(scores)}")
        return result.errors
    for i, (c, s) in enumerate(zip(criteria, scores)):
        if isinstance(s, bool) or not isinstance(s, (int, float)):
            result.add("V-09", f"score_{i}", "Score must be a number")
        elif not (0 <= s <= c.max_score):
            result.add("V-09", f"score_{i}", f"Score must be between 0 and {c.max_score}")
    return result.errors


def weighted_score(
    criteria: Sequence[RubricCriterion],
    scores: Sequence[Number],
) -> float:
    """
    Weighted 0–100 total: Σ weight × score / maxScore.

    Raises ValidationError when the rubric itself is invalid or a score is
    out of bounds.  An empty rubric scores 0.
    """
    errors = {**validate_rubric(criteria), **validate_scores(criteria, scores)}
    if errors:
        raise ValidationError(errors)
    total = sum(c.weight * s / c.max_score for c, s in zip(criteria, scores))
    return round(total, 2)
