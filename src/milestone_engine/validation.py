"""
validation.py – Milestone draft validation
==========================================
Pure functions that check the shape of a milestone draft.  Every rule runs
independently and appends to one ValidationResult, so a form can highlight
all offending fields at once.

Rules
-----
  V-01  name / description / projectId non-empty after trim
  V-02  dueDate present and not earlier than today 00:00 (local)
  V-03  requirement_{i}_title / requirement_{i}_description non-empty
  V-06  settings.maxResubmissions in [0, 10], autoCloseAfterDays in [1, 90]
  V-07  text length limits
  V-08  milestone type present

Rubric rules (V-04, V-05) live in rubric.py; the lifecycle controller merges
both result sets.  Parsing failures from Pydantic (unknown enum values,
non-numeric fields) are converted to the same field keys by
``errors_from_pydantic``.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional, Type, TypeVar

import pydantic
from pydantic.alias_generators import to_camel

from milestone_engine.errors import ValidationError, ValidationResult
from milestone_engine.models import (
    AUTO_CLOSE_DAYS_RANGE,
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    MAX_REQUIREMENT_DESCRIPTION_LENGTH,
    MAX_REQUIREMENT_TITLE_LENGTH,
    MAX_RESUBMISSIONS_RANGE,
    MilestoneDraft,
    MilestoneSettings,
    Requirement,
)

M = TypeVar("M", bound=pydantic.BaseModel)


# ─── Primitives ──────────────────────────────────────────────────────────────

def is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def check_text(
    result: ValidationResult,
    field_key: str,
    value: Optional[str],
    required_message: str,
    max_length: int,
    label: str,
    code: str = "V-01",
) -> None:
    """Required-text rule (``code``) plus the V-07 length limit."""
    if is_blank(value):
        result.add(code, field_key, required_message)
    elif len(value.strip()) > max_length:
        result.add("V-07", field_key, f"{label} cannot exceed {max_length} characters")


def in_range(value: Any, bounds: tuple[int, int]) -> bool:
    lo, hi = bounds
    return isinstance(value, (int, float)) and not isinstance(value, bool) and lo <= value <= hi


# ─── Rule groups ─────────────────────────────────────────────────────────────

def validate_due_date(
    result: ValidationResult,
    due_date: Optional[date],
    today: Optional[date] = None,
    enforce_not_past: bool = True,
) -> None:
    """V-02 – a due date of *today* is valid; yesterday is not."""
    if due_date is None:
        result.add("V-02", "dueDate", "Due date is required")
        return
    if enforce_not_past and due_date < (today or date.today()):
        result.add("V-02", "dueDate", "Due date cannot be in the past")


def validate_requirements(
    result: ValidationResult,
    requirements: list[Requirement],
    key_prefix: str = "requirement",
) -> None:
    """V-03 – empty requirements are errors, never silently dropped."""
    for i, req in enumerate(requirements):
        check_text(
            result, f"{key_prefix}_{i}_title", req.title,
            "Requirement title is required",
            MAX_REQUIREMENT_TITLE_LENGTH, "Requirement title", code="V-03",
        )
        check_text(
            result, f"{key_prefix}_{i}_description", req.description,
            "Requirement description is required",
            MAX_REQUIREMENT_DESCRIPTION_LENGTH, "Requirement description", code="V-03",
        )


def validate_settings(result: ValidationResult, settings: Optional[MilestoneSettings]) -> None:
    """V-06"""
    if settings is None:
        return
    if not in_range(settings.max_resubmissions, MAX_RESUBMISSIONS_RANGE):
        result.add("V-06", "maxResubmissions", "Max resubmissions must be between 0 and 10")
    if not in_range(settings.auto_close_after_days, AUTO_CLOSE_DAYS_RANGE):
        result.add("V-06", "autoCloseAfterDays", "Auto close days must be between 1 and 90")


# ─── Entry point ─────────────────────────────────────────────────────────────

def validate_milestone_draft(
    draft: MilestoneDraft,
    today: Optional[date] = None,
    enforce_future_due_date: bool = True,
) -> ValidationResult:
    """
    Validate everything about a milestone draft except its rubric.

    ``enforce_future_due_date=False`` is used when re-deriving the state of an
    already persisted milestone whose due date has legitimately passed.
    """
    result = ValidationResult()

    check_text(result, "name", draft.name, "Name is required",
               MAX_NAME_LENGTH, "Milestone name")
    check_text(result, "description", draft.description, "Description is required",
               MAX_DESCRIPTION_LENGTH, "Milestone description")
    if is_blank(draft.project_id):
        result.add("V-01", "projectId", "Project is required")

    validate_due_date(result, draft.due_date, today, enforce_future_due_date)

    if draft.type is None:
        result.add("V-08", "type", "Milestone type is required")

    validate_requirements(result, draft.requirements)
    validate_settings(result, draft.settings)
    return result


# ─── Pydantic parse errors → field keys ──────────────────────────────────────

def _camel(name: str) -> str:
    # loc entries are aliases already when input used camelCase keys
    return to_camel(name) if "_" in name else name


def _error_key(loc: tuple) -> str:
    parts = [_camel(p) if isinstance(p, str) else p for p in loc]
    if not parts:
        return "body"
    head = parts[0]
    if head == "requirements" and len(parts) >= 3:
        return f"requirement_{parts[1]}_{parts[2]}"
    if head == "evaluation" and len(parts) >= 4 and parts[1] == "rubric":
        return f"rubric_{parts[2]}_{parts[3]}"
    if head == "settings" and len(parts) >= 2:
        return str(parts[1])
    return str(head)


def errors_from_pydantic(exc: pydantic.ValidationError) -> dict[str, str]:
    errors: dict[str, str] = {}
    for err in exc.errors():
        errors.setdefault(_error_key(tuple(err.get("loc", ()))), err.get("msg", "Invalid value"))
    return errors


def parse_model(model_cls: Type[M], data: Any) -> M:
    """Parse *data* into *model_cls*, raising the engine's ValidationError on failure."""
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(errors_from_pydantic(exc)) from exc
