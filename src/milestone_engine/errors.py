"""
errors.py – Error taxonomy and field-keyed validation results
=============================================================
Every engine failure is a typed exception carrying enough structure for a
UI or REST layer to present it.  Validation never stops at the first
problem: rules append FieldViolation records to a ValidationResult and the
full ``{field_key: message}`` map travels inside ValidationError.

  ValidationError      field-keyed, recoverable (caller re-prompts)
  NotFoundError        referenced persona / checkpoint / milestone absent
  LimitExceededError   resubmission cap reached or resubmission disabled
  ConflictError        stale version or write against a closed milestone
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Union


# ─── Field-keyed results ─────────────────────────────────────────────────────

@dataclass
class FieldViolation:
    code:    str    # rule code, e.g. "V-03"
    field:   str    # wire key the UI highlights, e.g. "requirement_0_title"
    message: str


@dataclass
class ValidationResult:
    violations: list[FieldViolation] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.violations

    @property
    def errors(self) -> dict[str, str]:
        """First message per field key, in rule order."""
        out: dict[str, str] = {}
        for v in self.violations:
            out.setdefault(v.field, v.message)
        return out

    def add(self, code: str, field_key: str, message: str) -> None:
        self.violations.append(FieldViolation(code=code, field=field_key, message=message))

    def extend(self, other: "ValidationResult") -> None:
        self.violations.extend(other.violations)

    def summary(self) -> str:
        if not self.violations:
            return "All validation rules passed."
        return "\n".join(f"[{v.code}] {v.field}: {v.message}" for v in self.violations)


def merge_results(*results: ValidationResult) -> ValidationResult:
    merged = ValidationResult()
    for r in results:
        merged.extend(r)
    return merged


# ─── Exceptions ──────────────────────────────────────────────────────────────

class MilestoneEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(MilestoneEngineError):
    """One or more field-keyed validation failures."""

    def __init__(self, errors: Union[ValidationResult, dict[str, str]]):
        if isinstance(errors, ValidationResult):
            self.result = errors
        else:
            self.result = ValidationResult()
            for key, message in errors.items():
                self.result.add("V-00", key, message)
        self.errors: dict[str, str] = self.result.errors
        super().__init__(
            "; ".join(f"{k}: {m}" for k, m in self.errors.items()) or "Validation failed"
        )

    @classmethod
    def single(cls, field_key: str, message: str, code: str = "V-00") -> "ValidationError":
        result = ValidationResult()
        result.add(code, field_key, message)
        return cls(result)


class NotFoundError(MilestoneEngineError):
    def __init__(self, kind: str, identifier: Optional[str]):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} '{identifier}' not found")


class LimitExceededError(MilestoneEngineError):
    def __init__(self, message: str, limit: int = 0, count: int = 0):
        self.limit = limit
        self.count = count
        super().__init__(message)


class ConflictError(MilestoneEngineError):
    def __init__(self, message: str, expected: Optional[int] = None,
                 actual: Optional[int] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message)
