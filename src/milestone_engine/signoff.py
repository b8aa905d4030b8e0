"""
signoff.py – Per-persona approval tracking
==========================================
Operates on a ``list[SignOff]`` belonging to one milestone or one
checkpoint.  Every function returns a new list; the input is never touched.

Status transitions are unordered: any status may move to any other,
including approved → pending.  Whether a persona may retract an approval is
business policy for the caller, not something this module enforces.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from milestone_engine.errors import NotFoundError, ValidationError, ValidationResult
from milestone_engine.models import (
    MAX_FEEDBACK_LENGTH,
    SATISFACTION_SCORE_RANGE,
    SignOff,
    SignOffDecision,
    SignOffStatus,
)

# Decisions that stamp ``signed_off_at``.
_FINAL_STATUSES = {SignOffStatus.APPROVED, SignOffStatus.REJECTED}


def _unique(persona_ids: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for pid in persona_ids:
        if pid not in seen:
            seen.add(pid)
            out.append(pid)
    return out


# ─── Required-signer management ──────────────────────────────────────────────

def initialize(persona_ids: Iterable[str]) -> list[SignOff]:
    """One pending entry per persona; duplicate ids collapse to the first."""
    return [SignOff(persona_id=pid) for pid in _unique(persona_ids)]


def add_signers(sign_offs: Sequence[SignOff], persona_ids: Iterable[str]) -> list[SignOff]:
    existing = {s.persona_id for s in sign_offs}
    added = [pid for pid in _unique(persona_ids) if pid not in existing]
    return list(sign_offs) + initialize(added)


def remove_signers(sign_offs: Sequence[SignOff], persona_ids: Iterable[str]) -> list[SignOff]:
    drop = set(persona_ids)
    return [s for s in sign_offs if s.persona_id not in drop]


def sync_signers(sign_offs: Sequence[SignOff], persona_ids: Iterable[str]) -> list[SignOff]:
    """
    Reconcile to exactly *persona_ids*, in that order.  Retained personas keep
    their decision; new ones start pending; absent ones are dropped.
    """
    by_persona = {s.persona_id: s for s in sign_offs}
    return [by_persona.get(pid) or SignOff(persona_id=pid) for pid in _unique(persona_ids)]


# ─── Decisions ───────────────────────────────────────────────────────────────

def _coerce_status(raw) -> SignOffStatus:
    try:
        return SignOffStatus(raw)
    except ValueError:
        valid = ", ".join(s.value for s in SignOffStatus)
        raise ValidationError.single("status", f"Status must be one of: {valid}") from None


def check_decision(decision: SignOffDecision) -> SignOffStatus:
    """Validate a raw decision and return its coerced status."""
    result = ValidationResult()
    status: Optional[SignOffStatus] = None
    try:
        status = _coerce_status(decision.status)
    except ValidationError as exc:
        result.extend(exc.result)

    score = decision.satisfaction_score
    if score is not None:
        lo, hi = SATISFACTION_SCORE_RANGE
        if isinstance(score, bool) or not isinstance(score, int) or not (lo <= score <= hi):
            result.add("V-10", "satisfactionScore",
                       f"Satisfaction score must be a whole number between {lo} and {hi}")

    feedback = decision.feedback
    if feedback is not None and not isinstance(feedback, str):
        result.add("V-07", "feedback", "Feedback must be text")
    elif feedback and len(feedback.strip()) > MAX_FEEDBACK_LENGTH:
        result.add("V-07", "feedback",
                   f"Feedback cannot exceed {MAX_FEEDBACK_LENGTH} characters")

    if not result.valid:
        raise ValidationError(result)
    return status


def record_decision(
    sign_offs: Sequence[SignOff],
    persona_id: str,
    decision: SignOffDecision,
    now: Optional[datetime] = None,
) -> list[SignOff]:
    """
    Replace the matching persona's status, feedback and score.

    Raises NotFoundError when *persona_id* is not a required signer and
    ValidationError when the decision itself is malformed.
    """
    index = next((i for i, s in enumerate(sign_offs) if s.persona_id == persona_id), None)
    if index is None:
        raise NotFoundError("persona", persona_id)

    status = check_decision(decision)
    feedback = decision.feedback.strip() if decision.feedback and decision.feedback.strip() else None
    updated = sign_offs[index].model_copy(update={
        "status":             status,
        "feedback":           feedback,
        "satisfaction_score": decision.satisfaction_score,
        "signed_off_at":      (now or datetime.now(timezone.utc)) if status in _FINAL_STATUSES else None,
    })
    out = list(sign_offs)
    out[index] = updated
    return out


# ─── Derived reads ───────────────────────────────────────────────────────────

def completion_percentage(sign_offs: Sequence[SignOff]) -> int:
    """round(100 × approved / total); 0 for an empty list.  Halves round up."""
    if not sign_offs:
        return 0
    approved = sum(1 for s in sign_offs if s.status == SignOffStatus.APPROVED)
    return int(math.floor(100 * approved / len(sign_offs) + 0.5))


def is_complete(sign_offs: Sequence[SignOff], require_all: bool) -> bool:
    """
    Quorum policy: unanimous approval, or at least one approval.
    With no required signers the unanimous policy is trivially satisfied.
    """
    approvals = [s.status == SignOffStatus.APPROVED for s in sign_offs]
    return all(approvals) if require_all else any(approvals)


def average_satisfaction_score(sign_offs: Sequence[SignOff]) -> Optional[float]:
    scores = [s.satisfaction_score for s in sign_offs if s.satisfaction_score is not None]
    if not scores:
        return None
    return round(sum(scores) / len(scores), 1)


def status_counts(sign_offs: Sequence[SignOff]) -> dict[str, int]:
    counts = {s.value: 0 for s in SignOffStatus}
    for s in sign_offs:
        counts[s.status.value] += 1
    return counts
