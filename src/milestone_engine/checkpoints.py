"""
checkpoints.py – Ordered sub-deliverables inside a milestone
============================================================
CRUD and status handling over a milestone's ``checkpoints`` list.

  add_checkpoint              validate draft, append pending checkpoint
  update_checkpoint           merge title / description / dueDate / status
  remove_checkpoint           idempotent delete by id
  record_checkpoint_sign_off  persona decision; all-approved → completed
  overdue_checkpoints         ids a scheduler may mark overdue
  checkpoint_summary          counts per status

Insertion order is preserved; nothing here sorts.  The engine has no clock,
so it never sets ``overdue`` on its own.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Optional, Sequence, Union

from milestone_engine import signoff
from milestone_engine.errors import NotFoundError, ValidationError, ValidationResult
from milestone_engine.models import (
    MAX_CHECKPOINT_DESCRIPTION_LENGTH,
    MAX_CHECKPOINT_TITLE_LENGTH,
    Checkpoint,
    CheckpointDraft,
    CheckpointPatch,
    CheckpointStatus,
    Requirement,
    SignOffDecision,
    SignOffStatus,
)
from milestone_engine.validation import check_text, parse_model, validate_requirements


def _new_id() -> str:
    return str(uuid.uuid4())


def _index_of(checkpoints: Sequence[Checkpoint], checkpoint_id: str) -> int:
    for i, cp in enumerate(checkpoints):
        if cp.id == checkpoint_id:
            return i
    raise NotFoundError("checkpoint", checkpoint_id)


def _check_fields(
    title: Optional[str],
    description: Optional[str],
    due_date: Optional[date],
    requirements: list[Requirement],
) -> ValidationResult:
    result = ValidationResult()
    check_text(result, "title", title, "Checkpoint title is required",
               MAX_CHECKPOINT_TITLE_LENGTH, "Checkpoint title")
    check_text(result, "description", description, "Checkpoint description is required",
               MAX_CHECKPOINT_DESCRIPTION_LENGTH, "Checkpoint description")
    if due_date is None:
        result.add("V-02", "dueDate", "Checkpoint due date is required")
    validate_requirements(result, requirements)
    return result


def validate_checkpoint_draft(draft: CheckpointDraft) -> ValidationResult:
    return _check_fields(draft.title, draft.description, draft.due_date, draft.requirements)


# ─── CRUD ────────────────────────────────────────────────────────────────────

def add_checkpoint(
    checkpoints: Sequence[Checkpoint],
    draft: Union[CheckpointDraft, dict[str, Any]],
    checkpoint_id: Optional[str] = None,
) -> list[Checkpoint]:
    """Append a new pending checkpoint with its own pending sign-offs."""
    draft = parse_model(CheckpointDraft, draft)
    result = validate_checkpoint_draft(draft)
    if not result.valid:
        raise ValidationError(result)

    checkpoint = Checkpoint(
        id                = checkpoint_id or _new_id(),
        title             = draft.title.strip(),
        description       = draft.description.strip(),
        due_date          = draft.due_date,
        status            = CheckpointStatus.PENDING,
        persona_sign_offs = signoff.initialize(draft.persona_ids),
        requirements      = [r.model_copy(deep=True) for r in draft.requirements],
    )
    return list(checkpoints) + [checkpoint]


def update_checkpoint(
    checkpoints: Sequence[Checkpoint],
    checkpoint_id: str,
    patch: Union[CheckpointPatch, dict[str, Any]],
) -> list[Checkpoint]:
    """
    Merge the fields present in *patch*.  The caller may set any of the four
    statuses directly.  The merged checkpoint must still have a title,
    description and due date.
    """
    index = _index_of(checkpoints, checkpoint_id)
    patch = parse_model(CheckpointPatch, patch)
    current = checkpoints[index]

    changes = {
        name: getattr(patch, name)
        for name in patch.model_fields_set
    }
    for key in ("title", "description"):
        if isinstance(changes.get(key), str):
            changes[key] = changes[key].strip()
    merged = current.model_copy(update=changes)

    result = _check_fields(merged.title, merged.description, merged.due_date,
                           merged.requirements or [])
    if merged.requirements is None:
        result.add("V-03", "requirements", "Requirements must be a list")
    if merged.status is None:
        result.add("V-08", "status", "Checkpoint status is required")
    if not result.valid:
        raise ValidationError(result)

    out = list(checkpoints)
    out[index] = merged
    return out


def remove_checkpoint(checkpoints: Sequence[Checkpoint], checkpoint_id: str) -> list[Checkpoint]:
    """Idempotent: an unknown id leaves the list unchanged."""
    return [cp for cp in checkpoints if cp.id != checkpoint_id]


# ─── Checkpoint sign-offs ────────────────────────────────────────────────────

def record_checkpoint_sign_off(
    checkpoints: Sequence[Checkpoint],
    checkpoint_id: str,
    persona_id: str,
    decision: SignOffDecision,
    now: Optional[datetime] = None,
) -> list[Checkpoint]:
    """
    Record a persona decision on one checkpoint.  When every one of the
    checkpoint's signers has approved, the checkpoint becomes completed.
    """
    index = _index_of(checkpoints, checkpoint_id)
    current = checkpoints[index]
    sign_offs = signoff.record_decision(current.persona_sign_offs, persona_id, decision, now=now)

    changes: dict[str, Any] = {"persona_sign_offs": sign_offs}
    if sign_offs and all(s.status == SignOffStatus.APPROVED for s in sign_offs):
        changes["status"] = CheckpointStatus.COMPLETED

    out = list(checkpoints)
    out[index] = current.model_copy(update=changes)
    return out


# ─── Derived reads ───────────────────────────────────────────────────────────

def overdue_checkpoints(checkpoints: Sequence[Checkpoint], today: date) -> list[str]:
    """Ids past their due date and not completed.  Marking them is the caller's job."""
    return [
        cp.id for cp in checkpoints
        if cp.due_date < today and cp.status != CheckpointStatus.COMPLETED
    ]


def checkpoint_summary(checkpoints: Sequence[Checkpoint]) -> dict[str, int]:
    counts = {s.value: 0 for s in CheckpointStatus}
    for cp in checkpoints:
        counts[cp.status.value] += 1
    counts["total"] = len(checkpoints)
    return counts
