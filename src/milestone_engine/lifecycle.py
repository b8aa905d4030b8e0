"""
lifecycle.py – Milestone Lifecycle Controller
=============================================
Entry point for forms, dashboards and the REST layer.  Orchestrates the
validation module, the rubric engine, the sign-off tracker and the
checkpoint manager into milestone-level operations.

States (derived, never stored)
------------------------------
  draft-invalid   fails draft or rubric validation
  open            valid, approval policy not yet satisfied
  ready-to-close  approvals satisfy settings.requireAllPersonaApprovals
  closed          terminal; ``closed_at`` set by close()

``resubmission-exhausted`` is a side flag: once the caller's resubmission
counter reaches settings.maxResubmissions further requests fail with
LimitExceededError, but the milestone can still be signed off or closed.

Every operation takes a milestone snapshot and returns a new one.
Persistence, and therefore the resubmission counter and the version bump,
belong to the caller (see database.py for a reference store).
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Optional, Union

from pydantic.alias_generators import to_snake

from milestone_engine import checkpoints as checkpoint_manager
from milestone_engine import signoff
from milestone_engine.config import MilestoneDefaults, get_settings
from milestone_engine.errors import (
    ConflictError,
    LimitExceededError,
    NotFoundError,
    ValidationError,
    ValidationResult,
    merge_results,
)
from milestone_engine.models import (
    CheckpointDraft,
    CheckpointPatch,
    LifecycleState,
    Milestone,
    MilestoneDraft,
    MilestoneSettings,
    SignOff,
    SignOffDecision,
)
from milestone_engine.rubric import rubric_result
from milestone_engine.validation import parse_model, validate_milestone_draft, validate_settings

DraftInput = Union[MilestoneDraft, dict[str, Any]]


# ─── Patch key handling ──────────────────────────────────────────────────────

# wire or python key → MilestoneDraft field
_PATCH_FIELDS: dict[str, str] = {
    "name":            "name",
    "description":     "description",
    "dueDate":         "due_date",
    "due_date":        "due_date",
    "type":            "type",
    "requirements":    "requirements",
    "evaluation":      "evaluation",
    "settings":        "settings",
    "personaSignOffs": "persona_ids",
    "persona_sign_offs": "persona_ids",
    "persona_ids":     "persona_ids",
}

# Owned by the engine or the store; accepted in a patch only when unchanged.
_MANAGED_FIELDS: dict[str, str] = {
    "id":          "id",
    "projectId":   "projectId",
    "project_id":  "projectId",
    "checkpoints": "checkpoints",
    "createdAt":   "createdAt",
    "created_at":  "createdAt",
    "updatedAt":   "updatedAt",
    "updated_at":  "updatedAt",
    "closedAt":    "closedAt",
    "closed_at":   "closedAt",
    "version":     "version",
}

# Read-only values from MilestoneEvaluation.to_wire(); ignored when echoed back.
_DERIVED_FIELDS = {
    "state", "completionPercentage", "isReadyToClose", "isOverdue",
    "daysUntilDue", "averageSatisfactionScore", "resubmissionExhausted",
    "shouldAutoClose", "checkpointSummary",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _local_naive(moment: datetime) -> datetime:
    return moment.astimezone().replace(tzinfo=None) if moment.tzinfo else moment


def _persona_id_of(item: Any) -> Any:
    if isinstance(item, SignOff):
        return item.persona_id
    if isinstance(item, dict):
        return item.get("personaId", item.get("persona_id"))
    return item


# ─── Derived view ────────────────────────────────────────────────────────────

@dataclass
class MilestoneEvaluation:
    """A milestone snapshot plus everything derived from it."""
    milestone:                  Milestone
    state:                      LifecycleState
    completion_percentage:      int
    is_ready_to_close:          bool
    is_overdue:                 bool
    days_until_due:             int
    average_satisfaction_score: Optional[float]
    resubmission_exhausted:     bool
    should_auto_close:          bool
    checkpoint_summary:         dict[str, int] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        body = self.milestone.to_wire()
        body.update({
            "state":                    self.state.value,
            "completionPercentage":     self.completion_percentage,
            "isReadyToClose":           self.is_ready_to_close,
            "isOverdue":                self.is_overdue,
            "daysUntilDue":             self.days_until_due,
            "averageSatisfactionScore": self.average_satisfaction_score,
            "resubmissionExhausted":    self.resubmission_exhausted,
            "shouldAutoClose":          self.should_auto_close,
            "checkpointSummary":        self.checkpoint_summary,
        })
        return body


# ─── Controller ──────────────────────────────────────────────────────────────

class MilestoneLifecycle:
    """
    Milestone-level operations.

    Usage::

        lc = MilestoneLifecycle()
        milestone = lc.create(draft)                       # ValidationError on bad input
        result    = lc.record_sign_off(milestone, "p1", SignOffDecision("approved"))
        if result.is_ready_to_close:
            milestone = lc.close(result.milestone)
    """

    def __init__(self, defaults: Optional[MilestoneDefaults] = None):
        self.defaults = defaults or get_settings().defaults

    # ── Validation ───────────────────────────────────────────────────────────

    def default_settings(self) -> MilestoneSettings:
        d = self.defaults
        return MilestoneSettings(
            require_all_persona_approvals = d.require_all_persona_approvals,
            allow_resubmission            = d.allow_resubmission,
            max_resubmissions             = d.max_resubmissions,
            auto_close_after_days         = d.auto_close_after_days,
        )

    def validate(
        self,
        draft: DraftInput,
        today: Optional[date] = None,
        enforce_future_due_date: bool = True,
    ) -> ValidationResult:
        """
        Draft rules and rubric rules, all errors collected.  A draft without
        settings is checked against the configured defaults it would receive.
        """
        draft = parse_model(MilestoneDraft, draft)
        result = merge_results(
            validate_milestone_draft(draft, today, enforce_future_due_date),
            rubric_result(draft.evaluation.rubric),
        )
        if draft.settings is None:
            validate_settings(result, self.default_settings())
        return result

    # ── Create / update ──────────────────────────────────────────────────────

    def create(
        self,
        draft: DraftInput,
        today: Optional[date] = None,
        now: Optional[datetime] = None,
        milestone_id: Optional[str] = None,
    ) -> Milestone:
        draft = parse_model(MilestoneDraft, draft)
        result = self.validate(draft, today)
        if not result.valid:
            raise ValidationError(result)

        now = now or _utcnow()
        return Milestone(
            id                = milestone_id or str(uuid.uuid4()),
            project_id        = draft.project_id.strip(),
            name              = draft.name.strip(),
            description       = draft.description.strip(),
            due_date          = draft.due_date,
            type              = draft.type,
            requirements      = [r.model_copy(deep=True) for r in draft.requirements],
            evaluation        = draft.evaluation.model_copy(deep=True),
            persona_sign_offs = signoff.initialize(draft.persona_ids),
            settings          = (draft.settings or self.default_settings()).model_copy(),
            checkpoints       = [],
            created_at        = now,
            updated_at        = now,
        )

    def update(
        self,
        milestone: Milestone,
        patch: dict[str, Any],
        today: Optional[date] = None,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Milestone:
        """
        Apply *patch* and re-validate the whole merged milestone.  A persona
        list in the patch resyncs the sign-offs; retained personas keep their
        decision.  Checkpoint sign-offs are left untouched.
        """
        self._check_writable(milestone, expected_version)
        if patch is not None and not isinstance(patch, dict):
            raise ValidationError.single("body", "Update body must be an object", code="V-11")
        merged = self._merge_patch(milestone, patch or {})
        draft = parse_model(MilestoneDraft, merged)
        result = self.validate(draft, today)
        if not result.valid:
            raise ValidationError(result)

        return milestone.model_copy(update={
            "name":              draft.name.strip(),
            "description":       draft.description.strip(),
            "due_date":          draft.due_date,
            "type":              draft.type,
            "requirements":      [r.model_copy(deep=True) for r in draft.requirements],
            "evaluation":        draft.evaluation.model_copy(deep=True),
            "settings":          (draft.settings or milestone.settings).model_copy(),
            "persona_sign_offs": signoff.sync_signers(milestone.persona_sign_offs,
                                                      draft.persona_ids),
            "updated_at":        now or _utcnow(),
        })

    def _merge_patch(self, milestone: Milestone, patch: dict[str, Any]) -> dict[str, Any]:
        merged: dict[str, Any] = {
            "project_id":   milestone.project_id,
            "name":         milestone.name,
            "description":  milestone.description,
            "due_date":     milestone.due_date,
            "type":         milestone.type,
            "requirements": milestone.requirements,
            "evaluation":   milestone.evaluation,
            "persona_ids":  milestone.persona_ids(),
            "settings":     milestone.settings,
        }
        current_wire = milestone.to_wire()
        problems = ValidationResult()

        for key, value in patch.items():
            if key in _DERIVED_FIELDS:
                continue
            if key in _MANAGED_FIELDS:
                wire_key = _MANAGED_FIELDS[key]
                if value != current_wire.get(wire_key):
                    problems.add("V-11", wire_key, f"{wire_key} cannot be changed through update")
                continue
            target = _PATCH_FIELDS.get(key)
            if target is None:
                problems.add("V-11", key, "Unknown field")
            elif target == "settings" and isinstance(value, dict):
                merged["settings"] = {
                    **milestone.settings.model_dump(),
                    **{to_snake(k): v for k, v in value.items()},
                }
            elif target == "persona_ids" and isinstance(value, list):
                merged["persona_ids"] = [_persona_id_of(item) for item in value]
            else:
                merged[target] = value

        if not problems.valid:
            raise ValidationError(problems)
        return merged

    # ── Sign-offs ────────────────────────────────────────────────────────────

    def record_sign_off(
        self,
        milestone: Milestone,
        persona_id: str,
        decision: SignOffDecision,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
        resubmission_count: int = 0,
    ) -> MilestoneEvaluation:
        """Record one persona decision and return the recomputed view."""
        self._check_writable(milestone, expected_version)
        now = now or _utcnow()
        sign_offs = signoff.record_decision(milestone.persona_sign_offs, persona_id, decision, now=now)
        updated = milestone.model_copy(update={"persona_sign_offs": sign_offs, "updated_at": now})
        return self.evaluate(updated, now=now, resubmission_count=resubmission_count)

    # ── Resubmission / closure ───────────────────────────────────────────────

    def request_resubmission(self, milestone: Milestone, resubmission_count: int) -> int:
        """
        Guard a resubmission request.  Returns the counter value the caller
        should store; the engine keeps no counter of its own.
        """
        if milestone.is_closed:
            raise ConflictError(f"Milestone '{milestone.id}' is closed")
        s = milestone.settings
        if not s.allow_resubmission:
            raise LimitExceededError(
                "Resubmission is not allowed for this milestone",
                limit=0, count=resubmission_count,
            )
        if resubmission_count >= s.max_resubmissions:
            raise LimitExceededError(
                f"Resubmission limit of {s.max_resubmissions} reached",
                limit=s.max_resubmissions, count=resubmission_count,
            )
        return resubmission_count + 1

    def check_auto_close(self, milestone: Milestone, now: datetime) -> bool:
        """True once *now* is past dueDate + autoCloseAfterDays and the milestone is open."""
        if milestone.is_closed:
            return False
        deadline = datetime.combine(
            milestone.due_date + timedelta(days=milestone.settings.auto_close_after_days),
            time.min,
        )
        return _local_naive(now) > deadline

    def close(
        self,
        milestone: Milestone,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Milestone:
        """Terminal transition; closing a closed milestone returns it unchanged."""
        if milestone.is_closed:
            return milestone
        self._check_version(milestone, expected_version)
        now = now or _utcnow()
        return milestone.model_copy(update={"closed_at": now, "updated_at": now})

    # ── Derived state ────────────────────────────────────────────────────────

    def state(self, milestone: Milestone) -> LifecycleState:
        if milestone.is_closed:
            return LifecycleState.CLOSED
        if not self.validate(self._draft_of(milestone), enforce_future_due_date=False).valid:
            return LifecycleState.DRAFT_INVALID
        if signoff.is_complete(milestone.persona_sign_offs,
                               milestone.settings.require_all_persona_approvals):
            return LifecycleState.READY_TO_CLOSE
        return LifecycleState.OPEN

    def evaluate(
        self,
        milestone: Milestone,
        now: Optional[datetime] = None,
        resubmission_count: int = 0,
    ) -> MilestoneEvaluation:
        now = now or _utcnow()
        today = _local_naive(now).date()
        state = self.state(milestone)
        return MilestoneEvaluation(
            milestone                  = milestone,
            state                      = state,
            completion_percentage      = signoff.completion_percentage(milestone.persona_sign_offs),
            is_ready_to_close          = state == LifecycleState.READY_TO_CLOSE,
            is_overdue                 = not milestone.is_closed and today > milestone.due_date,
            days_until_due             = (milestone.due_date - today).days,
            average_satisfaction_score = signoff.average_satisfaction_score(milestone.persona_sign_offs),
            resubmission_exhausted     = resubmission_count >= milestone.settings.max_resubmissions,
            should_auto_close          = self.check_auto_close(milestone, now),
            checkpoint_summary         = checkpoint_manager.checkpoint_summary(milestone.checkpoints),
        )

    # ── Checkpoints ──────────────────────────────────────────────────────────

    def add_checkpoint(
        self,
        milestone: Milestone,
        draft: Union[CheckpointDraft, dict[str, Any]],
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
        checkpoint_id: Optional[str] = None,
    ) -> Milestone:
        """Checkpoints can only be added to a milestone that already has an id."""
        self._check_writable(milestone, expected_version)
        if not milestone.id:
            raise NotFoundError("milestone", milestone.id or "<unsaved>")
        cps = checkpoint_manager.add_checkpoint(milestone.checkpoints, draft, checkpoint_id)
        return self._with_checkpoints(milestone, cps, now)

    def update_checkpoint(
        self,
        milestone: Milestone,
        checkpoint_id: str,
        patch: Union[CheckpointPatch, dict[str, Any]],
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Milestone:
        self._check_writable(milestone, expected_version)
        cps = checkpoint_manager.update_checkpoint(milestone.checkpoints, checkpoint_id, patch)
        return self._with_checkpoints(milestone, cps, now)

    def remove_checkpoint(
        self,
        milestone: Milestone,
        checkpoint_id: str,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Milestone:
        self._check_writable(milestone, expected_version)
        if milestone.checkpoint_by_id(checkpoint_id) is None:
            return milestone
        cps = checkpoint_manager.remove_checkpoint(milestone.checkpoints, checkpoint_id)
        return self._with_checkpoints(milestone, cps, now)

    def record_checkpoint_sign_off(
        self,
        milestone: Milestone,
        checkpoint_id: str,
        persona_id: str,
        decision: SignOffDecision,
        now: Optional[datetime] = None,
        expected_version: Optional[int] = None,
    ) -> Milestone:
        self._check_writable(milestone, expected_version)
        now = now or _utcnow()
        cps = checkpoint_manager.record_checkpoint_sign_off(
            milestone.checkpoints, checkpoint_id, persona_id, decision, now=now,
        )
        return self._with_checkpoints(milestone, cps, now)

    # ── Internals ────────────────────────────────────────────────────────────

    @staticmethod
    def _with_checkpoints(milestone: Milestone, cps, now: Optional[datetime]) -> Milestone:
        return milestone.model_copy(update={"checkpoints": cps, "updated_at": now or _utcnow()})

    @staticmethod
    def _draft_of(milestone: Milestone) -> MilestoneDraft:
        return MilestoneDraft(
            project_id   = milestone.project_id,
            name         = milestone.name,
            description  = milestone.description,
            due_date     = milestone.due_date,
            type         = milestone.type,
            requirements = milestone.requirements,
            evaluation   = milestone.evaluation,
            persona_ids  = milestone.persona_ids(),
            settings     = milestone.settings,
        )

    @staticmethod
    def _check_version(milestone: Milestone, expected_version: Optional[int]) -> None:
        if expected_version is not None and expected_version != milestone.version:
            raise ConflictError(
                f"Milestone '{milestone.id}' is at version {milestone.version}, "
                f"expected {expected_version}",
                expected=expected_version, actual=milestone.version,
            )

    def _check_writable(self, milestone: Milestone, expected_version: Optional[int]) -> None:
        if milestone.is_closed:
            raise ConflictError(f"Milestone '{milestone.id}' is closed")
        self._check_version(milestone, expected_version)
