"""
Data models for the Milestone Lifecycle & Evaluation Engine.

Validated entities (Milestone, Checkpoint, SignOff, ...) are frozen Pydantic
models so every engine operation returns a new snapshot instead of mutating
its input.  Caller-supplied input that has not been validated yet lives in
the *Draft* models and the SignOffDecision dataclass.

All models serialise to the camelCase wire format used by the REST layer
via ``to_wire()`` and parse it back with ``from_wire()``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# ─── Enumerations ────────────────────────────────────────────────────────────

class MilestoneType(str, Enum):
    """What kind of work the milestone asks the team to produce."""
    DELIVERABLE  = "deliverable"
    REVIEW       = "review"
    PRESENTATION = "presentation"
    FEEDBACK     = "feedback"


class RequirementType(str, Enum):
    FILE         = "file"
    TEXT         = "text"
    LINK         = "link"
    PRESENTATION = "presentation"


class SignOffStatus(str, Enum):
    """A persona's decision on a milestone or checkpoint."""
    PENDING           = "pending"             # initial state
    APPROVED          = "approved"
    REJECTED          = "rejected"
    REQUESTED_CHANGES = "requested-changes"


class CheckpointStatus(str, Enum):
    PENDING     = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED   = "completed"
    OVERDUE     = "overdue"       # set by the caller's scheduler, never by the engine


class LifecycleState(str, Enum):
    """Aggregate milestone state, derived from its parts (never stored)."""
    DRAFT_INVALID  = "draft-invalid"
    OPEN           = "open"
    READY_TO_CLOSE = "ready-to-close"
    CLOSED         = "closed"


# ─── Field limits (shared by validation and checkpoint management) ──────────

MAX_NAME_LENGTH                  = 100
MAX_DESCRIPTION_LENGTH           = 1000
MAX_REQUIREMENT_TITLE_LENGTH     = 100
MAX_REQUIREMENT_DESCRIPTION_LENGTH = 500
MAX_CRITERION_LENGTH             = 100
MAX_CRITERION_DESCRIPTION_LENGTH = 300
MAX_CHECKPOINT_TITLE_LENGTH      = 100
MAX_CHECKPOINT_DESCRIPTION_LENGTH = 600
MAX_FEEDBACK_LENGTH              = 1000

MAX_RESUBMISSIONS_RANGE   = (0, 10)
AUTO_CLOSE_DAYS_RANGE     = (1, 90)
SATISFACTION_SCORE_RANGE  = (1, 10)


# ─── Wire base ───────────────────────────────────────────────────────────────

class WireModel(BaseModel):
    """Base for every model exchanged with the REST layer (camelCase keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        use_enum_values=False,
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_wire(cls, data: dict[str, Any]):
        return cls.model_validate(data)


# ─── Milestone parts ─────────────────────────────────────────────────────────

class Requirement(WireModel):
    title:       str
    description: str
    is_required: bool            = True
    type:        RequirementType = RequirementType.TEXT


class RubricCriterion(WireModel):
    """One weighted, scorable evaluation dimension."""
    criterion:   str
    weight:      float           # 0 < weight ≤ 100; all weights sum to 100
    max_score:   int
    description: str


class Evaluation(WireModel):
    rubric: list[RubricCriterion] = Field(default_factory=list)


class MilestoneSettings(WireModel):
    require_all_persona_approvals: bool = True
    allow_resubmission:            bool = True
    max_resubmissions:             int  = 3    # 0–10
    auto_close_after_days:         int  = 7    # 1–90


class SignOff(WireModel):
    """Per-persona approval entry; ``persona_id`` references an external Persona."""
    persona_id:         str
    status:             SignOffStatus      = SignOffStatus.PENDING
    feedback:           Optional[str]      = None
    satisfaction_score: Optional[int]      = Field(default=None, ge=1, le=10)
    signed_off_at:      Optional[datetime] = None


class Checkpoint(WireModel):
    """A sub-deliverable nested inside a milestone."""
    id:                str
    title:             str
    description:       str
    due_date:          date
    status:            CheckpointStatus  = CheckpointStatus.PENDING
    persona_sign_offs: list[SignOff]     = Field(default_factory=list)
    requirements:      list[Requirement] = Field(default_factory=list)


class Milestone(WireModel):
    """
    A validated milestone snapshot.

    ``version`` belongs to the persistence layer (optimistic concurrency);
    the engine compares it but never changes it.
    """
    id:                str
    project_id:        str
    name:              str
    description:       str
    due_date:          date
    type:              MilestoneType
    requirements:      list[Requirement] = Field(default_factory=list)
    evaluation:        Evaluation        = Field(default_factory=Evaluation)
    persona_sign_offs: list[SignOff]     = Field(default_factory=list)
    settings:          MilestoneSettings = Field(default_factory=MilestoneSettings)
    checkpoints:       list[Checkpoint]  = Field(default_factory=list)
    created_at:        Optional[datetime] = None
    updated_at:        Optional[datetime] = None
    closed_at:         Optional[datetime] = None
    version:           int                = 0

    # ── Derived helpers ──────────────────────────────────────────────────────

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def persona_ids(self) -> list[str]:
        return [s.persona_id for s in self.persona_sign_offs]

    def checkpoint_by_id(self, checkpoint_id: str) -> Optional[Checkpoint]:
        return next((c for c in self.checkpoints if c.id == checkpoint_id), None)


# ─── Caller input (unvalidated) ──────────────────────────────────────────────

class MilestoneDraft(WireModel):
    """
    Milestone input as submitted by a form or API body.

    Text fields may be blank and numbers out of range; the Validation Module
    reports those.  Only structurally impossible values (unknown enum strings,
    non-numeric weights) are rejected while parsing.
    """
    project_id:   str                        = ""
    name:         str                        = ""
    description:  str                        = ""
    due_date:     Optional[date]             = None
    type:         Optional[MilestoneType]    = None
    requirements: list[Requirement]          = Field(default_factory=list)
    evaluation:   Evaluation                 = Field(default_factory=Evaluation)
    persona_ids:  list[str]                  = Field(default_factory=list,
                                                     alias="personaSignOffs")
    settings:     Optional[MilestoneSettings] = None   # None → configured defaults


class CheckpointDraft(WireModel):
    title:        str               = ""
    description:  str               = ""
    due_date:     Optional[date]    = None
    requirements: list[Requirement] = Field(default_factory=list)
    persona_ids:  list[str]         = Field(default_factory=list,
                                            alias="personaSignOffs")


class CheckpointPatch(WireModel):
    """Partial checkpoint edit; only fields in ``model_fields_set`` are applied."""
    title:        Optional[str]               = None
    description:  Optional[str]               = None
    due_date:     Optional[date]              = None
    status:       Optional[CheckpointStatus]  = None
    requirements: Optional[list[Requirement]] = None


@dataclass
class SignOffDecision:
    """
    Raw decision submitted for one persona.
    ``status`` may arrive as a plain string; the tracker coerces and checks it.
    """
    status:             Union[SignOffStatus, str]
    feedback:           Optional[str] = None
    satisfaction_score: Any           = None   # must be an int 1–10 when given

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "SignOffDecision":
        return cls(
            status             = data.get("status", ""),
            feedback           = data.get("feedback"),
            satisfaction_score = data.get("satisfactionScore"),
        )
