"""
api.py – REST-shaped operation surface
======================================
Framework-free handlers mirroring the milestone endpoints.  Each handler
loads the milestone from the reference store, calls the pure lifecycle
controller, saves the result and returns an ApiResponse with the HTTP
status and camelCase body an HTTP adapter would send.

  POST   /milestones                                   create_milestone
  GET    /milestones/{id}                              get_milestone
  PUT    /milestones/{id}                              update_milestone
  PUT    /milestones/{id}/sign-off                     update_sign_off
  POST   /milestones/{id}/checkpoints                  add_checkpoint
  PUT    /milestones/{id}/checkpoints/{cid}            update_checkpoint
  DELETE /milestones/{id}/checkpoints/{cid}            delete_checkpoint
  PUT    /milestones/{id}/checkpoints/{cid}/sign-off   update_checkpoint_sign_off
  POST   /milestones/{id}/resubmissions                request_resubmission
  POST   /milestones/{id}/close                        close_milestone
  GET    /projects/{pid}/milestones                    list_milestones
  GET    /projects/{pid}/milestones/summary            project_summary
  GET    /projects/{pid}/milestones/analytics          project_analytics
  POST   /projects/{pid}/milestones/auto-close         run_auto_close

Error mapping: ValidationError → 400 with the ``{fieldKey: message}`` map,
NotFoundError → 404, ConflictError → 409, LimitExceededError → 422.
Authentication and persona/project directory checks sit in front of this
layer and are not handled here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Optional, Union

from milestone_engine import database as db
from milestone_engine import signoff
from milestone_engine.config import Settings, get_settings
from milestone_engine.errors import (
    ConflictError,
    LimitExceededError,
    MilestoneEngineError,
    NotFoundError,
    ValidationError,
)
from milestone_engine.lifecycle import MilestoneLifecycle, _local_naive, _utcnow
from milestone_engine.models import (
    LifecycleState,
    Milestone,
    MilestoneType,
    SignOff,
    SignOffDecision,
    SignOffStatus,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type, int]] = [
    (ValidationError,    400),
    (NotFoundError,      404),
    (ConflictError,      409),
    (LimitExceededError, 422),
]


def _today_of(now: Optional[datetime]) -> Optional[date]:
    return _local_naive(now).date() if now is not None else None


def _created_within(milestone: Milestone, start: Optional[date], end: Optional[date]) -> bool:
    if start is None and end is None:
        return True
    if milestone.created_at is None:
        return False
    created = _local_naive(milestone.created_at).date()
    return (start is None or created >= start) and (end is None or created <= end)


@dataclass
class ApiResponse:
    status_code: int
    body:        Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class MilestoneApi:
    """Request handlers over the lifecycle controller and the SQLite store."""

    def __init__(
        self,
        db_path: Optional[Union[str, Path]] = None,
        settings: Optional[Settings] = None,
        lifecycle: Optional[MilestoneLifecycle] = None,
    ):
        self.settings  = settings or get_settings()
        self.lifecycle = lifecycle or MilestoneLifecycle(self.settings.defaults)
        self.db_path   = db_path
        db.init_db(db_path)

    # ── Helpers ──────────────────────────────────────────────────────────────

    def _error(self, action: str, exc: MilestoneEngineError) -> ApiResponse:
        status = next((code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500)
        logger.warning("Rejected %s (%d): %s", action, status, exc)
        if isinstance(exc, ValidationError):
            return ApiResponse(status, exc.errors)
        return ApiResponse(status, {"error": str(exc)})

    def _load(self, milestone_id: str) -> Milestone:
        milestone = db.get_milestone(milestone_id, self.db_path)
        if milestone is None:
            raise NotFoundError("milestone", milestone_id)
        return milestone

    def _view(self, milestone: Milestone, now: Optional[datetime] = None) -> dict[str, Any]:
        count = db.get_resubmission_count(milestone.id, self.db_path)
        return self.lifecycle.evaluate(milestone, now=now, resubmission_count=count).to_wire()

    def _save(self, milestone: Milestone, expected_version: Optional[int] = None) -> Milestone:
        return db.save_milestone(milestone, expected_version, self.db_path)

    @staticmethod
    def _checkpoints_body(milestone: Milestone) -> list[dict[str, Any]]:
        return [cp.to_wire() for cp in milestone.checkpoints]

    # ── Milestones ───────────────────────────────────────────────────────────

    def create_milestone(self, body: dict[str, Any], now: Optional[datetime] = None) -> ApiResponse:
        try:
            milestone = self.lifecycle.create(body, today=_today_of(now), now=now)
            saved = self._save(milestone)
        except MilestoneEngineError as exc:
            return self._error("create milestone", exc)
        logger.info("Milestone created successfully: %s (project %s)", saved.id, saved.project_id)
        return ApiResponse(201, self._view(saved, now))

    def get_milestone(self, milestone_id: str, now: Optional[datetime] = None) -> ApiResponse:
        try:
            milestone = self._load(milestone_id)
        except MilestoneEngineError as exc:
            return self._error("get milestone", exc)
        return ApiResponse(200, self._view(milestone, now))

    def update_milestone(
        self,
        milestone_id: str,
        body: dict[str, Any],
        expected_version: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ApiResponse:
        try:
            current = self._load(milestone_id)
            updated = self.lifecycle.update(current, body, today=_today_of(now), now=now,
                                            expected_version=expected_version)
            saved = self._save(updated)
        except MilestoneEngineError as exc:
            return self._error("update milestone", exc)
        logger.info("Milestone updated successfully: %s (changes: %s)",
                    milestone_id, ", ".join(sorted(body or {})) or "none")
        return ApiResponse(200, self._view(saved, now))

    def update_sign_off(
        self,
        milestone_id: str,
        body: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> ApiResponse:
        persona_id = body.get("personaId")
        if not persona_id:
            return self._error("update sign-off",
                               ValidationError.single("personaId", "Persona is required"))
        try:
            current = self._load(milestone_id)
            count = db.get_resubmission_count(milestone_id, self.db_path)
            result = self.lifecycle.record_sign_off(
                current, persona_id, SignOffDecision.from_wire(body),
                now=now, resubmission_count=count,
            )
            saved = self._save(result.milestone)
        except MilestoneEngineError as exc:
            return self._error("update sign-off", exc)
        logger.info("Persona sign-off updated: milestone %s, persona %s, status %s",
                    milestone_id, persona_id, body.get("status"))
        return ApiResponse(200, self._view(saved, now))

    def request_resubmission(self, milestone_id: str) -> ApiResponse:
        try:
            milestone = self._load(milestone_id)
            count = db.get_resubmission_count(milestone_id, self.db_path)
            self.lifecycle.request_resubmission(milestone, count)
            new_count = db.increment_resubmission_count(
                milestone_id, self.db_path, limit=milestone.settings.max_resubmissions,
            )
        except MilestoneEngineError as exc:
            return self._error("request resubmission", exc)
        logger.info("Resubmission %d accepted for milestone %s", new_count, milestone_id)
        return ApiResponse(200, {
            "resubmissionCount": new_count,
            "remaining":         max(milestone.settings.max_resubmissions - new_count, 0),
        })

    def close_milestone(self, milestone_id: str, now: Optional[datetime] = None) -> ApiResponse:
        try:
            current = self._load(milestone_id)
            closed = self.lifecycle.close(current, now=now)
            saved = closed if closed is current else self._save(closed)
        except MilestoneEngineError as exc:
            return self._error("close milestone", exc)
        logger.info("Milestone closed: %s", milestone_id)
        return ApiResponse(200, self._view(saved, now))

    # ── Checkpoints ──────────────────────────────────────────────────────────

    def add_checkpoint(
        self,
        milestone_id: str,
        body: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> ApiResponse:
        try:
            current = self._load(milestone_id)
            saved = self._save(self.lifecycle.add_checkpoint(current, body, now=now))
        except MilestoneEngineError as exc:
            return self._error("add checkpoint", exc)
        logger.info("Checkpoint created on milestone %s", milestone_id)
        return ApiResponse(201, self._checkpoints_body(saved))

    def update_checkpoint(
        self,
        milestone_id: str,
        checkpoint_id: str,
        body: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> ApiResponse:
        try:
            current = self._load(milestone_id)
            saved = self._save(
                self.lifecycle.update_checkpoint(current, checkpoint_id, body, now=now)
            )
        except MilestoneEngineError as exc:
            return self._error("update checkpoint", exc)
        logger.info("Checkpoint %s updated on milestone %s", checkpoint_id, milestone_id)
        return ApiResponse(200, self._checkpoints_body(saved))

    def delete_checkpoint(
        self,
        milestone_id: str,
        checkpoint_id: str,
        now: Optional[datetime] = None,
    ) -> ApiResponse:
        """Idempotent; deleting an unknown checkpoint returns the list unchanged."""
        try:
            current = self._load(milestone_id)
            updated = self.lifecycle.remove_checkpoint(current, checkpoint_id, now=now)
            saved = updated if updated is current else self._save(updated)
        except MilestoneEngineError as exc:
            return self._error("delete checkpoint", exc)
        logger.info("Checkpoint %s deleted from milestone %s", checkpoint_id, milestone_id)
        return ApiResponse(200, self._checkpoints_body(saved))

    def update_checkpoint_sign_off(
        self,
        milestone_id: str,
        checkpoint_id: str,
        body: dict[str, Any],
        now: Optional[datetime] = None,
    ) -> ApiResponse:
        persona_id = body.get("personaId")
        if not persona_id:
            return self._error("update checkpoint sign-off",
                               ValidationError.single("personaId", "Persona is required"))
        try:
            current = self._load(milestone_id)
            saved = self._save(self.lifecycle.record_checkpoint_sign_off(
                current, checkpoint_id, persona_id, SignOffDecision.from_wire(body), now=now,
            ))
        except MilestoneEngineError as exc:
            return self._error("update checkpoint sign-off", exc)
        logger.info("Checkpoint sign-off updated: milestone %s, checkpoint %s, persona %s",
                    milestone_id, checkpoint_id, persona_id)
        return ApiResponse(200, self._checkpoints_body(saved))

    # ── Project-level reads ──────────────────────────────────────────────────

    def list_milestones(self, project_id: str, now: Optional[datetime] = None) -> ApiResponse:
        milestones = db.get_project_milestones(project_id, self.db_path)
        return ApiResponse(200, [self._view(m, now) for m in milestones])

    def project_summary(self, project_id: str, now: Optional[datetime] = None) -> ApiResponse:
        """Counts per lifecycle state plus the next few deadlines."""
        now = now or _utcnow()
        today = _local_naive(now).date()
        horizon = today + timedelta(days=self.settings.app.upcoming_window_days)

        summary: dict[str, Any] = {s.value: 0 for s in LifecycleState}
        summary.update({"total": 0, "overdue": 0})
        upcoming: list[Milestone] = []

        for m in db.get_project_milestones(project_id, self.db_path):
            evaluation = self.lifecycle.evaluate(m, now=now)
            summary["total"] += 1
            summary[evaluation.state.value] += 1
            if evaluation.is_overdue:
                summary["overdue"] += 1
            if not m.is_closed and today <= m.due_date <= horizon:
                upcoming.append(m)

        upcoming.sort(key=lambda m: m.due_date)
        summary["upcomingDeadlines"] = [
            {"id": m.id, "name": m.name, "dueDate": m.due_date.isoformat()}
            for m in upcoming[:5]
        ]
        return ApiResponse(200, summary)

    def project_analytics(
        self,
        project_id: str,
        created_from: Optional[date] = None,
        created_to: Optional[date] = None,
    ) -> ApiResponse:
        """
        Completion rate, mean hours from creation to close, per-persona
        engagement and the mix of milestone types.  The optional bounds
        restrict the set to milestones created within them (inclusive).
        """
        milestones = [
            m for m in db.get_project_milestones(project_id, self.db_path)
            if _created_within(m, created_from, created_to)
        ]
        closed = [m for m in milestones if m.is_closed]
        hours = [
            (_local_naive(m.closed_at) - _local_naive(m.created_at)).total_seconds() / 3600
            for m in closed if m.created_at is not None
        ]

        by_persona: dict[str, list[SignOff]] = {}
        for m in milestones:
            for s in m.persona_sign_offs:
                by_persona.setdefault(s.persona_id, []).append(s)

        types = {t.value: 0 for t in MilestoneType}
        for m in milestones:
            types[m.type.value] += 1

        return ApiResponse(200, {
            "total":                  len(milestones),
            "completionRate":         round(100 * len(closed) / len(milestones), 1) if milestones else 0.0,
            "averageCompletionHours": round(sum(hours) / len(hours), 1) if hours else None,
            "personaEngagement": [
                {
                    "personaId":           pid,
                    "signOffCount":        len(entries),
                    "decidedCount":        sum(1 for s in entries if s.status != SignOffStatus.PENDING),
                    "approvedCount":       sum(1 for s in entries if s.status == SignOffStatus.APPROVED),
                    "averageSatisfaction": signoff.average_satisfaction_score(entries),
                }
                for pid, entries in by_persona.items()
            ],
            "milestoneTypeDistribution": types,
        })

    def run_auto_close(self, project_id: str, now: Optional[datetime] = None) -> ApiResponse:
        """Scheduler hook: close every milestone whose auto-close window has passed."""
        now = now or _utcnow()
        closed_ids: list[str] = []
        for m in db.get_project_milestones(project_id, self.db_path):
            if not self.lifecycle.check_auto_close(m, now):
                continue
            try:
                self._save(self.lifecycle.close(m, now=now))
            except ConflictError as exc:
                logger.warning("Auto-close skipped for %s: %s", m.id, exc)
                continue
            closed_ids.append(m.id)
        if closed_ids:
            logger.info("Auto-closed %d milestone(s) in project %s", len(closed_ids), project_id)
        return ApiResponse(200, {"closed": closed_ids})
