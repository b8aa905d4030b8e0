"""
Tests for the MilestoneLifecycle controller: create / update, derived
states, sign-off recording, resubmission guard, auto-close and closure.
"""
from datetime import date, datetime, timedelta, timezone

import pytest
from factories import NOW, TODAY, make_checkpoint_draft, make_draft, make_lifecycle, make_milestone

from milestone_engine.errors import (
    ConflictError,
    LimitExceededError,
    NotFoundError,
    ValidationError,
)
from milestone_engine.models import LifecycleState, SignOffDecision, SignOffStatus

LATER = NOW + timedelta(hours=1)


def _approve(lc, milestone, *persona_ids, score=None):
    result = None
    for pid in persona_ids:
        result = lc.record_sign_off(milestone, pid, SignOffDecision("approved", satisfaction_score=score),
                                    now=NOW)
        milestone = result.milestone
    return result


# ─── Create ───────────────────────────────────────────────────────────────────

class TestCreate:
    def test_create_initialises_signoffs_pending(self, lifecycle):
        m = make_milestone(lifecycle)
        assert m.id == "m-1"
        assert m.persona_ids() == ["p1", "p2", "p3"]
        assert all(s.status == SignOffStatus.PENDING for s in m.persona_sign_offs)
        assert m.checkpoints == []
        assert m.created_at == m.updated_at == NOW
        assert m.version == 0

    def test_create_trims_text(self, lifecycle):
        m = make_milestone(lifecycle, name="  Kickoff  ")
        assert m.name == "Kickoff"

    def test_create_applies_configured_defaults(self):
        lc = make_lifecycle(max_resubmissions=5, require_all_persona_approvals=False)
        m = make_milestone(lc)
        assert m.settings.max_resubmissions == 5
        assert m.settings.require_all_persona_approvals is False

    def test_out_of_range_configured_defaults_rejected(self):
        lc = make_lifecycle(max_resubmissions=50, auto_close_after_days=0)
        with pytest.raises(ValidationError) as exc:
            lc.create(make_draft(), today=TODAY, now=NOW)
        assert {"maxResubmissions", "autoCloseAfterDays"} <= set(exc.value.errors)

    def test_explicit_settings_bypass_configured_defaults(self):
        lc = make_lifecycle(max_resubmissions=50)
        m = make_milestone(lc, settings={"maxResubmissions": 2, "autoCloseAfterDays": 7,
                                         "allowResubmission": True,
                                         "requireAllPersonaApprovals": True})
        assert m.settings.max_resubmissions == 2

    def test_explicit_settings_win(self, lifecycle):
        m = make_milestone(lifecycle, settings={"maxResubmissions": 1})
        assert m.settings.max_resubmissions == 1
        assert m.settings.auto_close_after_days == 7

    def test_generated_id(self, lifecycle):
        m = lifecycle.create(make_draft(), today=TODAY, now=NOW)
        assert m.id

    def test_create_rejects_bad_rubric_weights(self, lifecycle):
        with pytest.raises(ValidationError) as exc:
            make_milestone(lifecycle, rubric=[
                {"criterion": "A", "weight": 50, "maxScore": 10, "description": "d"},
                {"criterion": "B", "weight": 40, "maxScore": 10, "description": "d"},
            ])
        assert exc.value.errors == {"rubricWeight": "Rubric criteria weights must sum to 100%"}

    def test_create_collects_draft_and_rubric_errors(self, lifecycle):
        with pytest.raises(ValidationError) as exc:
            make_milestone(lifecycle, name="", rubric=[
                {"criterion": "", "weight": 100, "maxScore": 10, "description": "d"},
            ])
        assert set(exc.value.errors) == {"name", "rubric_0_criterion"}

    def test_create_rejects_past_due_date(self, lifecycle):
        with pytest.raises(ValidationError) as exc:
            make_milestone(lifecycle, due_date=TODAY - timedelta(days=1))
        assert "dueDate" in exc.value.errors

    def test_validate_returns_result_without_raising(self, lifecycle):
        result = lifecycle.validate(make_draft(name=""), today=TODAY)
        assert not result.valid
        assert "name" in result.errors


# ─── Update ───────────────────────────────────────────────────────────────────

class TestUpdate:
    def test_empty_patch_round_trip(self, lifecycle, milestone):
        updated = lifecycle.update(milestone, {}, today=TODAY, now=LATER)
        assert updated.updated_at == LATER
        assert updated.model_copy(update={"updated_at": milestone.updated_at}) == milestone

    def test_echoed_wire_body_is_accepted(self, lifecycle, milestone):
        view = lifecycle.evaluate(milestone, now=NOW).to_wire()
        updated = lifecycle.update(milestone, view, today=TODAY, now=LATER)
        assert updated.model_copy(update={"updated_at": milestone.updated_at}) == milestone

    def test_name_change(self, lifecycle, milestone):
        updated = lifecycle.update(milestone, {"name": "Final review"}, today=TODAY, now=LATER)
        assert updated.name == "Final review"
        assert milestone.name == "Design review"

    def test_update_revalidates_merged_result(self, lifecycle, milestone):
        with pytest.raises(ValidationError) as exc:
            lifecycle.update(milestone, {"description": "  "}, today=TODAY)
        assert "description" in exc.value.errors

    def test_settings_patch_is_merged(self, lifecycle, milestone):
        updated = lifecycle.update(milestone, {"settings": {"maxResubmissions": 6}}, today=TODAY)
        assert updated.settings.max_resubmissions == 6
        assert updated.settings.auto_close_after_days == 7

    def test_settings_out_of_range(self, lifecycle, milestone):
        with pytest.raises(ValidationError) as exc:
            lifecycle.update(milestone, {"settings": {"autoCloseAfterDays": 0}}, today=TODAY)
        assert "autoCloseAfterDays" in exc.value.errors

    def test_persona_resync_keeps_decisions(self, lifecycle, milestone):
        approved = _approve(lifecycle, milestone, "p1").milestone
        updated = lifecycle.update(approved, {"personaSignOffs": ["p1", "p4"]}, today=TODAY)
        assert updated.persona_ids() == ["p1", "p4"]
        assert updated.persona_sign_offs[0].status == SignOffStatus.APPROVED
        assert updated.persona_sign_offs[1].status == SignOffStatus.PENDING

    def test_persona_removal_does_not_touch_checkpoints(self, lifecycle, milestone):
        m = lifecycle.add_checkpoint(milestone, make_checkpoint_draft(personas=["p2"]), now=NOW)
        updated = lifecycle.update(m, {"personaSignOffs": ["p1"]}, today=TODAY)
        assert updated.checkpoints[0].persona_sign_offs[0].persona_id == "p2"

    def test_changing_project_rejected(self, lifecycle, milestone):
        with pytest.raises(ValidationError) as exc:
            lifecycle.update(milestone, {"projectId": "other"}, today=TODAY)
        assert "projectId" in exc.value.errors

    def test_unknown_field_rejected(self, lifecycle, milestone):
        with pytest.raises(ValidationError) as exc:
            lifecycle.update(milestone, {"colour": "red"}, today=TODAY)
        assert exc.value.errors == {"colour": "Unknown field"}

    @pytest.mark.parametrize("patch", [["name"], "name=x", 7])
    def test_non_object_patch_rejected(self, lifecycle, milestone, patch):
        with pytest.raises(ValidationError) as exc:
            lifecycle.update(milestone, patch, today=TODAY)
        assert exc.value.errors == {"body": "Update body must be an object"}

    def test_stale_version(self, lifecycle, milestone):
        with pytest.raises(ConflictError):
            lifecycle.update(milestone, {"name": "x"}, today=TODAY, expected_version=4)

    def test_matching_version(self, lifecycle, milestone):
        updated = lifecycle.update(milestone, {"name": "x"}, today=TODAY, expected_version=0)
        assert updated.name == "x"


# ─── Sign-off and state ───────────────────────────────────────────────────────

class TestSignOffAndState:
    def test_new_milestone_is_open(self, lifecycle, milestone):
        assert lifecycle.state(milestone) == LifecycleState.OPEN

    def test_two_of_three(self, lifecycle, milestone):
        result = _approve(lifecycle, milestone, "p1", "p2")
        assert result.completion_percentage == 67
        assert not result.is_ready_to_close
        assert result.state == LifecycleState.OPEN

    def test_all_approved_ready_to_close(self, lifecycle, milestone):
        result = _approve(lifecycle, milestone, "p1", "p2", "p3")
        assert result.completion_percentage == 100
        assert result.is_ready_to_close
        assert result.state == LifecycleState.READY_TO_CLOSE

    def test_any_approval_policy(self):
        lc = make_lifecycle(require_all_persona_approvals=False)
        result = _approve(lc, make_milestone(lc), "p2")
        assert result.completion_percentage == 33
        assert result.is_ready_to_close

    def test_retraction_reopens(self, lifecycle, milestone):
        ready = _approve(lifecycle, milestone, "p1", "p2", "p3").milestone
        result = lifecycle.record_sign_off(ready, "p3", SignOffDecision("requested-changes"), now=NOW)
        assert result.state == LifecycleState.OPEN

    def test_unknown_persona(self, lifecycle, milestone):
        with pytest.raises(NotFoundError):
            lifecycle.record_sign_off(milestone, "ghost", SignOffDecision("approved"))

    def test_average_score(self, lifecycle, milestone):
        m = _approve(lifecycle, milestone, "p1", score=6).milestone
        result = _approve(lifecycle, m, "p2", score=9)
        assert result.average_satisfaction_score == pytest.approx(7.5)

    def test_invalid_persisted_milestone_is_draft_invalid(self, lifecycle, milestone):
        broken = milestone.model_copy(update={"name": ""})
        assert lifecycle.state(broken) == LifecycleState.DRAFT_INVALID

    def test_past_due_milestone_is_not_draft_invalid(self, lifecycle, milestone):
        late = NOW + timedelta(days=30)
        result = lifecycle.evaluate(milestone, now=late)
        assert result.state == LifecycleState.OPEN
        assert result.is_overdue
        assert result.days_until_due < 0

    def test_evaluate_wire_keys(self, lifecycle, milestone):
        wire = lifecycle.evaluate(milestone, now=NOW).to_wire()
        assert wire["state"] == "open"
        assert wire["completionPercentage"] == 0
        assert wire["checkpointSummary"]["total"] == 0
        assert wire["id"] == "m-1"


# ─── Resubmission ─────────────────────────────────────────────────────────────

class TestResubmission:
    def test_three_allowed_then_limit(self, lifecycle, milestone):
        count = 0
        for _ in range(3):
            count = lifecycle.request_resubmission(milestone, count)
        assert count == 3
        with pytest.raises(LimitExceededError) as exc:
            lifecycle.request_resubmission(milestone, count)
        assert exc.value.limit == 3

    def test_disallowed(self, lifecycle):
        m = make_milestone(lifecycle, settings={"allowResubmission": False})
        with pytest.raises(LimitExceededError):
            lifecycle.request_resubmission(m, 0)

    def test_zero_max(self, lifecycle):
        m = make_milestone(lifecycle, settings={"maxResubmissions": 0})
        with pytest.raises(LimitExceededError):
            lifecycle.request_resubmission(m, 0)

    def test_exhausted_flag(self, lifecycle, milestone):
        assert lifecycle.evaluate(milestone, now=NOW, resubmission_count=3).resubmission_exhausted
        assert not lifecycle.evaluate(milestone, now=NOW, resubmission_count=2).resubmission_exhausted

    def test_exhausted_milestone_can_still_be_signed_off(self, lifecycle, milestone):
        result = lifecycle.record_sign_off(milestone, "p1", SignOffDecision("approved"),
                                           now=NOW, resubmission_count=3)
        assert result.resubmission_exhausted
        assert result.completion_percentage == 33


# ─── Auto-close and closure ───────────────────────────────────────────────────

class TestClose:
    def test_auto_close_window(self, lifecycle):
        m = make_milestone(lifecycle, due_date=date(2030, 6, 20))
        # due 2030-06-20 + 7 days → eligible after 2030-06-27 00:00
        assert not lifecycle.check_auto_close(m, datetime(2030, 6, 27, 0, 0))
        assert lifecycle.check_auto_close(m, datetime(2030, 6, 27, 0, 1))

    def test_close_sets_closed_at(self, lifecycle, milestone):
        closed = lifecycle.close(milestone, now=LATER)
        assert closed.closed_at == LATER
        assert lifecycle.state(closed) == LifecycleState.CLOSED

    def test_close_is_idempotent(self, lifecycle, milestone):
        closed = lifecycle.close(milestone, now=LATER)
        assert lifecycle.close(closed, now=LATER + timedelta(days=1)) is closed

    def test_closed_never_auto_closes(self, lifecycle, milestone):
        closed = lifecycle.close(milestone, now=LATER)
        assert not lifecycle.check_auto_close(closed, datetime(2031, 1, 1, tzinfo=timezone.utc))

    def test_closed_is_not_overdue(self, lifecycle, milestone):
        closed = lifecycle.close(milestone, now=LATER)
        assert not lifecycle.evaluate(closed, now=NOW + timedelta(days=60)).is_overdue

    def test_closed_rejects_writes(self, lifecycle, milestone):
        closed = lifecycle.close(milestone, now=LATER)
        with pytest.raises(ConflictError):
            lifecycle.record_sign_off(closed, "p1", SignOffDecision("approved"))
        with pytest.raises(ConflictError):
            lifecycle.update(closed, {"name": "x"}, today=TODAY)
        with pytest.raises(ConflictError):
            lifecycle.request_resubmission(closed, 0)
        with pytest.raises(ConflictError):
            lifecycle.add_checkpoint(closed, make_checkpoint_draft())


# ─── Checkpoints through the controller ───────────────────────────────────────

class TestCheckpointWrappers:
    def test_add_checkpoint_requires_id(self, lifecycle, milestone):
        unsaved = milestone.model_copy(update={"id": ""})
        with pytest.raises(NotFoundError):
            lifecycle.add_checkpoint(unsaved, make_checkpoint_draft())

    def test_add_update_remove(self, lifecycle, milestone):
        m = lifecycle.add_checkpoint(milestone, make_checkpoint_draft(), now=LATER, checkpoint_id="c-1")
        assert m.updated_at == LATER
        m = lifecycle.update_checkpoint(m, "c-1", {"status": "in-progress"}, now=LATER)
        assert m.checkpoint_by_id("c-1").status.value == "in-progress"
        m = lifecycle.remove_checkpoint(m, "c-1", now=LATER)
        assert m.checkpoints == []

    def test_remove_unknown_returns_same_snapshot(self, lifecycle, milestone):
        assert lifecycle.remove_checkpoint(milestone, "nope") is milestone

    def test_checkpoint_signoff_completes(self, lifecycle, milestone):
        m = lifecycle.add_checkpoint(milestone, make_checkpoint_draft(personas=["p1"]),
                                     checkpoint_id="c-1")
        m = lifecycle.record_checkpoint_sign_off(m, "c-1", "p1", SignOffDecision("approved"), now=NOW)
        assert m.checkpoint_by_id("c-1").status.value == "completed"
        assert lifecycle.evaluate(m, now=NOW).checkpoint_summary["completed"] == 1
