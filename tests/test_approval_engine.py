"""
Approval engine unit tests.

Tests cover:
  - Chain construction on submission (order, action pointer, siblings)
  - Resubmission archives the previous chain
  - Approve promotion A -> B -> PJ, round counter
  - Reject short-circuit of the remaining Leader records
  - Lenient paths: no chain, closed chain, non-approval statuses
  - Compare-and-set conflict rolls the transition back
  - Post-commit notifications (recipients, suppression, failure isolation)
  - Project-control decision on an item and its siblings
"""
import logging
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import ChainConflictError
from app.models import db
from app.models.approval import ApprovalRecord
from app.models.notification import EmailLog, Notification
from app.models.project import TrackingFile
from app.services import approval_engine
from app.services.approval_result import ApprovalOutcome


# ── helpers ──────────────────────────────────────────────────────────────

def _records(item_id, flag="active"):
    stmt = select(ApprovalRecord).where(ApprovalRecord.item_detail_id == item_id)
    if flag:
        stmt = stmt.where(ApprovalRecord.status_flag == flag)
    return db.session.execute(stmt.order_by(ApprovalRecord.id)).scalars().all()


def _action_records(item_id):
    return [r for r in _records(item_id) if r.is_action == 1]


def _notifications(recipient):
    return Notification.query.filter_by(recipient_id=recipient.id).order_by(Notification.id).all()


def _submit(org, item=None):
    item = item or org.item
    result = approval_engine.submit_item(item.id, org.submitter.emp_code,
                                         file_name="pfc.pdf", file_path="/files/pfc.pdf")
    assert result.outcome is ApprovalOutcome.OK
    return result


# ═════════════════════════════════════════════════════════════════════════
# CHAIN CONSTRUCTION
# ═════════════════════════════════════════════════════════════════════════

class TestSubmission:
    def test_builds_leader_chain_in_step_order(self, org):
        result = _submit(org)
        assert result.changed is True
        assert result.data["items"][0]["chain_length"] == 2

        recs = _records(org.item.id)
        assert [(r.approver_id, r.level, r.is_action) for r in recs] == [
            (org.a.id, 1, 1),
            (org.b.id, 2, 0),
        ]
        assert all(r.status == "waiting" and r.type == "Leader" and r.round == 0 for r in recs)
        assert all(r.created_by == "S001" for r in recs)

    def test_action_record_has_minimum_level(self, org, factory):
        # Steps inserted out of order still produce an ascending chain
        c = factory.user(org.dept, emp_code="C001")
        factory.step(org.dept, c, 0)
        _submit(org)
        action = _action_records(org.item.id)
        assert len(action) == 1
        assert action[0].approver_id == c.id
        assert action[0].level == min(r.level for r in _records(org.item.id))

    def test_inactive_steps_are_skipped(self, org, factory):
        c = factory.user(org.dept, emp_code="C001")
        factory.step(org.dept, c, 3, status="inactive")
        _submit(org)
        assert {r.approver_id for r in _records(org.item.id)} == {org.a.id, org.b.id}

    def test_item_and_siblings_move_to_waiting(self, org, factory):
        other_dept = factory.department(code="PE")
        sibling = factory.item(org.project, department=other_dept, reference_id=org.item.reference_id)
        unrelated = factory.item(org.project, department=other_dept, reference_id=99)
        _submit(org)
        db.session.refresh(sibling)
        db.session.refresh(unrelated)
        assert org.item.lifecycle_status == "waiting"
        assert sibling.lifecycle_status == "waiting"
        assert unrelated.lifecycle_status == "inprogress"

    def test_tracking_file_upserted(self, org):
        result = _submit(org)
        assert result.data["items"][0]["file_created"] is True
        again = approval_engine.submit_item(org.item.id, "S001", file_name="pfc-v2.pdf",
                                            file_path="/files/pfc-v2.pdf")
        assert again.data["items"][0]["file_created"] is False
        files = TrackingFile.query.filter_by(item_detail_id=org.item.id).all()
        assert len(files) == 1
        assert files[0].file_name == "pfc-v2.pdf"

    def test_department_falls_back_to_owner(self, org, factory):
        item = factory.item(org.project, department=None, owner=org.owner, reference_id=7)
        _submit(org, item)
        assert len(_records(item.id)) == 2

    def test_no_workflow_submits_without_chain(self, org, factory):
        empty = factory.department(code="HR")
        item = factory.item(org.project, department=empty, reference_id=8)
        result = _submit(org, item)
        assert result.data["items"][0]["approval_required"] is False
        assert _records(item.id) == []
        assert item.lifecycle_status == "waiting"

    def test_resubmission_archives_previous_chain(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "done", "A001")
        result = _submit(org)
        assert result.data["items"][0]["archived"] == 2

        active = _records(org.item.id)
        inactive = _records(org.item.id, flag="inactive")
        assert len(active) == 2
        assert len(inactive) == 2
        assert all(r.is_action == 0 for r in inactive)
        assert [r.is_action for r in active] == [1, 0]
        # History is kept as it was decided
        assert sorted(r.status for r in inactive) == ["approve", "waiting"]

    def test_missing_item_is_not_found(self, org):
        result = approval_engine.submit_item(999, "S001")
        assert result.outcome is ApprovalOutcome.NOT_FOUND

    @pytest.mark.parametrize("submitted_by, entries", [
        ("", [{"item_detail_id": 1}]),
        ("S001", []),
        ("S001", [{"item_detail_id": "abc"}]),
        ("S001", [{"item_detail_id": -3}]),
        ("S001", ["not-an-object"]),
    ])
    def test_invalid_input(self, org, submitted_by, entries):
        result = approval_engine.submit_items(entries, submitted_by)
        assert result.outcome is ApprovalOutcome.VALIDATION_FAILED

    def test_notifies_first_approver_only(self, org):
        _submit(org)
        notes = _notifications(org.a)
        assert len(notes) == 1
        assert notes[0].category == "submitted"
        assert notes[0].item_detail_id == org.item.id
        assert _notifications(org.b) == []

        log = EmailLog.query.filter_by(recipient_email=org.a.email).one()
        assert log.template_name == "submitted"
        assert log.status == "sent"

    def test_batch_consolidates_per_approver(self, org, factory):
        second = factory.item(org.project, department=org.dept, owner=org.owner, reference_id=2)
        result = approval_engine.submit_items(
            [{"item_detail_id": org.item.id}, {"item_detail_id": second.id}], "S001",
        )
        assert result.outcome is ApprovalOutcome.OK
        assert result.item_detail_id is None
        assert len(result.data["items"]) == 2

        notes = _notifications(org.a)
        assert len(notes) == 1
        assert notes[0].title.startswith("2 item(s)")
        assert "Process Flow Chart" in notes[0].message

    def test_logs_chain_built(self, org, caplog):
        caplog.set_level(logging.INFO, logger="app.services.approval_engine")
        _submit(org)
        built = [r for r in caplog.records if getattr(r, "event_type", None) == "chain_built"]
        assert len(built) == 1
        assert built[0].item_detail_id == org.item.id
        assert built[0].chain_length == 2


# ═════════════════════════════════════════════════════════════════════════
# APPROVE / PROMOTE
# ═════════════════════════════════════════════════════════════════════════

class TestApprove:
    def test_full_scenario_a_then_b_then_pj(self, org):
        _submit(org)

        res = approval_engine.decide_item(org.item.id, "done", "A001")
        assert res.outcome is ApprovalOutcome.OK
        assert res.data["promoted"]["level"] == 2
        action = _action_records(org.item.id)
        assert len(action) == 1 and action[0].approver_id == org.b.id

        res = approval_engine.decide_item(org.item.id, "done", "B001")
        assert res.data["promoted"]["type"] == "PJ"
        recs = _records(org.item.id)
        assert [r.status for r in recs if r.type == "Leader"] == ["approve", "approve"]
        pj = [r for r in recs if r.type == "PJ"]
        assert len(pj) == 1
        assert pj[0].status == "waiting"
        assert pj[0].is_action == 1
        assert pj[0].approver_id == org.b.id
        assert pj[0].level == 2
        assert pj[0].created_by == "S001"

    def test_approving_pj_record_ends_chain(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "done", "A001")
        approval_engine.decide_item(org.item.id, "done", "B001")

        res = approval_engine.decide_item(org.item.id, "done", "PJ01")
        assert res.outcome is ApprovalOutcome.OK
        assert "promoted" not in res.data
        pj = [r for r in _records(org.item.id) if r.type == "PJ"]
        assert [(r.status, r.is_action) for r in pj] == [("approve", 0)]
        assert _action_records(org.item.id) == []

    def test_next_action_level_strictly_greater(self, org, factory):
        c = factory.user(org.dept, emp_code="C001")
        factory.step(org.dept, c, 5)
        _submit(org)
        levels = []
        for actor in ("A001", "B001"):
            approval_engine.decide_item(org.item.id, "done", actor)
            levels.append(_action_records(org.item.id)[0].level)
        assert levels == [2, 5]

    def test_round_increments_for_same_department_action(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "done", "A001")
        b_rec = _action_records(org.item.id)[0]
        assert b_rec.round == 1

    def test_round_untouched_for_other_department_approver(self, org, factory):
        outsider_dept = factory.department(code="EXT")
        outsider = factory.user(outsider_dept, emp_code="X001")
        factory.step(org.dept, outsider, 3)
        _submit(org)
        approval_engine.decide_item(org.item.id, "done", "A001")
        approval_engine.decide_item(org.item.id, "done", "B001")
        action = _action_records(org.item.id)[0]
        assert action.approver_id == outsider.id
        assert action.round == 0

    def test_intermediate_approval_suppresses_notifications(self, org):
        _submit(org)
        res = approval_engine.decide_item(org.item.id, "done", "A001")
        assert res.data["notifications"].startswith("skipped")
        assert _notifications(org.owner) == []
        assert _notifications(org.submitter) == []

    def test_last_leader_approval_notifies_submitter_and_owner(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "done", "A001")
        res = approval_engine.decide_item(org.item.id, "done", "B001")
        assert res.data["notifications"] == "queued"
        assert [n.category for n in _notifications(org.owner)] == ["approved"]
        assert [n.category for n in _notifications(org.submitter)] == ["approved"]

    def test_single_action_record_after_every_call(self, org):
        _submit(org)
        for actor in ("A001", "B001"):
            approval_engine.decide_item(org.item.id, "done", actor)
            assert len(_action_records(org.item.id)) == 1

    def test_second_action_record_rejected_by_index(self, org):
        _submit(org)
        db.session.add(ApprovalRecord(
            item_detail_id=org.item.id, approver_id=org.b.id, level=9,
            status="waiting", is_action=1, type="Leader", status_flag="active",
        ))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()


# ═════════════════════════════════════════════════════════════════════════
# REJECT
# ═════════════════════════════════════════════════════════════════════════

class TestReject:
    def test_reject_short_circuits_remaining_leaders(self, org, factory):
        c = factory.user(org.dept, emp_code="C001")
        factory.step(org.dept, c, 3)
        _submit(org)

        res = approval_engine.decide_item(org.item.id, "reject", "A001", note="signature missing")
        assert res.outcome is ApprovalOutcome.OK
        assert "promoted" not in res.data

        recs = _records(org.item.id)
        assert all(r.status == "reject" for r in recs)
        assert all(r.note == "signature missing" for r in recs)
        assert not any(r.type == "PJ" for r in recs)
        a_rec = next(r for r in recs if r.approver_id == org.a.id)
        assert a_rec.is_action == 1
        assert len(_action_records(org.item.id)) == 1

    def test_reject_after_partial_approval(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "done", "A001")
        approval_engine.decide_item(org.item.id, "reject", "B001", note="wrong revision")
        recs = _records(org.item.id)
        assert [r.status for r in recs] == ["approve", "reject"]
        assert not any(r.type == "PJ" for r in recs)

    def test_reject_notifies_owner_with_note(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "reject", "A001", note="signature missing")
        notes = _notifications(org.owner)
        assert [n.category for n in notes] == ["rejected"]
        assert "signature missing" in notes[0].message
        assert _notifications(org.submitter) == []

    def test_second_reject_is_noop(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "reject", "A001", note="first")
        res = approval_engine.decide_item(org.item.id, "reject", "A001", note="second")
        assert res.outcome is ApprovalOutcome.OK
        assert res.changed is False
        assert all(r.note == "first" for r in _records(org.item.id))
        assert len(_notifications(org.owner)) == 1

    def test_approve_after_reject_is_noop(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "reject", "A001")
        res = approval_engine.decide_item(org.item.id, "done", "B001")
        assert res.changed is False
        assert not any(r.type == "PJ" for r in _records(org.item.id))


# ═════════════════════════════════════════════════════════════════════════
# LENIENCY & VALIDATION
# ═════════════════════════════════════════════════════════════════════════

class TestDecisionEdges:
    def test_no_records_is_ok(self, org):
        res = approval_engine.decide_item(org.item.id, "done", "A001")
        assert res.outcome is ApprovalOutcome.OK
        assert res.changed is False
        assert Notification.query.count() == 0

    def test_no_action_record_bulk_updates_active_rows(self, org):
        _submit(org)
        # Drop the action pointer: inconsistent chain
        db.session.execute(
            ApprovalRecord.__table__.update()
            .where(ApprovalRecord.item_detail_id == org.item.id)
            .values(is_action=0)
        )
        db.session.commit()
        approval_engine.decide_item(org.item.id, "done", "A001")
        assert {r.status for r in _records(org.item.id)} == {"approve"}

    def test_bulk_update_leaves_history_untouched(self, org):
        _submit(org)
        _submit(org)
        db.session.execute(
            ApprovalRecord.__table__.update()
            .where(ApprovalRecord.item_detail_id == org.item.id)
            .values(is_action=0)
        )
        db.session.commit()
        approval_engine.decide_item(org.item.id, "reject", "A001", note="n")
        assert {r.status for r in _records(org.item.id, flag="inactive")} == {"waiting"}

    @pytest.mark.parametrize("decision", ["inprogress", "delay", "waiting"])
    def test_non_approval_status_leaves_chain(self, org, decision):
        _submit(org)
        res = approval_engine.decide_item(org.item.id, decision, "A001")
        assert res.outcome is ApprovalOutcome.OK
        assert res.changed is False
        assert [r.status for r in _records(org.item.id)] == ["waiting", "waiting"]

    @pytest.mark.parametrize("item_id, decision, actor", [
        (None, "done", "A001"),
        ("x", "done", "A001"),
        (0, "done", "A001"),
        (1, "", "A001"),
        (1, "approved", "A001"),
        (1, "done", ""),
        (1, "done", "   "),
        (1, 1, "A001"),
        (1, "done", 7),
    ])
    def test_validation_failures(self, org, item_id, decision, actor):
        res = approval_engine.decide_item(item_id, decision, actor)
        assert res.outcome is ApprovalOutcome.VALIDATION_FAILED

    def test_non_string_note_rejected(self, org):
        _submit(org)
        res = approval_engine.decide_item(org.item.id, "reject", "A001", note=5)
        assert res.outcome is ApprovalOutcome.VALIDATION_FAILED
        assert {r.status for r in _records(org.item.id)} == {"waiting"}

    def test_missing_item(self, org):
        res = approval_engine.decide_item(4242, "done", "A001")
        assert res.outcome is ApprovalOutcome.NOT_FOUND

    def test_string_id_accepted(self, org):
        _submit(org)
        res = approval_engine.decide_item(str(org.item.id), "done", "A001")
        assert res.changed is True


# ═════════════════════════════════════════════════════════════════════════
# CONCURRENCY
# ═════════════════════════════════════════════════════════════════════════

class TestChainConflict:
    def test_stale_action_pointer_raises_and_rolls_back(self, org):
        _submit(org)
        b_rec = next(r for r in _records(org.item.id) if r.approver_id == org.b.id)

        with patch("app.services.approval_engine._current_action", return_value=b_rec):
            with pytest.raises(ChainConflictError) as exc:
                approval_engine.decide_item(org.item.id, "done", "B001")
        assert exc.value.item_detail_id == org.item.id

        recs = _records(org.item.id)
        assert [(r.status, r.is_action) for r in recs] == [("waiting", 1), ("waiting", 0)]
        assert Notification.query.filter_by(category="approved").count() == 0


# ═════════════════════════════════════════════════════════════════════════
# NOTIFICATION ISOLATION
# ═════════════════════════════════════════════════════════════════════════

class TestNotificationFailure:
    def test_dispatch_failure_does_not_undo_transition(self, org, caplog):
        _submit(org)
        approval_engine.decide_item(org.item.id, "done", "A001")

        caplog.set_level(logging.ERROR, logger="app.services.notification")
        with patch(
            "app.services.notification.NotificationService.dispatch",
            side_effect=RuntimeError("smtp down"),
        ):
            res = approval_engine.decide_item(org.item.id, "done", "B001")

        assert res.outcome is ApprovalOutcome.OK
        assert any(r.type == "PJ" for r in _records(org.item.id))
        failed = [r for r in caplog.records if r.getMessage() == "Notification dispatch failed"]
        assert len(failed) == 2
        assert failed[0].item_detail_id == org.item.id

    def test_disabled_notifications_skip_dispatch(self, app, org, monkeypatch):
        monkeypatch.setitem(app.config, "NOTIFICATIONS_ENABLED", False)
        _submit(org)
        assert Notification.query.count() == 0
        assert len(_records(org.item.id)) == 2

    def test_inactive_recipient_skipped(self, org):
        org.a.status = "inactive"
        db.session.commit()
        _submit(org)
        assert _notifications(org.a) == []

    def test_recipient_without_email_gets_in_app_only(self, org):
        org.a.email = None
        db.session.commit()
        _submit(org)
        assert len(_notifications(org.a)) == 1
        assert EmailLog.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════
# PROJECT-CONTROL DECISION
# ═════════════════════════════════════════════════════════════════════════

class TestProjectControlDecision:
    def _to_pj(self, org):
        _submit(org)
        approval_engine.decide_item(org.item.id, "done", "A001")
        approval_engine.decide_item(org.item.id, "done", "B001")

    def test_done_closes_item_and_siblings(self, org, factory):
        sibling = factory.item(org.project, department=factory.department(code="PE"),
                               reference_id=org.item.reference_id)
        self._to_pj(org)

        res = approval_engine.record_project_control_decision(org.item.id, "done", "PJ01")
        assert res.outcome is ApprovalOutcome.OK
        assert sorted(res.data["sibling_ids"]) == sorted([org.item.id, sibling.id])
        assert res.data["settled_records"] == 1

        db.session.refresh(sibling)
        assert org.item.lifecycle_status == "done"
        assert sibling.lifecycle_status == "done"
        pj = next(r for r in _records(org.item.id) if r.type == "PJ")
        assert pj.status == "approve"

    def test_reject_stores_note_and_notifies_owner(self, org):
        self._to_pj(org)
        approval_engine.record_project_control_decision(org.item.id, "reject", "PJ01", note="PPAP incomplete")
        pj = next(r for r in _records(org.item.id) if r.type == "PJ")
        assert pj.status == "reject"
        assert pj.note == "PPAP incomplete"
        assert org.item.lifecycle_status == "reject"
        assert _notifications(org.owner)[-1].category == "rejected"

    def test_only_current_tier_is_settled(self, org):
        _submit(org)
        # Action record is a Leader record; only Leader action rows change
        approval_engine.record_project_control_decision(org.item.id, "done", "PJ01")
        recs = _records(org.item.id)
        assert [r.status for r in recs] == ["approve", "waiting"]

    @pytest.mark.parametrize("decision", ["waiting", "inprogress", ""])
    def test_rejects_other_statuses(self, org, decision):
        res = approval_engine.record_project_control_decision(org.item.id, decision, "PJ01")
        assert res.outcome is ApprovalOutcome.VALIDATION_FAILED

    def test_missing_item(self, org):
        res = approval_engine.record_project_control_decision(31337, "done", "PJ01")
        assert res.outcome is ApprovalOutcome.NOT_FOUND


def test_active_chain_count_matches_steps(org):
    _submit(org)
    _submit(org)
    _submit(org)
    active = db.session.execute(
        select(func.count(ApprovalRecord.id)).where(
            ApprovalRecord.item_detail_id == org.item.id,
            ApprovalRecord.status_flag == "active",
        )
    ).scalar()
    assert active == 2
