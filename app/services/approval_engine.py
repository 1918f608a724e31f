"""
Approval Workflow Engine.

Drives the sequential approval chain of every ItemDetail:

    submit_items / submit_item
        archive any live chain, build a fresh Leader chain from the
        department workflow, put the item (and its siblings) in ``waiting``
    decide_item
        approve or reject the current action record, promote the next
        Leader or append the PJ record, bump rounds, notify
    record_project_control_decision
        project-control verdict: close the item and its siblings as
        ``done`` / ``reject`` and settle their action records

Each public call is one transaction. The ItemDetail row is locked with
``SELECT ... FOR UPDATE`` before the chain is read, so two decisions on the
same item run one after the other. Notifications are queued in a
NotificationOutbox and only dispatched after commit.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import and_, exists, select, update

from app.core.exceptions import ChainConflictError
from app.models import db
from app.models.approval import (
    APPROVAL_TYPE_LEADER,
    APPROVAL_TYPE_PJ,
    STATUS_FLAG_ACTIVE,
    STATUS_FLAG_INACTIVE,
    ApprovalRecord,
)
from app.models.organization import User, WorkflowStep
from app.models.project import ItemDetail, TrackingFile
from app.services.approval_result import ApprovalResult
from app.services.notification import NotificationOutbox, NotificationRequest

logger = logging.getLogger(__name__)

DECISION_VALUES = frozenset({"done", "inprogress", "delay", "reject", "waiting"})
DECISION_TO_APPROVAL = {"done": "approve", "reject": "reject"}
PROJECT_CONTROL_DECISIONS = frozenset({"done", "reject"})
FILE_FIELDS = ("file_name", "file_path", "file_type")


# ── Private helpers ────────────────────────────────────────────────────────────


def _now():
    return datetime.now(timezone.utc)


def _parse_id(raw) -> int | None:
    if isinstance(raw, bool):
        return None
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def _text(raw) -> str | None:
    """Stripped string value; "" when missing, None when not a string."""
    if raw is None:
        return ""
    if not isinstance(raw, str):
        return None
    return raw.strip()


def _actor_and_note(actor, note) -> tuple[str, str | None, str | None]:
    """Normalise ``updated_by`` and ``note``; the third value is an error message."""
    actor = _text(actor)
    if actor is None:
        return "", None, "updated_by must be a string"
    if not actor:
        return "", None, "updated_by is required"
    note = _text(note)
    if note is None:
        return actor, None, "note must be a string"
    return actor, note or None, None


@contextmanager
def _unit_of_work(outbox: NotificationOutbox):
    """Commit on success, roll back on any error; flush notifications after commit."""
    try:
        yield
        db.session.commit()
    except Exception:
        db.session.rollback()
        outbox.discard()
        raise
    outbox.flush()


def _lock_item(item_detail_id: int) -> ItemDetail | None:
    return db.session.execute(
        select(ItemDetail).where(ItemDetail.id == item_detail_id).with_for_update()
    ).scalar_one_or_none()


def _current_action(item_detail_id: int) -> ApprovalRecord | None:
    return db.session.execute(
        select(ApprovalRecord)
        .where(
            ApprovalRecord.item_detail_id == item_detail_id,
            ApprovalRecord.is_action == 1,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
        .order_by(ApprovalRecord.id)
        .limit(1)
    ).scalar_one_or_none()


def _next_waiting_leader(item_detail_id: int) -> ApprovalRecord | None:
    return db.session.execute(
        select(ApprovalRecord)
        .where(
            ApprovalRecord.item_detail_id == item_detail_id,
            ApprovalRecord.status == "waiting",
            ApprovalRecord.type == APPROVAL_TYPE_LEADER,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
        .order_by(ApprovalRecord.level.asc(), ApprovalRecord.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def _has_pending_leader_action(item_detail_id: int) -> bool:
    return db.session.execute(
        select(
            exists().where(
                ApprovalRecord.item_detail_id == item_detail_id,
                ApprovalRecord.status == "waiting",
                ApprovalRecord.type == APPROVAL_TYPE_LEADER,
                ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
                ApprovalRecord.is_action == 1,
            )
        )
    ).scalar()


def _siblings(item: ItemDetail) -> list[ItemDetail]:
    """Items of the same deliverable (same project, reference and type), item included."""
    return db.session.execute(
        select(ItemDetail)
        .where(
            ItemDetail.project_id == item.project_id,
            ItemDetail.reference_id == item.reference_id,
            ItemDetail.item_type == item.item_type,
        )
        .order_by(ItemDetail.id)
    ).scalars().all()


def _set_lifecycle(items, status: str, actor: str, now) -> None:
    for it in items:
        it.lifecycle_status = status
        it.updated_at = now
        it.updated_by = actor


def _resolve_department_id(item: ItemDetail) -> int | None:
    if item.department_id:
        return item.department_id
    if item.owner_id:
        owner = db.session.get(User, item.owner_id)
        if owner is not None:
            return owner.department_id
    return None


def _chain_submitter(item: ItemDetail, closed: ApprovalRecord | None) -> str | None:
    if closed is not None and closed.created_by:
        return closed.created_by
    latest = db.session.execute(
        select(ApprovalRecord.created_by)
        .where(
            ApprovalRecord.item_detail_id == item.id,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
        .order_by(ApprovalRecord.id.desc())
        .limit(1)
    ).scalar_one_or_none()
    return latest or item.created_by


def _upsert_tracking_file(item: ItemDetail, entry: dict, actor: str, now) -> bool:
    """Create or refresh the TrackingFile row. Returns True when it was created."""
    file_name = _text(entry.get("file_name")) or None
    file_path = _text(entry.get("file_path")) or None
    file_type = _text(entry.get("file_type")) or "other"

    tf = TrackingFile.query.filter_by(item_detail_id=item.id).first()
    if tf is not None:
        if file_name or file_path:
            tf.file_name = file_name or tf.file_name
            tf.file_path = file_path or tf.file_path
            tf.file_type = file_type
        tf.updated_at = now
        tf.updated_by = actor
        return False

    db.session.add(TrackingFile(
        project_id=item.project_id,
        item_detail_id=item.id,
        file_name=file_name,
        file_path=file_path,
        file_type=file_type,
        created_by=actor,
        updated_by=actor,
    ))
    return True


def _archive_chain(item_detail_id: int, actor: str, now) -> int:
    res = db.session.execute(
        update(ApprovalRecord)
        .where(
            ApprovalRecord.item_detail_id == item_detail_id,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
        .values(status_flag=STATUS_FLAG_INACTIVE, is_action=0, updated_at=now, updated_by=actor)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


def _build_chain(item: ItemDetail, department_id: int, submitted_by: str) -> list[ApprovalRecord]:
    steps = db.session.execute(
        select(WorkflowStep)
        .where(WorkflowStep.department_id == department_id, WorkflowStep.status == "active")
        .order_by(WorkflowStep.step_order.asc(), WorkflowStep.id.asc())
    ).scalars().all()

    records = []
    for idx, step in enumerate(steps):
        rec = ApprovalRecord(
            item_detail_id=item.id,
            approver_id=step.approver_id,
            level=step.step_order,
            status="waiting",
            is_action=1 if idx == 0 else 0,
            round=0,
            type=APPROVAL_TYPE_LEADER,
            status_flag=STATUS_FLAG_ACTIVE,
            created_by=submitted_by,
            updated_by=submitted_by,
        )
        db.session.add(rec)
        records.append(rec)
    db.session.flush()
    return records


def _close_action(current: ApprovalRecord, approval_status: str, actor: str, note, now) -> None:
    """Compare-and-set the action record from waiting to its decision.

    Approve releases the action pointer; reject keeps it (with the note) so the
    rejected slot stays visible as the chain's last action.
    """
    values = {"status": approval_status, "updated_at": now, "updated_by": actor}
    if approval_status == "reject":
        values["note"] = note
    else:
        values["is_action"] = 0

    res = db.session.execute(
        update(ApprovalRecord)
        .where(
            ApprovalRecord.id == current.id,
            ApprovalRecord.is_action == 1,
            ApprovalRecord.status == "waiting",
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if res.rowcount != 1:
        raise ChainConflictError(current.item_detail_id, current.id)


def _reject_waiting_leaders(item_detail_id: int, actor: str, note, now) -> int:
    res = db.session.execute(
        update(ApprovalRecord)
        .where(
            ApprovalRecord.item_detail_id == item_detail_id,
            ApprovalRecord.status == "waiting",
            ApprovalRecord.type == APPROVAL_TYPE_LEADER,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
        .values(status="reject", note=note, updated_at=now, updated_by=actor)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


def _promote(item_detail_id: int, closed: ApprovalRecord, actor: str, now) -> ApprovalRecord:
    """Hand the action pointer to the lowest waiting Leader, or open the PJ tier."""
    nxt = _next_waiting_leader(item_detail_id)
    if nxt is not None:
        res = db.session.execute(
            update(ApprovalRecord)
            .where(ApprovalRecord.id == nxt.id, ApprovalRecord.is_action == 0)
            .values(is_action=1, updated_at=now, updated_by=actor)
            .execution_options(synchronize_session="fetch")
        )
        if res.rowcount != 1:
            raise ChainConflictError(item_detail_id, nxt.id)
        return nxt

    pj = ApprovalRecord(
        item_detail_id=item_detail_id,
        approver_id=closed.approver_id,
        level=closed.level or 0,
        status="waiting",
        is_action=1,
        round=0,
        type=APPROVAL_TYPE_PJ,
        status_flag=closed.status_flag or STATUS_FLAG_ACTIVE,
        created_by=closed.created_by,
        updated_by=closed.created_by,
    )
    db.session.add(pj)
    db.session.flush()
    return pj


def _increment_rounds(item: ItemDetail) -> int:
    if not item.department_id:
        return 0
    same_department = select(User.id).where(User.department_id == item.department_id)
    res = db.session.execute(
        update(ApprovalRecord)
        .where(
            ApprovalRecord.item_detail_id == item.id,
            ApprovalRecord.is_action == 1,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
            ApprovalRecord.approver_id.in_(same_department),
        )
        .values(round=ApprovalRecord.round + 1)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


def _bulk_fallback(item_detail_id: int, approval_status: str, actor: str, note, now) -> int:
    values = {"status": approval_status, "updated_at": now, "updated_by": actor}
    if approval_status == "reject":
        values["note"] = note
    res = db.session.execute(
        update(ApprovalRecord)
        .where(
            ApprovalRecord.item_detail_id == item_detail_id,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    return res.rowcount


def _user_id_for(actor: str | None) -> int | None:
    user = User.find_by_actor(actor)
    return user.id if user else None


def _active_chain(item_detail_id: int) -> list[dict]:
    records = db.session.execute(
        select(ApprovalRecord)
        .where(
            ApprovalRecord.item_detail_id == item_detail_id,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
        .order_by(ApprovalRecord.type.desc(), ApprovalRecord.level, ApprovalRecord.id)
    ).scalars().all()
    return [r.to_dict() for r in records]


# ── Public API ─────────────────────────────────────────────────────────────────


def submit_items(entries: list[dict], submitted_by: str) -> ApprovalResult:
    """Submit one or more deliverables for approval in a single transaction.

    Each entry is ``{"item_detail_id", "file_name"?, "file_path"?, "file_type"?}``.
    For every item the previous chain (if any) is archived and a new Leader
    chain is built from the department workflow. Items whose department has
    no active workflow step are accepted without a chain.

    The first-level approver of every built chain gets one consolidated
    ``submitted`` notification listing all of their items.

    Returns:
        ApprovalResult with ``data["items"]`` describing each submission.
    """
    submitted_by = _text(submitted_by)
    if submitted_by is None:
        return ApprovalResult.invalid("submitted_by must be a string")
    if not submitted_by:
        return ApprovalResult.invalid("submitted_by is required")
    if not isinstance(entries, list) or not entries:
        return ApprovalResult.invalid("at least one item is required")

    parsed = []
    for entry in entries:
        if not isinstance(entry, dict):
            return ApprovalResult.invalid("each item must be an object")
        item_id = _parse_id(entry.get("item_detail_id"))
        if item_id is None:
            return ApprovalResult.invalid(
                "invalid item_detail_id", details={"item_detail_id": entry.get("item_detail_id")},
            )
        bad = [k for k in FILE_FIELDS if _text(entry.get(k)) is None]
        if bad:
            return ApprovalResult.invalid(
                "file fields must be strings", item_detail_id=item_id, details={"fields": bad},
            )
        parsed.append((item_id, entry))

    outbox = NotificationOutbox()
    now = _now()
    summaries = []
    first_approvers: dict[int, list[int]] = {}

    with _unit_of_work(outbox):
        for item_id, entry in parsed:
            item = _lock_item(item_id)
            if item is None:
                db.session.rollback()
                return ApprovalResult.not_found(f"ItemDetail {item_id} not found", item_detail_id=item_id)

            file_created = _upsert_tracking_file(item, entry, submitted_by, now)
            _set_lifecycle(_siblings(item), "waiting", submitted_by, now)

            department_id = _resolve_department_id(item)
            archived = _archive_chain(item.id, submitted_by, now)
            chain = _build_chain(item, department_id, submitted_by) if department_id else []

            if chain:
                first_approvers.setdefault(chain[0].approver_id, []).append(item.id)

            summaries.append({
                "item_detail_id": item.id,
                "archived": archived,
                "chain_length": len(chain),
                "file_created": file_created,
                "approval_required": bool(chain),
            })
            logger.info(
                "Approval chain built",
                extra={
                    "event_type": "chain_built",
                    "item_detail_id": item.id,
                    "chain_length": len(chain),
                    "archived": archived,
                },
            )

        for approver_id, item_ids in first_approvers.items():
            outbox.enqueue(NotificationRequest(
                recipient_id=approver_id,
                template_kind="submitted",
                item_detail_id=item_ids[0],
                actor=submitted_by,
                extra_item_ids=tuple(item_ids[1:]),
            ))

    single = len(summaries) == 1
    return ApprovalResult.success(
        "submitted",
        item_detail_id=summaries[0]["item_detail_id"] if single else None,
        changed=True,
        data={"items": summaries},
    )


def submit_item(item_detail_id, submitted_by: str, *, file_name=None, file_path=None,
                file_type=None) -> ApprovalResult:
    """Single-item form of :func:`submit_items`."""
    return submit_items(
        [{
            "item_detail_id": item_detail_id,
            "file_name": file_name,
            "file_path": file_path,
            "file_type": file_type,
        }],
        submitted_by,
    )


def decide_item(item_detail_id, decision: str, actor: str, note: str | None = None) -> ApprovalResult:
    """Apply an approver decision to the item's approval chain.

    ``decision`` is an item status: ``done`` approves, ``reject`` rejects.
    ``inprogress``, ``delay`` and ``waiting`` are valid inputs that leave the
    chain as it is. Approving the PJ record ends the chain; nothing is
    promoted after it.

    Lenient cases (all return OK):
    - no action record: every active record takes the decision in bulk; when
      the item has no active records at all nothing happens;
    - action record already approved/rejected: the chain is closed, no-op.

    Raises:
        ChainConflictError: the action pointer moved during the transition.
        sqlalchemy.exc.SQLAlchemyError: storage failure (rolled back).
    """
    item_id = _parse_id(item_detail_id)
    if item_id is None:
        return ApprovalResult.invalid("item_detail_id is required and must be a positive integer")
    decision = _text(decision)
    if decision == "":
        return ApprovalResult.invalid("new_status is required", item_detail_id=item_id)
    if decision not in DECISION_VALUES:
        return ApprovalResult.invalid(
            "invalid new_status value",
            item_detail_id=item_id,
            details={"allowed": sorted(DECISION_VALUES)},
        )
    actor, note, err = _actor_and_note(actor, note)
    if err:
        return ApprovalResult.invalid(err, item_detail_id=item_id)

    approval_status = DECISION_TO_APPROVAL.get(decision)
    outbox = NotificationOutbox()
    now = _now()

    with _unit_of_work(outbox):
        item = _lock_item(item_id)
        if item is None:
            return ApprovalResult.not_found("ipid_id not found", item_detail_id=item_id)

        if approval_status is None:
            return ApprovalResult.success("status accepted, approval chain unchanged", item_detail_id=item_id)

        current = _current_action(item_id)
        if current is not None and current.is_terminal:
            logger.info(
                "Decision ignored: chain already closed",
                extra={"event_type": "decision_noop", "item_detail_id": item_id, "decision": decision},
            )
            return ApprovalResult.success(
                f"approval chain already closed ({current.status})",
                item_detail_id=item_id,
                data={"records": _active_chain(item_id)},
            )

        promoted = None
        if current is not None:
            _close_action(current, approval_status, actor, note, now)
            if approval_status == "reject":
                _reject_waiting_leaders(item_id, actor, note, now)
            elif current.type != APPROVAL_TYPE_PJ:
                promoted = _promote(item_id, current, actor, now)
        else:
            affected = _bulk_fallback(item_id, approval_status, actor, note, now)
            if affected == 0:
                return ApprovalResult.success(
                    "status updated (no approval rows found)", item_detail_id=item_id,
                )

        if decision == "done":
            _increment_rounds(item)

        if _has_pending_leader_action(item_id):
            notified = "skipped - pending leader approvals remain"
        else:
            notified = "queued"
            owner_id = item.owner_id
            if approval_status == "reject":
                outbox.enqueue(NotificationRequest(
                    recipient_id=owner_id, template_kind="rejected",
                    item_detail_id=item_id, note=note, actor=actor,
                ))
            else:
                submitter_id = _user_id_for(_chain_submitter(item, current))
                for recipient_id in (submitter_id, owner_id):
                    outbox.enqueue(NotificationRequest(
                        recipient_id=recipient_id, template_kind="approved",
                        item_detail_id=item_id, actor=actor,
                    ))

        records = _active_chain(item_id)

    logger.info(
        "Approval decision applied",
        extra={
            "event_type": "decision",
            "item_detail_id": item_id,
            "decision": decision,
            "approver_id": current.approver_id if current else None,
        },
    )
    data = {"records": records, "notifications": notified}
    if promoted is not None:
        data["promoted"] = {"id": promoted.id, "type": promoted.type, "level": promoted.level}
    return ApprovalResult.success("approval updated", item_detail_id=item_id, changed=True, data=data)


def record_project_control_decision(item_detail_id, decision: str, actor: str,
                                    note: str | None = None) -> ApprovalResult:
    """Project-control verdict on a deliverable.

    Sets ``done`` / ``reject`` on the item and all of its siblings and settles
    their waiting action records of the same tier as the item's current
    action record (any tier when the item has none). The owner is notified.
    """
    item_id = _parse_id(item_detail_id)
    if item_id is None:
        return ApprovalResult.invalid("item_detail_id is required and must be a positive integer")
    decision = _text(decision)
    if decision not in PROJECT_CONTROL_DECISIONS:
        return ApprovalResult.invalid(
            "status must be 'done' or 'reject'",
            item_detail_id=item_id,
            details={"allowed": sorted(PROJECT_CONTROL_DECISIONS)},
        )
    actor, note, err = _actor_and_note(actor, note)
    if err:
        return ApprovalResult.invalid(err, item_detail_id=item_id)

    approval_status = DECISION_TO_APPROVAL[decision]
    outbox = NotificationOutbox()
    now = _now()

    with _unit_of_work(outbox):
        item = _lock_item(item_id)
        if item is None:
            return ApprovalResult.not_found("ipid_id not found", item_detail_id=item_id)

        current = _current_action(item_id)
        action_type = current.type if current is not None else None

        siblings = _siblings(item)
        _set_lifecycle(siblings, decision, actor, now)

        conditions = [
            ApprovalRecord.item_detail_id.in_([s.id for s in siblings]),
            ApprovalRecord.is_action == 1,
            ApprovalRecord.status == "waiting",
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        ]
        if action_type:
            conditions.append(ApprovalRecord.type == action_type)
        res = db.session.execute(
            update(ApprovalRecord)
            .where(and_(*conditions))
            .values(status=approval_status, note=note, updated_at=now, updated_by=actor)
            .execution_options(synchronize_session="fetch")
        )
        settled = res.rowcount

        outbox.enqueue(NotificationRequest(
            recipient_id=item.owner_id,
            template_kind="rejected" if decision == "reject" else "approved",
            item_detail_id=item_id,
            note=note,
            actor=actor,
        ))
        sibling_ids = [s.id for s in siblings]

    logger.info(
        "Project-control decision applied",
        extra={
            "event_type": "project_control_decision",
            "item_detail_id": item_id,
            "decision": decision,
        },
    )
    return ApprovalResult.success(
        "project control decision recorded",
        item_detail_id=item_id,
        changed=True,
        data={"sibling_ids": sibling_ids, "settled_records": settled},
    )
