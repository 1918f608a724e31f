"""
Approval status projection for the tracking screens.

``derive_status_approve`` is a pure function: it folds the item's current
approval record, its lifecycle status and the presence of an uploaded file
into the numeric ``status_approve`` code the tracking UI renders. The query
helpers below load that state and attach the projection to each item.
"""

from __future__ import annotations

from enum import IntEnum

from sqlalchemy import and_, func, or_, select

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.approval import (
    APPROVAL_TYPE_LEADER,
    APPROVAL_TYPE_PJ,
    STATUS_FLAG_ACTIVE,
    ApprovalRecord,
)
from app.models.project import ItemDetail, TrackingFile


class StatusApprove(IntEnum):
    NOT_SUBMITTED = 0
    WAITING_LEADER = 1
    LEADER_APPROVED = 2
    LEADER_REJECTED = 3
    PJ_REJECTED = 4
    DONE = 5
    WAITING_PJ = 6
    FILE_NO_CHAIN = 7
    FILE_DONE_NO_CHAIN = 8


_LABELS = {
    StatusApprove.WAITING_LEADER: "waiting leader approval",
    StatusApprove.LEADER_APPROVED: "leader approved",
    StatusApprove.LEADER_REJECTED: "rejected by leader",
    StatusApprove.PJ_REJECTED: "rejected by project control",
    StatusApprove.DONE: "done",
    StatusApprove.WAITING_PJ: "waiting project control",
    StatusApprove.FILE_NO_CHAIN: "file uploaded",
    StatusApprove.FILE_DONE_NO_CHAIN: "file uploaded, done",
}


def derive_status_approve(record: ApprovalRecord | None, lifecycle_status: str,
                          has_file: bool) -> StatusApprove | None:
    """Project (current record, item status, file presence) onto a status code.

    The first matching rule wins; ``None`` means no rule applies.
    """
    if record is None:
        if lifecycle_status == "done" and has_file:
            return StatusApprove.FILE_DONE_NO_CHAIN
        if has_file:
            return StatusApprove.FILE_NO_CHAIN
        return StatusApprove.NOT_SUBMITTED

    status, rtype = record.status, record.type
    if status == "waiting" and rtype == APPROVAL_TYPE_LEADER and lifecycle_status == "waiting":
        return StatusApprove.WAITING_LEADER
    if status == "approve" and rtype == APPROVAL_TYPE_LEADER and lifecycle_status == "waiting":
        return StatusApprove.LEADER_APPROVED
    if status == "reject" and rtype == APPROVAL_TYPE_LEADER:
        return StatusApprove.LEADER_REJECTED
    if status == "reject" and rtype == APPROVAL_TYPE_PJ:
        return StatusApprove.PJ_REJECTED
    if status == "approve" and lifecycle_status == "done":
        return StatusApprove.DONE
    if status == "waiting" and rtype == APPROVAL_TYPE_PJ:
        return StatusApprove.WAITING_PJ
    return None


def status_label(code: StatusApprove | None, lifecycle_status: str) -> str:
    if code is None or code is StatusApprove.NOT_SUBMITTED:
        return lifecycle_status
    return _LABELS[code]


def current_record(item_detail_id: int) -> ApprovalRecord | None:
    """The active action record, else the newest active record."""
    base = select(ApprovalRecord).where(
        ApprovalRecord.item_detail_id == item_detail_id,
        ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
    )
    record = db.session.execute(
        base.where(ApprovalRecord.is_action == 1).order_by(ApprovalRecord.id).limit(1)
    ).scalar_one_or_none()
    if record is not None:
        return record
    return db.session.execute(
        base.order_by(ApprovalRecord.id.desc()).limit(1)
    ).scalar_one_or_none()


def deliverable_file(item: ItemDetail) -> TrackingFile | None:
    """The uploaded file of the deliverable the item belongs to.

    A deliverable split across several items of one department shares a
    single upload, so the file of any sibling (same project, reference, type
    and department) counts. The item's own file wins when it has one.
    """
    return db.session.execute(
        select(TrackingFile)
        .join(ItemDetail, ItemDetail.id == TrackingFile.item_detail_id)
        .where(
            ItemDetail.project_id == item.project_id,
            ItemDetail.reference_id == item.reference_id,
            ItemDetail.item_type == item.item_type,
            ItemDetail.department_id.is_not_distinct_from(item.department_id),
            TrackingFile.file_path.isnot(None),
        )
        .order_by((TrackingFile.item_detail_id == item.id).desc(), TrackingFile.id)
        .limit(1)
    ).scalar_one_or_none()


def _projection(item: ItemDetail) -> dict:
    record = current_record(item.id)
    tf = deliverable_file(item)
    code = derive_status_approve(record, item.lifecycle_status, tf is not None)
    return {
        **item.to_dict(),
        "status_approve": int(code) if code is not None else None,
        "status_label": status_label(code, item.lifecycle_status),
        "note": record.note if record is not None else None,
        "file": tf.to_dict() if tf is not None else None,
    }


def get_item_status(item_detail_id: int) -> dict:
    """Projection of one item plus its active chain and archived history.

    Raises:
        NotFoundError: item does not exist.
    """
    item = db.session.get(ItemDetail, item_detail_id)
    if item is None:
        raise NotFoundError(resource="ItemDetail", resource_id=item_detail_id)

    records = db.session.execute(
        select(ApprovalRecord)
        .where(ApprovalRecord.item_detail_id == item_detail_id)
        .order_by(ApprovalRecord.type.desc(), ApprovalRecord.level, ApprovalRecord.id)
    ).scalars().all()

    body = _projection(item)
    body["chain"] = [r.to_dict() for r in records if r.status_flag == STATUS_FLAG_ACTIVE]
    body["history"] = [r.to_dict() for r in records if r.status_flag != STATUS_FLAG_ACTIVE]
    return body


def list_project_items(project_id: int, owner_id: int | None = None,
                       line_code: str | None = None) -> list[dict]:
    """Every visible item of a project with its status projection.

    Items without a line code are visible to their owner (to everyone when
    ``owner_id`` is None). Line-coded items are visible only to a matching
    ``line_code``.
    """
    owner_rule = ItemDetail.line_code.is_(None)
    if owner_id is not None:
        owner_rule = and_(owner_rule, ItemDetail.owner_id == owner_id)
    visible = [owner_rule]
    if line_code:
        visible.append(and_(ItemDetail.line_code.isnot(None), ItemDetail.line_code == line_code))
    stmt = select(ItemDetail).where(ItemDetail.project_id == project_id, or_(*visible))
    items = db.session.execute(
        stmt.order_by(ItemDetail.item_type, ItemDetail.reference_id, ItemDetail.id)
    ).scalars().all()
    return [_projection(i) for i in items]


def _pending_stmt(approver_id: int):
    return (
        select(ItemDetail, ApprovalRecord)
        .join(ApprovalRecord, ApprovalRecord.item_detail_id == ItemDetail.id)
        .where(
            ApprovalRecord.approver_id == approver_id,
            ApprovalRecord.is_action == 1,
            ApprovalRecord.status == "waiting",
            ApprovalRecord.type == APPROVAL_TYPE_LEADER,
            ApprovalRecord.status_flag == STATUS_FLAG_ACTIVE,
        )
    )


def list_pending_for_approver(approver_id: int) -> list[dict]:
    """Items waiting for this approver's Leader decision, oldest first."""
    rows = db.session.execute(
        _pending_stmt(approver_id).order_by(ApprovalRecord.created_at, ApprovalRecord.id)
    ).all()
    out = []
    for item, record in rows:
        project = item.project
        out.append({
            **item.to_dict(),
            "project_code": project.code if project else None,
            "approval_record_id": record.id,
            "level": record.level,
            "round": record.round,
            "submitted_by": record.created_by,
            "submitted_at": record.created_at.isoformat() if record.created_at else None,
        })
    return out


def count_pending_for_approver(approver_id: int) -> int:
    return db.session.execute(
        select(func.count()).select_from(_pending_stmt(approver_id).subquery())
    ).scalar()
