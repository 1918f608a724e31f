"""
Approval chain model: one ApprovalRecord per approver slot.

An ApprovalChain is the set of ``status_flag = 'active'`` records of one
ItemDetail. Exactly one of them at most carries ``is_action = 1``: the
record whose approver must act next. Records are never deleted; a
resubmission archives the previous chain by flipping ``status_flag`` to
``inactive`` so the full decision history stays queryable.

Two tiers share the table:
    Leader  department approvers, built from the department workflow
    PJ      project-control approval appended after the last Leader approves
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

APPROVAL_STATUSES = frozenset({"waiting", "approve", "reject"})
TERMINAL_APPROVAL_STATUSES = frozenset({"approve", "reject"})

APPROVAL_TYPE_LEADER = "Leader"
APPROVAL_TYPE_PJ = "PJ"
APPROVAL_TYPES = frozenset({APPROVAL_TYPE_LEADER, APPROVAL_TYPE_PJ})

STATUS_FLAG_ACTIVE = "active"
STATUS_FLAG_INACTIVE = "inactive"


class ApprovalRecord(db.Model):
    """
    One approver's slot within an item's approval chain.

    Business rules:
    - ``level`` is the workflow step order captured at chain construction.
    - ``is_action`` marks the single actionable record of the live chain;
      the partial unique index below rejects a second one at flush time.
    - A rejected action record keeps ``is_action = 1`` together with its
      ``note`` so the UI can show who rejected and why.
    - Inactive records are history and are never updated again.
    """

    __tablename__ = "approval_records"

    id = db.Column(db.Integer, primary_key=True)
    item_detail_id = db.Column(
        db.Integer,
        db.ForeignKey("item_details.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    approver_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    level = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default="waiting", comment="waiting | approve | reject")
    is_action = db.Column(db.Integer, nullable=False, default=0, comment="1 = currently actionable")
    round = db.Column(db.Integer, nullable=False, default=0, comment="Re-approval cycle counter")
    type = db.Column(db.String(10), nullable=False, default=APPROVAL_TYPE_LEADER, comment="Leader | PJ")
    status_flag = db.Column(db.String(10), nullable=False, default=STATUS_FLAG_ACTIVE, comment="active | inactive")
    note = db.Column(db.Text, nullable=True, comment="Reason given on rejection")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    created_by = db.Column(db.String(30), nullable=True, comment="Submitter of the chain")
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))
    updated_by = db.Column(db.String(30), nullable=True)

    approver = db.relationship("User")

    __table_args__ = (
        db.Index("ix_approval_records_item_flag", "item_detail_id", "status_flag"),
        db.Index(
            "uq_approval_records_item_action",
            "item_detail_id",
            unique=True,
            postgresql_where=db.text("is_action = 1 AND status_flag = 'active'"),
            sqlite_where=db.text("is_action = 1 AND status_flag = 'active'"),
        ),
    )

    @property
    def is_terminal(self):
        return self.status in TERMINAL_APPROVAL_STATUSES

    def to_dict(self):
        approver = self.approver
        return {
            "id": self.id,
            "item_detail_id": self.item_detail_id,
            "approver_id": self.approver_id,
            "approver_emp_code": approver.emp_code if approver else None,
            "approver_name": approver.full_name if approver else None,
            "level": self.level,
            "status": self.status,
            "is_action": self.is_action,
            "round": self.round,
            "type": self.type,
            "status_flag": self.status_flag,
            "note": self.note,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "created_by": self.created_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
        }

    def __repr__(self):
        return (
            f"<ApprovalRecord #{self.id} item={self.item_detail_id} {self.type} "
            f"L{self.level} {self.status} action={self.is_action} {self.status_flag}>"
        )
