"""
APQP/PPAP Project Tracking
Project domain model: project header, trackable item details and the
uploaded deliverable file.

Models:
    - Project:      part development project (code, part no, model)
    - ItemDetail:   one APQP/PPAP deliverable assigned to a department/owner
    - TrackingFile: metadata of the deliverable file submitted for an item
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ITEM_TYPES = {"apqp", "ppap"}

# Full lifecycle of an item; the approval engine only moves items between
# waiting, done and reject.
LIFECYCLE_STATUSES = {"inprogress", "waiting", "done", "reject", "delay"}
ENGINE_LIFECYCLE_STATUSES = {"waiting", "done", "reject"}


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    part_no = db.Column(db.String(100), nullable=True)
    part_name = db.Column(db.String(200), nullable=True)
    model = db.Column(db.String(100), nullable=True)
    customer_name = db.Column(db.String(200), nullable=True)
    status = db.Column(db.String(30), nullable=False, default="inprogress")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    items = db.relationship("ItemDetail", back_populates="project", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "part_no": self.part_no,
            "part_name": self.part_name,
            "model": self.model,
            "customer_name": self.customer_name,
            "status": self.status,
        }

    def __repr__(self):
        return f"<Project {self.code}>"


class ItemDetail(db.Model):
    """
    A trackable deliverable instance.

    Items sharing ``(reference_id, item_type)`` are siblings: the same APQP
    or PPAP deliverable split across departments or production lines.
    """

    __tablename__ = "item_details"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    reference_id = db.Column(db.Integer, nullable=False, comment="Owning APQP/PPAP deliverable id")
    item_type = db.Column(db.String(10), nullable=False, default="apqp", comment="apqp | ppap")
    item_name = db.Column(db.String(200), nullable=False)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    owner_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    line_code = db.Column(db.String(50), nullable=True)
    lifecycle_status = db.Column(
        db.String(20), nullable=False, default="inprogress",
        comment="inprogress | waiting | done | reject | delay",
    )
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    created_by = db.Column(db.String(30), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))
    updated_by = db.Column(db.String(30), nullable=True)

    project = db.relationship("Project", back_populates="items")
    department = db.relationship("Department")
    owner = db.relationship("User", foreign_keys=[owner_id])
    tracking_file = db.relationship("TrackingFile", back_populates="item_detail", uselist=False)

    __table_args__ = (
        db.Index("ix_item_details_reference", "reference_id", "item_type"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "reference_id": self.reference_id,
            "item_type": self.item_type,
            "item_name": self.item_name,
            "department_id": self.department_id,
            "owner_id": self.owner_id,
            "line_code": self.line_code,
            "lifecycle_status": self.lifecycle_status,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
        }

    def __repr__(self):
        return f"<ItemDetail {self.id}: {self.item_name[:40]} [{self.lifecycle_status}]>"


class TrackingFile(db.Model):
    """Uploaded deliverable file for an item. Storage on disk is handled elsewhere."""

    __tablename__ = "tracking_files"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    item_detail_id = db.Column(
        db.Integer, db.ForeignKey("item_details.id", ondelete="CASCADE"),
        nullable=False, unique=True,
    )
    file_name = db.Column(db.String(255), nullable=True)
    file_path = db.Column(db.String(500), nullable=True)
    file_type = db.Column(db.String(50), nullable=True, default="other")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    created_by = db.Column(db.String(30), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))
    updated_by = db.Column(db.String(30), nullable=True)

    item_detail = db.relationship("ItemDetail", back_populates="tracking_file")

    def to_dict(self):
        return {
            "id": self.id,
            "item_detail_id": self.item_detail_id,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "file_type": self.file_type,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
        }
