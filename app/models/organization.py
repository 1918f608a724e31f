"""
APQP/PPAP Project Tracking
Organization master data: departments, users and the per-department
approval workflow.

Models:
    - Department:   owning unit of deliverables and of a workflow
    - User:         employee; approver, owner or submitter
    - WorkflowStep: one ordered approver slot in a department's workflow

These rows are maintained by master-data screens. The approval engine only
reads them.
"""

from datetime import datetime, timezone

from app.models import db

# ── Constants ────────────────────────────────────────────────────────────────

RECORD_STATUSES = {"active", "inactive"}


class Department(db.Model):
    __tablename__ = "departments"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(30), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    users = db.relationship("User", back_populates="department", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "status": self.status,
        }

    def __repr__(self):
        return f"<Department {self.code}>"


class User(db.Model):
    """
    Employee account.

    ``emp_code`` is the identity the rest of the system passes around as
    ``created_by`` / ``updated_by``; approvers and owners are referenced by id.
    """

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    emp_code = db.Column(db.String(30), nullable=False, unique=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(200), nullable=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    department = db.relationship("Department", back_populates="users")

    @property
    def full_name(self):
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    @classmethod
    def find_by_actor(cls, actor):
        """Resolve an actor string: emp_code first, then numeric user id."""
        if actor is None or str(actor).strip() == "":
            return None
        actor = str(actor).strip()
        user = cls.query.filter_by(emp_code=actor).first()
        if user is None and actor.isdigit():
            user = db.session.get(cls, int(actor))
        return user

    def to_dict(self):
        return {
            "id": self.id,
            "emp_code": self.emp_code,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "department_id": self.department_id,
            "status": self.status,
        }

    def __repr__(self):
        return f"<User {self.emp_code}>"


class WorkflowStep(db.Model):
    """
    One approver slot in a department's sequential approval workflow.

    Active steps of a department form a total order on ``step_order``; the
    partial unique index keeps two active steps from sharing an order.
    """

    __tablename__ = "workflow_steps"

    id = db.Column(db.Integer, primary_key=True)
    department_id = db.Column(
        db.Integer, db.ForeignKey("departments.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    approver_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_order = db.Column(db.Integer, nullable=False, comment="1 = first approver")
    status = db.Column(db.String(20), nullable=False, default="active", comment="active | inactive")

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    created_by = db.Column(db.String(30), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))
    updated_by = db.Column(db.String(30), nullable=True)

    department = db.relationship("Department")
    approver = db.relationship("User")

    __table_args__ = (
        db.UniqueConstraint("department_id", "approver_id", name="uq_workflow_steps_dept_approver"),
        db.Index(
            "uq_workflow_steps_dept_order_active",
            "department_id",
            "step_order",
            unique=True,
            postgresql_where=db.text("status = 'active'"),
            sqlite_where=db.text("status = 'active'"),
        ),
    )

    def to_dict(self):
        approver = self.approver
        return {
            "id": self.id,
            "department_id": self.department_id,
            "department_code": self.department.code if self.department else None,
            "approver_id": self.approver_id,
            "approver_emp_code": approver.emp_code if approver else None,
            "approver_name": approver.full_name if approver else None,
            "order": self.step_order,
            "status": self.status,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "updated_by": self.updated_by,
        }

    def __repr__(self):
        return f"<WorkflowStep dept={self.department_id} order={self.step_order} approver={self.approver_id}>"
