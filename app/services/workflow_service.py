"""Workflow step service layer: department approver order maintenance.

Transaction policy: public functions call db.session.commit() on success and
return an ApprovalResult; the blueprint maps its outcome to HTTP.

Rules:
- one step per (department, approver); a repeat is skipped, not an error
- active steps of a department never share an order
- a missing order appends the step after the current last one
"""
import logging

from sqlalchemy import func, select

from app.models import db
from app.models.organization import RECORD_STATUSES, Department, User, WorkflowStep
from app.services.approval_result import ApprovalResult

logger = logging.getLogger(__name__)


def _validate_enum(value: str, allowed: set[str], field_name: str) -> str | None:
    """Return error message if value not in allowed set, else None."""
    if not isinstance(value, str) or value not in allowed:
        return f"Invalid {field_name}: '{value}'. Allowed: {sorted(allowed)}"
    return None


def _parse_order(raw) -> tuple[int | None, str | None]:
    if raw is None or raw == "":
        return None, None
    try:
        order = int(raw)
    except (TypeError, ValueError):
        return None, "order must be an integer"
    if order < 1:
        return None, "order must be >= 1"
    return order, None


def _next_order(department_id: int) -> int:
    current = db.session.execute(
        select(func.max(WorkflowStep.step_order)).where(WorkflowStep.department_id == department_id)
    ).scalar()
    return (current or 0) + 1


def _order_taken(department_id: int, order: int, exclude_id: int | None = None) -> bool:
    stmt = select(WorkflowStep.id).where(
        WorkflowStep.department_id == department_id,
        WorkflowStep.step_order == order,
        WorkflowStep.status == "active",
    )
    if exclude_id is not None:
        stmt = stmt.where(WorkflowStep.id != exclude_id)
    return db.session.execute(stmt.limit(1)).first() is not None


def _approver_taken(department_id: int, approver_id: int, exclude_id: int | None = None) -> bool:
    stmt = select(WorkflowStep.id).where(
        WorkflowStep.department_id == department_id,
        WorkflowStep.approver_id == approver_id,
    )
    if exclude_id is not None:
        stmt = stmt.where(WorkflowStep.id != exclude_id)
    return db.session.execute(stmt.limit(1)).first() is not None


def list_steps(department_id: int | None = None) -> list[WorkflowStep]:
    stmt = select(WorkflowStep)
    if department_id is not None:
        stmt = stmt.where(WorkflowStep.department_id == department_id)
    return db.session.execute(
        stmt.order_by(WorkflowStep.department_id, WorkflowStep.step_order, WorkflowStep.id)
    ).scalars().all()


def create_step(department_id, approver_id, order=None, actor: str = "") -> ApprovalResult:
    """Add an approver to a department's workflow.

    Returns:
        OK with ``data["step"]``, DUPLICATE_SKIPPED when the approver is
        already in the workflow, NOT_FOUND for an unknown department or
        approver, VALIDATION_FAILED for a bad or taken order.
    """
    if not department_id or not approver_id:
        return ApprovalResult.invalid("department_id and approver_id are required")
    order, err = _parse_order(order)
    if err:
        return ApprovalResult.invalid(err)

    if db.session.get(Department, department_id) is None:
        return ApprovalResult.not_found(f"Department {department_id} not found")
    if db.session.get(User, approver_id) is None:
        return ApprovalResult.not_found(f"User {approver_id} not found")

    if _approver_taken(department_id, approver_id):
        return ApprovalResult.duplicate("approver already in department workflow")

    if order is None:
        order = _next_order(department_id)
    elif _order_taken(department_id, order):
        return ApprovalResult.invalid(
            f"order {order} is already used by an active step",
            details={"order": order},
        )

    step = WorkflowStep(
        department_id=department_id,
        approver_id=approver_id,
        step_order=order,
        status="active",
        created_by=actor or None,
        updated_by=actor or None,
    )
    db.session.add(step)
    db.session.commit()
    logger.info(
        "Workflow step created",
        extra={"event_type": "workflow_step_created", "approver_id": approver_id},
    )
    return ApprovalResult.success("workflow step created", changed=True, data={"step": step.to_dict()})


def update_step(step_id: int, data: dict, actor: str = "") -> ApprovalResult:
    """Move a step to another department, approver or order."""
    step = db.session.get(WorkflowStep, step_id)
    if step is None:
        return ApprovalResult.not_found("workflow not found")

    department_id = data.get("department_id") or step.department_id
    approver_id = data.get("approver_id") or step.approver_id
    order, err = _parse_order(data.get("order"))
    if err:
        return ApprovalResult.invalid(err)
    order = order or step.step_order

    if department_id != step.department_id and db.session.get(Department, department_id) is None:
        return ApprovalResult.not_found(f"Department {department_id} not found")
    if approver_id != step.approver_id and db.session.get(User, approver_id) is None:
        return ApprovalResult.not_found(f"User {approver_id} not found")

    if _approver_taken(department_id, approver_id, exclude_id=step.id):
        return ApprovalResult.duplicate("approver already in department workflow")
    if step.status == "active" and _order_taken(department_id, order, exclude_id=step.id):
        return ApprovalResult.invalid(
            f"order {order} is already used by an active step",
            details={"order": order},
        )

    step.department_id = department_id
    step.approver_id = approver_id
    step.step_order = order
    step.updated_by = actor or step.updated_by
    db.session.commit()
    return ApprovalResult.success("workflow step updated", changed=True, data={"step": step.to_dict()})


def set_step_status(step_id: int, status: str, actor: str) -> ApprovalResult:
    """Activate or deactivate a step. Chains already built are not touched."""
    err = _validate_enum(status, RECORD_STATUSES, "status")
    if err:
        return ApprovalResult.invalid("status must be 'active' or 'inactive'")
    if not isinstance(actor, str) or not actor.strip():
        return ApprovalResult.invalid("updated_by is required")

    step = db.session.get(WorkflowStep, step_id)
    if step is None:
        return ApprovalResult.not_found("workflow not found")

    if status == "active" and step.status != "active" and _order_taken(
        step.department_id, step.step_order, exclude_id=step.id
    ):
        return ApprovalResult.invalid(
            f"order {step.step_order} is already used by an active step",
            details={"order": step.step_order},
        )

    changed = step.status != status
    step.status = status
    step.updated_by = actor.strip()
    db.session.commit()
    return ApprovalResult.success("workflow step status updated", changed=changed,
                                  data={"step": step.to_dict()})
