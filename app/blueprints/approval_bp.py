"""
Project tracking approval blueprint.

Routes:
  POST   /tracking/submit                           - submit item(s) for approval
  POST   /tracking/decision                         - approver decision (done / reject / ...)
  POST   /tracking/project-control-decision         - project-control verdict
  GET    /tracking/items/<iid>/approval-status      - projection + chain of one item
  GET    /tracking/projects/<pid>/items             - tracking list of a project
  GET    /approvals/pending?approver_id=            - approver inbox
  GET    /approvals/pending/count?approver_id=      - inbox badge
"""

from flask import Blueprint, jsonify, request

from app.services import approval_engine, approval_status
from app.utils.errors import E, api_error, result_response

approval_bp = Blueprint("tracking", __name__, url_prefix="/api/v1")


# ── helpers ──────────────────────────────────────────────────────────────

def _current_user():
    """Best-effort current user extraction (no auth enforcement)."""
    return (
        request.headers.get("X-User", "")
        or request.headers.get("X-Forwarded-User", "")
        or "system"
    )


def _params() -> dict:
    """Merge query string, form fields and JSON body; later sources win."""
    merged = dict(request.args.items())
    merged.update(request.form.items())
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        merged.update(body)
    return merged


def _int_arg(name):
    raw = request.args.get(name, "").strip()
    if not raw:
        return None, None
    try:
        return int(raw), None
    except ValueError:
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")


# ═════════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/tracking/submit", methods=["POST"])
def submit_tracking():
    """Submit one item, or a batch under ``items``, for approval."""
    data = _params()
    submitted_by = data.get("submitted_by") or _current_user()

    if "items" in data:
        entries = data.get("items")
    else:
        entries = [{
            "item_detail_id": data.get("item_detail_id"),
            "file_name": data.get("file_name"),
            "file_path": data.get("file_path"),
            "file_type": data.get("file_type"),
        }]

    result = approval_engine.submit_items(entries, submitted_by)
    return result_response(result, created=True)


@approval_bp.route("/tracking/decision", methods=["POST"])
def decide_tracking():
    """Approve or reject the current approval record of an item."""
    data = _params()
    result = approval_engine.decide_item(
        data.get("item_detail_id"),
        data.get("new_status"),
        data.get("updated_by") or "",
        data.get("note"),
    )
    return result_response(result)


@approval_bp.route("/tracking/project-control-decision", methods=["POST"])
def project_control_decision():
    data = _params()
    result = approval_engine.record_project_control_decision(
        data.get("item_detail_id"),
        data.get("status") or data.get("new_status"),
        data.get("updated_by") or "",
        data.get("note"),
    )
    return result_response(result)


# ═════════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════════

@approval_bp.route("/tracking/items/<int:iid>/approval-status", methods=["GET"])
def item_approval_status(iid):
    return jsonify(approval_status.get_item_status(iid))


@approval_bp.route("/tracking/projects/<int:pid>/items", methods=["GET"])
def project_items(pid):
    """Tracking list; ``owner_id`` / ``line_code`` narrow it to one user's view."""
    owner_id, err = _int_arg("owner_id")
    if err:
        return err
    line_code = request.args.get("line_code", "").strip() or None
    items = approval_status.list_project_items(pid, owner_id=owner_id, line_code=line_code)
    return jsonify({"items": items, "total": len(items)})


@approval_bp.route("/approvals/pending", methods=["GET"])
def pending_approvals():
    approver_id, err = _int_arg("approver_id")
    if err:
        return err
    if approver_id is None:
        return api_error(E.VALIDATION_REQUIRED, "approver_id is required")
    items = approval_status.list_pending_for_approver(approver_id)
    return jsonify({"items": items, "total": len(items)})


@approval_bp.route("/approvals/pending/count", methods=["GET"])
def pending_approvals_count():
    approver_id, err = _int_arg("approver_id")
    if err:
        return err
    if approver_id is None:
        return api_error(E.VALIDATION_REQUIRED, "approver_id is required")
    return jsonify({"approver_id": approver_id,
                    "count": approval_status.count_pending_for_approver(approver_id)})
