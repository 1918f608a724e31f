"""
Department workflow maintenance blueprint.

Routes:
  GET    /workflow-steps?department_id=         - list steps
  POST   /workflow-steps                        - add an approver to a workflow
  PUT    /workflow-steps/<sid>                  - change department / approver / order
  PUT    /workflow-steps/<sid>/status           - activate / deactivate
"""

from flask import Blueprint, jsonify, request

from app.blueprints.approval_bp import _current_user
from app.services import workflow_service
from app.utils.errors import E, api_error, result_response

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")


@workflow_bp.route("/workflow-steps", methods=["GET"])
def list_workflow_steps():
    department_id = request.args.get("department_id", type=int)
    steps = workflow_service.list_steps(department_id)
    return jsonify({"items": [s.to_dict() for s in steps], "total": len(steps)})


@workflow_bp.route("/workflow-steps", methods=["POST"])
def create_workflow_step():
    data = request.get_json(silent=True) or {}
    result = workflow_service.create_step(
        data.get("department_id"),
        data.get("approver_id"),
        data.get("order"),
        actor=data.get("created_by") or _current_user(),
    )
    return result_response(result, created=True)


@workflow_bp.route("/workflow-steps/<int:sid>", methods=["PUT"])
def update_workflow_step(sid):
    data = request.get_json(silent=True) or {}
    result = workflow_service.update_step(sid, data, actor=data.get("updated_by") or _current_user())
    return result_response(result)


@workflow_bp.route("/workflow-steps/<int:sid>/status", methods=["PUT"])
def update_workflow_step_status(sid):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "invalid request body")
    result = workflow_service.set_step_status(sid, data.get("status", ""), data.get("updated_by", ""))
    return result_response(result)
