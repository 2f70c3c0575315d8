"""
Project lifecycle Blueprint.

Endpoints:
    POST   /api/v1/branches/<bid>/projects          propose a project (201)
    GET    /api/v1/projects/<pid>                   detail with checklists, contracts, invoices
    GET    /api/v1/projects/<pid>/work-orders       ?stage=SCHEDULED
    POST   /api/v1/projects/<pid>/work-orders       add a work order (201)
    POST   /api/v1/projects/<pid>/approve           client approval
    POST   /api/v1/projects/<pid>/adhoc-approve     { "work_order_id": int }
    POST   /api/v1/projects/<pid>/complete
    POST   /api/v1/projects/<pid>/cancel            { "reason": str? }
    POST   /api/v1/projects/<pid>/clone             { title?, start_date?, end_date?, auto_renew? } (201)
    GET    /api/v1/projects/<pid>/activities

Layer contract:
    - Blueprint: parse input, resolve the actor, call the service, return JSON.
    - NO db.session calls here; role and state guards live in the services.
"""

import logging

from flask import Blueprint, jsonify, request

from firesafe.auth import current_actor
from firesafe.blueprints import json_body, pagination_args
from firesafe.services import activity_log, project_service, work_order_service
from firesafe.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

projects_bp = Blueprint("projects", __name__, url_prefix="/api/v1")
register_error_handlers(projects_bp)


@projects_bp.route("/branches/<int:branch_id>/projects", methods=["POST"])
def create_project(branch_id):
    actor = current_actor()
    data = json_body()
    if not (data.get("title") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'title' is required.")
    if data.get("templates") is not None and not isinstance(data["templates"], list):
        return api_error(E.VALIDATION_INVALID, "Field 'templates' must be a list.")
    project = project_service.create_project(branch_id, data, actor)
    return jsonify(project.to_dict(include_children=True)), 201


@projects_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    current_actor()
    return jsonify(project_service.get_project_detail(project_id)), 200


@projects_bp.route("/projects/<int:project_id>/work-orders", methods=["GET"])
def list_work_orders(project_id):
    current_actor()
    items = project_service.list_work_orders(project_id, stage=request.args.get("stage"))
    return jsonify({"items": [wo.to_dict() for wo in items], "total": len(items)}), 200


@projects_bp.route("/projects/<int:project_id>/work-orders", methods=["POST"])
def add_work_order(project_id):
    actor = current_actor()
    data = json_body()
    if not (data.get("description") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "Field 'description' is required.")
    wo = work_order_service.add_work_order(project_id, data, actor)
    return jsonify(wo.to_dict()), 201


@projects_bp.route("/projects/<int:project_id>/approve", methods=["POST"])
def approve_project(project_id):
    actor = current_actor()
    result = project_service.approve_project(project_id, actor)
    return jsonify({
        "project": result["project"].to_dict(),
        "contract_id": result["contract_id"],
        "invoice_id": result["invoice_id"],
    }), 200


@projects_bp.route("/projects/<int:project_id>/adhoc-approve", methods=["POST"])
def approve_adhoc(project_id):
    actor = current_actor()
    work_order_id = json_body().get("work_order_id")
    if not work_order_id:
        return api_error(E.VALIDATION_REQUIRED, "Field 'work_order_id' is required.")
    wo = project_service.approve_adhoc_work_order(project_id, work_order_id, actor)
    return jsonify(wo.to_dict()), 200


@projects_bp.route("/projects/<int:project_id>/complete", methods=["POST"])
def complete_project(project_id):
    actor = current_actor()
    project = project_service.complete_project(project_id, actor)
    return jsonify(project.to_dict()), 200


@projects_bp.route("/projects/<int:project_id>/cancel", methods=["POST"])
def cancel_project(project_id):
    actor = current_actor()
    project = project_service.cancel_project(project_id, actor, reason=json_body().get("reason"))
    return jsonify(project.to_dict()), 200


@projects_bp.route("/projects/<int:project_id>/clone", methods=["POST"])
def clone_project(project_id):
    actor = current_actor()
    project = project_service.clone_project(project_id, json_body(), actor)
    return jsonify(project.to_dict(include_children=True)), 201


@projects_bp.route("/projects/<int:project_id>/activities", methods=["GET"])
def list_activities(project_id):
    current_actor()
    work_order_service.get_project(project_id)
    limit, _offset = pagination_args(default_limit=100)
    entries = activity_log.list_activities(project_id, limit=limit)
    return jsonify({"items": [a.to_dict() for a in entries], "total": len(entries)}), 200
