"""
Work order Blueprint: stage changes, edits and batch payments.

Endpoints:
    PATCH  /api/v1/work-orders/<wid>                  edit description / notes / date / price
    POST   /api/v1/work-orders/<wid>/transition       { "stage": "IN_PROGRESS" }
    POST   /api/v1/work-orders/<wid>/reschedule       { "scheduled_date": "YYYY-MM-DD" }
    POST   /api/v1/branches/<bid>/payments/submit     { work_order_ids, proof: {url, type, file_name} }
    POST   /api/v1/branches/<bid>/payments/verify     { work_order_ids, signature_url }
"""

import logging

from flask import Blueprint, jsonify

from firesafe.auth import current_actor
from firesafe.blueprints import json_body
from firesafe.services import payment_service, work_order_service
from firesafe.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

work_orders_bp = Blueprint("work_orders", __name__, url_prefix="/api/v1")
register_error_handlers(work_orders_bp)


def _id_list(data):
    ids = data.get("work_order_ids")
    if not isinstance(ids, list):
        return None
    return ids


@work_orders_bp.route("/work-orders/<int:work_order_id>", methods=["PATCH"])
def update_work_order(work_order_id):
    actor = current_actor()
    data = json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required.")
    wo = work_order_service.update_work_order(work_order_id, data, actor)
    return jsonify(wo.to_dict()), 200


@work_orders_bp.route("/work-orders/<int:work_order_id>/transition", methods=["POST"])
def transition_work_order(work_order_id):
    actor = current_actor()
    stage = json_body().get("stage")
    if not stage:
        return api_error(E.VALIDATION_REQUIRED, "Field 'stage' is required.")
    wo = work_order_service.transition_work_order(work_order_id, stage, actor)
    return jsonify(wo.to_dict()), 200


@work_orders_bp.route("/work-orders/<int:work_order_id>/reschedule", methods=["POST"])
def reschedule_work_order(work_order_id):
    actor = current_actor()
    wo = work_order_service.reschedule_work_order(
        work_order_id, json_body().get("scheduled_date"), actor,
    )
    return jsonify(wo.to_dict()), 200


@work_orders_bp.route("/branches/<int:branch_id>/payments/submit", methods=["POST"])
def submit_payment(branch_id):
    actor = current_actor()
    data = json_body()
    ids = _id_list(data)
    if ids is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'work_order_ids' must be a list.")
    work_orders = payment_service.submit_payment_proof(branch_id, ids, data.get("proof"), actor)
    return jsonify({"items": [wo.to_dict() for wo in work_orders]}), 200


@work_orders_bp.route("/branches/<int:branch_id>/payments/verify", methods=["POST"])
def verify_payment(branch_id):
    actor = current_actor()
    data = json_body()
    ids = _id_list(data)
    if ids is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'work_order_ids' must be a list.")
    work_orders = payment_service.verify_payment(branch_id, ids, data.get("signature_url"), actor)
    return jsonify({"items": [wo.to_dict() for wo in work_orders]}), 200
