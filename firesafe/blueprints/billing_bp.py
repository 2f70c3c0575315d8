"""
Billing Blueprint: invoices and contracts.

Endpoints:
    GET    /api/v1/invoices/<iid>
    PUT    /api/v1/invoices/<iid>/items             { items: [...], tax_rate? }
    POST   /api/v1/invoices/<iid>/send
    POST   /api/v1/invoices/<iid>/pay               mark fully paid
    POST   /api/v1/invoices/<iid>/record-payment    { "amount": float }
    POST   /api/v1/invoices/<iid>/payment-proof     { proof: {url, type, file_name} }
    POST   /api/v1/invoices/<iid>/verify-payment    { "signature_url": str }
    GET    /api/v1/contracts/<cid>
    POST   /api/v1/contracts/<cid>/sign             { "signature_url": str }
    POST   /api/v1/contracts/<cid>/end-sign         { "signature_url": str }
"""

import logging

from flask import Blueprint, jsonify

from firesafe.auth import current_actor
from firesafe.blueprints import json_body
from firesafe.services import billing_service, payment_service
from firesafe.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

billing_bp = Blueprint("billing", __name__, url_prefix="/api/v1")
register_error_handlers(billing_bp)


# ═════════════════════════════════════════════════════════════════════════════
# Invoices
# ═════════════════════════════════════════════════════════════════════════════


@billing_bp.route("/invoices/<int:invoice_id>", methods=["GET"])
def get_invoice(invoice_id):
    current_actor()
    return jsonify(billing_service.get_invoice(invoice_id).to_dict()), 200


@billing_bp.route("/invoices/<int:invoice_id>/items", methods=["PUT"])
def update_invoice_items(invoice_id):
    actor = current_actor()
    data = json_body()
    items = data.get("items")
    if not isinstance(items, list):
        return api_error(E.VALIDATION_REQUIRED, "Field 'items' must be a list.")
    tax_rate = data.get("tax_rate")
    if tax_rate is not None:
        try:
            tax_rate = float(tax_rate)
        except (TypeError, ValueError):
            return api_error(E.VALIDATION_INVALID, "Field 'tax_rate' must be a number.")
    invoice = billing_service.update_invoice_items(invoice_id, items, actor, tax_rate=tax_rate)
    return jsonify(invoice.to_dict()), 200


@billing_bp.route("/invoices/<int:invoice_id>/send", methods=["POST"])
def send_invoice(invoice_id):
    actor = current_actor()
    return jsonify(billing_service.send_invoice(invoice_id, actor).to_dict()), 200


@billing_bp.route("/invoices/<int:invoice_id>/pay", methods=["POST"])
def mark_invoice_paid(invoice_id):
    actor = current_actor()
    return jsonify(billing_service.mark_invoice_paid(invoice_id, actor).to_dict()), 200


@billing_bp.route("/invoices/<int:invoice_id>/record-payment", methods=["POST"])
def record_invoice_payment(invoice_id):
    actor = current_actor()
    amount = json_body().get("amount")
    if amount is None:
        return api_error(E.VALIDATION_REQUIRED, "Field 'amount' is required.")
    invoice = billing_service.record_invoice_payment(invoice_id, amount, actor)
    return jsonify(invoice.to_dict()), 200


@billing_bp.route("/invoices/<int:invoice_id>/payment-proof", methods=["POST"])
def submit_invoice_payment_proof(invoice_id):
    actor = current_actor()
    invoice = payment_service.submit_invoice_payment_proof(invoice_id, json_body().get("proof"), actor)
    return jsonify(invoice.to_dict()), 200


@billing_bp.route("/invoices/<int:invoice_id>/verify-payment", methods=["POST"])
def verify_invoice_payment(invoice_id):
    actor = current_actor()
    invoice = payment_service.verify_invoice_payment(
        invoice_id, json_body().get("signature_url"), actor,
    )
    return jsonify(invoice.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════════
# Contracts
# ═════════════════════════════════════════════════════════════════════════════


@billing_bp.route("/contracts/<int:contract_id>", methods=["GET"])
def get_contract(contract_id):
    current_actor()
    return jsonify(billing_service.get_contract(contract_id).to_dict()), 200


@billing_bp.route("/contracts/<int:contract_id>/sign", methods=["POST"])
def sign_contract(contract_id):
    actor = current_actor()
    contract = billing_service.sign_contract(contract_id, json_body().get("signature_url"), actor)
    return jsonify(contract.to_dict()), 200


@billing_bp.route("/contracts/<int:contract_id>/end-sign", methods=["POST"])
def sign_contract_end(contract_id):
    actor = current_actor()
    contract = billing_service.sign_contract_end(
        contract_id, json_body().get("signature_url"), actor,
    )
    return jsonify(contract.to_dict()), 200
