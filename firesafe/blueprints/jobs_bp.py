"""
Scheduled job Blueprint.

The platform cron calls ``POST /api/v1/cron/reconcile`` once a day with
``Authorization: Bearer <CRON_SECRET>``.  The remaining endpoints use the
same token.

Endpoints:
    POST   /api/v1/cron/reconcile                run every registered job
    GET    /api/v1/jobs                          registered jobs and their last run
    POST   /api/v1/jobs/<name>/trigger           run one job now
    PATCH  /api/v1/jobs/<name>/toggle            { "enabled": bool }
"""

import hmac
import logging

from flask import Blueprint, current_app, jsonify, request

from firesafe.services.scheduler_service import SchedulerService
from firesafe.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

jobs_bp = Blueprint("jobs", __name__, url_prefix="/api/v1")
register_error_handlers(jobs_bp)


@jobs_bp.before_request
def _require_cron_secret():
    secret = current_app.config.get("CRON_SECRET")
    auth_header = request.headers.get("Authorization", "")
    if not secret or not auth_header.startswith("Bearer "):
        return api_error(E.UNAUTHORIZED, "Missing or invalid Authorization header")
    token = auth_header[7:]  # Strip "Bearer "
    if not hmac.compare_digest(token, secret):
        logger.warning("Rejected cron call with an invalid token")
        return api_error(E.UNAUTHORIZED, "Invalid cron token")
    return None


@jobs_bp.route("/cron/reconcile", methods=["POST"])
def run_reconciliation():
    results = SchedulerService.run_all()
    failed = [r["job_name"] for r in results if r["status"] in ("failed", "error")]
    return jsonify({"jobs": results, "failed": failed}), 500 if failed else 200


@jobs_bp.route("/jobs", methods=["GET"])
def list_jobs():
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)}), 200


@jobs_bp.route("/jobs/<job_name>/trigger", methods=["POST"])
def trigger_job(job_name):
    result = SchedulerService.run_job(job_name)
    if result.get("status") == "error" and "Unknown job" in (result.get("error") or ""):
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result), 200


@jobs_bp.route("/jobs/<job_name>/toggle", methods=["PATCH"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")
    result = SchedulerService.toggle_job(job_name, bool(enabled))
    if result is None:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(result), 200
