"""
Certificate auto-issuer.

Called when a work order reaches COMPLETED.  Eligibility, type and expiry
are derived from the work order at issuance time; an existing certificate
for the same work order is returned untouched, so replays never create a
second one.
"""

import logging
from datetime import datetime, timezone

from firesafe.models import db
from firesafe.models.certificate import (
    CERT_COMPLETION,
    CERT_INSPECTION,
    CERT_PREVENTIVE_MAINTENANCE,
    Certificate,
)
from firesafe.models.project import RECURRING_MONTHLY, RECURRING_QUARTERLY
from firesafe.utils.helpers import add_months

logger = logging.getLogger(__name__)

CERTIFIED_WORK_TYPES = {"INSPECTION", "MAINTENANCE"}

_TYPE_MAP = {
    "INSPECTION": CERT_INSPECTION,
    "MAINTENANCE": CERT_PREVENTIVE_MAINTENANCE,
}

_VALIDITY_MONTHS = {
    RECURRING_MONTHLY: 1,
    RECURRING_QUARTERLY: 3,
}
DEFAULT_VALIDITY_MONTHS = 12


def is_eligible(work_order):
    request = work_order.linked_request
    if request is not None and request.needs_certificate:
        return True
    return work_order.work_order_type in CERTIFIED_WORK_TYPES


def certificate_type_for(work_order):
    return _TYPE_MAP.get(work_order.work_order_type, CERT_COMPLETION)


def expiry_for(work_order, issue_date):
    months = _VALIDITY_MONTHS.get(work_order.recurring_type, DEFAULT_VALIDITY_MONTHS)
    return add_months(issue_date, months)


def issue_for_work_order(work_order, now=None):
    """Issue the certificate for a completed work order if eligible.

    Returns:
        The existing or newly created Certificate, or None if not eligible.
    """
    existing = Certificate.query.filter_by(work_order_id=work_order.id).first()
    if existing is not None:
        return existing
    if not is_eligible(work_order):
        return None

    project = work_order.project
    issue_date = (now or datetime.now(timezone.utc)).date()
    cert = Certificate(
        branch_id=project.branch_id,
        project_id=project.id,
        work_order_id=work_order.id,
        type=certificate_type_for(work_order),
        title=f"{work_order.description} certificate",
        issue_date=issue_date,
        expiry_date=expiry_for(work_order, issue_date),
        file_url="",
    )
    db.session.add(cert)
    db.session.flush()
    logger.info("Issued %s certificate %s", cert.type, cert.id,
                extra={"work_order_id": work_order.id, "project_id": project.id})
    return cert
