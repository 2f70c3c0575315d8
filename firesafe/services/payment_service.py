"""
Two-phase payment flow.

    1. submit  (client)      proof attached, UNPAID → PENDING_VERIFICATION
    2. verify  (contractor)  signature required, PENDING_VERIFICATION → PAID

Batch operations take a list of work-order ids that must all exist and all
belong to the given branch.  The whole batch is validated before any row is
written; one bad id rejects the request.

When verification leaves every work order of a project PAID, the project's
outstanding invoice is settled through the billing status rule (which may in
turn close a DONE project).  Invoices can also be paid directly with the same
two phases.
"""

import logging
from datetime import datetime, timezone

from firesafe.core.actor import CLIENT, CONTRACTOR_SIDE, require_role
from firesafe.core.exceptions import ConflictError, ValidationError
from firesafe.models import db
from firesafe.models.base import (
    PAYMENT_PAID,
    PAYMENT_PENDING_VERIFICATION,
    PAYMENT_UNPAID,
    PROOF_TYPES,
)
from firesafe.models.billing import (
    INVOICE_CANCELLED,
    INVOICE_PAID,
    INVOICE_PAYMENT_PENDING,
    Invoice,
)
from firesafe.models.project import Checklist, WorkOrder
from firesafe.services import billing_service
from firesafe.services.activity_log import record_activity
from firesafe.services.notification import NotificationService
from firesafe.services.unit_of_work import compare_and_set_status, transaction

logger = logging.getLogger(__name__)


# ── Validation ───────────────────────────────────────────────────────────────


def _normalize_ids(work_order_ids):
    if not work_order_ids:
        raise ValidationError("work_order_ids cannot be empty",
                              details={"work_order_ids": "required"})
    try:
        ids = [int(i) for i in work_order_ids]
    except (TypeError, ValueError):
        raise ValidationError("work_order_ids must be integers",
                              details={"work_order_ids": "invalid"})
    # Keep caller order, drop duplicates
    return list(dict.fromkeys(ids))


def _validate_proof(proof):
    proof = proof or {}
    url = proof.get("url")
    proof_type = proof.get("type")
    if not url:
        raise ValidationError("Payment proof is required", details={"proof.url": "required"})
    if proof_type not in PROOF_TYPES:
        raise ValidationError(
            f"Proof type must be one of {sorted(PROOF_TYPES)}",
            details={"proof.type": "invalid"},
        )
    return url, proof_type, proof.get("file_name")


def _load_branch_work_orders(branch_id, ids):
    """Load the batch; every id must exist and sit under ``branch_id``."""
    rows = (
        WorkOrder.query.join(Checklist, WorkOrder.checklist_id == Checklist.id)
        .filter(WorkOrder.id.in_(ids))
        .add_columns(Checklist.branch_id)
        .all()
    )
    found = {wo.id: (wo, wo_branch) for wo, wo_branch in rows}

    missing = [i for i in ids if i not in found]
    if missing:
        raise ValidationError("Unknown work orders in batch", details={"missing": missing})
    foreign = [i for i in ids if found[i][1] != branch_id]
    if foreign:
        raise ValidationError(
            "Work orders do not belong to this branch",
            details={"branch_id": branch_id, "mismatched": foreign},
        )
    return [found[i][0] for i in ids]


# ── Work-order payments ──────────────────────────────────────────────────────


def submit_payment_proof(branch_id, work_order_ids, proof, actor, *, now=None):
    """Client attaches proof of payment to a batch of work orders.

    Args:
        proof: {"url": str, "type": "file" | "link", "file_name": str | None}

    Returns:
        The updated work orders.
    """
    require_role(actor, CLIENT, action="submit payment proof")
    ids = _normalize_ids(work_order_ids)
    url, proof_type, file_name = _validate_proof(proof)
    now = now or datetime.now(timezone.utc)

    with transaction():
        work_orders = _load_branch_work_orders(branch_id, ids)
        paid = [wo.id for wo in work_orders if wo.is_paid]
        if paid:
            raise ConflictError(
                f"Work orders already paid: {paid}",
                resource="WorkOrder", current_status=PAYMENT_PAID,
            )

        for wo in work_orders:
            wo.payment_status = PAYMENT_PENDING_VERIFICATION
            wo.payment_proof_url = url
            wo.payment_proof_type = proof_type
            wo.payment_proof_file_name = file_name
            wo.payment_submitted_at = now
            wo.payment_submitted_by_id = actor.user_id

        NotificationService.notify_many(
            NotificationService.contractor_user_ids(branch_id),
            "PAYMENT_SUBMITTED",
            "Payment Proof Submitted",
            f"Payment proof submitted for {len(work_orders)} work order(s)",
            f"/dashboard/branches/{branch_id}?tab=payments",
            related_id=branch_id, related_type="Branch",
        )
        for project_id in {wo.checklist.project_id for wo in work_orders}:
            record_activity(project_id, "PAYMENT",
                            f"Payment proof submitted for {len(work_orders)} work order(s)", actor)

    logger.info("Payment proof submitted for %d work orders", len(work_orders),
                extra={"branch_id": branch_id, "user_id": actor.user_id})
    return work_orders


def verify_payment(branch_id, work_order_ids, signature_url, actor, *, now=None):
    """Contractor confirms receipt for a batch of work orders.

    Raises:
        ValidationError: empty batch, foreign / unknown ids, missing signature,
            or a work order without submitted proof.
        ConflictError: a work order is already PAID.
    """
    require_role(actor, *CONTRACTOR_SIDE, action="verify payments")
    ids = _normalize_ids(work_order_ids)
    if not signature_url:
        raise ValidationError("Signature is required to verify payment",
                              details={"signature_url": "required"})
    now = now or datetime.now(timezone.utc)

    with transaction():
        work_orders = _load_branch_work_orders(branch_id, ids)
        paid = [wo.id for wo in work_orders if wo.is_paid]
        if paid:
            raise ConflictError(
                f"Work orders already paid: {paid}",
                resource="WorkOrder", current_status=PAYMENT_PAID,
            )
        no_proof = [
            wo.id for wo in work_orders
            if wo.payment_status == PAYMENT_UNPAID or not wo.payment_proof_url
        ]
        if no_proof:
            raise ValidationError(
                "Payment proof has not been submitted",
                details={"work_order_ids": no_proof},
            )

        for wo in work_orders:
            compare_and_set_status(
                WorkOrder, wo.id, PAYMENT_PENDING_VERIFICATION, PAYMENT_PAID,
                field="payment_status",
                payment_verified_at=now,
                payment_verified_by_id=actor.user_id,
                payment_signature_url=signature_url,
            )

        NotificationService.notify_many(
            NotificationService.client_user_ids(branch_id),
            "PAYMENT_VERIFIED",
            "Payment Verified",
            f"Payment verified for {len(work_orders)} work order(s)",
            f"/portal/branches/{branch_id}?tab=payments",
            related_id=branch_id, related_type="Branch",
        )
        project_ids = {wo.checklist.project_id for wo in work_orders}
        for project_id in project_ids:
            record_activity(project_id, "PAYMENT",
                            f"Payment verified for {len(work_orders)} work order(s)", actor)
            _settle_invoice_when_fully_paid(project_id, actor, now)

    logger.info("Payment verified for %d work orders", len(work_orders),
                extra={"branch_id": branch_id, "user_id": actor.user_id})
    return work_orders


def _settle_invoice_when_fully_paid(project_id, actor, now):
    db.session.flush()
    unpaid = (
        WorkOrder.query.join(Checklist, WorkOrder.checklist_id == Checklist.id)
        .filter(Checklist.project_id == project_id, WorkOrder.payment_status != PAYMENT_PAID)
        .count()
    )
    if unpaid:
        return None
    invoice = (
        Invoice.query.filter(
            Invoice.project_id == project_id,
            Invoice.status.notin_([INVOICE_PAID, INVOICE_CANCELLED]),
        )
        .order_by(Invoice.id.desc())
        .first()
    )
    if invoice is None:
        return None
    invoice.amount_paid = invoice.total
    invoice.payment_status = PAYMENT_PAID
    return billing_service.set_invoice_status(invoice, INVOICE_PAID, actor, now=now)


# ── Invoice payments ─────────────────────────────────────────────────────────


def submit_invoice_payment_proof(invoice_id, proof, actor, *, now=None):
    require_role(actor, CLIENT, action="submit payment proof")
    url, proof_type, file_name = _validate_proof(proof)
    now = now or datetime.now(timezone.utc)

    with transaction():
        invoice = billing_service.get_invoice(invoice_id)
        if invoice.payment_status == PAYMENT_PAID or invoice.status == INVOICE_PAID:
            raise ConflictError("Invoice is already paid", resource="Invoice",
                                current_status=invoice.status)
        invoice.payment_status = PAYMENT_PENDING_VERIFICATION
        invoice.payment_proof_url = url
        invoice.payment_proof_type = proof_type
        invoice.payment_proof_file_name = file_name
        invoice.payment_submitted_at = now
        invoice.payment_submitted_by_id = actor.user_id
        invoice = billing_service.set_invoice_status(invoice, INVOICE_PAYMENT_PENDING, actor, now=now)

        NotificationService.notify_many(
            NotificationService.contractor_user_ids(invoice.branch_id),
            "PAYMENT_SUBMITTED",
            "Invoice Payment Submitted",
            f"Payment proof submitted for invoice {invoice.invoice_number}",
            related_id=invoice.id, related_type="Invoice",
        )
    return invoice


def verify_invoice_payment(invoice_id, signature_url, actor, *, now=None):
    require_role(actor, *CONTRACTOR_SIDE, action="verify payments")
    if not signature_url:
        raise ValidationError("Signature is required to verify payment",
                              details={"signature_url": "required"})
    now = now or datetime.now(timezone.utc)

    with transaction():
        invoice = billing_service.get_invoice(invoice_id)
        if invoice.is_paid:
            raise ConflictError("Invoice is already paid", resource="Invoice",
                                current_status=invoice.status)
        if invoice.payment_status != PAYMENT_PENDING_VERIFICATION or not invoice.payment_proof_url:
            raise ValidationError("Payment proof has not been submitted",
                                  details={"invoice_id": invoice.id})
        invoice = compare_and_set_status(
            Invoice, invoice.id, PAYMENT_PENDING_VERIFICATION, PAYMENT_PAID,
            field="payment_status",
            payment_verified_at=now,
            payment_verified_by_id=actor.user_id,
            payment_signature_url=signature_url,
        )
        invoice.amount_paid = invoice.total
        invoice = billing_service.set_invoice_status(invoice, INVOICE_PAID, actor, now=now)

        NotificationService.notify_many(
            NotificationService.client_user_ids(invoice.branch_id),
            "PAYMENT_VERIFIED",
            "Invoice Payment Verified",
            f"Payment verified for invoice {invoice.invoice_number}",
            related_id=invoice.id, related_type="Invoice",
        )
    return invoice
