"""
Invoice and contract operations.

Invoice status rule
-------------------
Every code path that changes an invoice's status ends in
``on_invoice_status_changed``.  When the invoice reached PAID and its project
is DONE, the project is closed in the same transaction.  No other code
closes projects.

Contract end-signature
----------------------
Allowed only when every work order of the contract's project is COMPLETED
and PAID.  Incomplete work is reported before unpaid work, each with its own
error type.
"""

import logging
import uuid
from datetime import datetime, timezone

from firesafe.core.actor import CLIENT, CONTRACTOR, CONTRACTOR_SIDE, require_role
from firesafe.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkIncompleteError,
    WorkUnpaidError,
)
from firesafe.models import db
from firesafe.models.base import PAYMENT_PAID
from firesafe.models.billing import (
    CONTRACT_COMPLETED,
    CONTRACT_DRAFT,
    CONTRACT_PENDING_SIGNATURE,
    CONTRACT_SIGNED,
    INVOICE_CANCELLED,
    INVOICE_DRAFT,
    INVOICE_PAID,
    INVOICE_PARTIAL,
    INVOICE_SENT,
    Contract,
    Invoice,
    InvoiceItem,
    validate_invoice_transition,
)
from firesafe.models.project import PROJECT_CLOSED, PROJECT_DONE, STAGE_COMPLETED, Project
from firesafe.services.activity_log import record_activity
from firesafe.services.notification import NotificationService
from firesafe.services.unit_of_work import compare_and_set_status, transaction
from firesafe.services.valuation import recalculate_invoice_totals

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_invoice(invoice_id):
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError(resource="Invoice", resource_id=invoice_id)
    return invoice


def get_contract(contract_id):
    contract = db.session.get(Contract, contract_id)
    if contract is None:
        raise NotFoundError(resource="Contract", resource_id=contract_id)
    return contract


def generate_invoice_number(now=None):
    now = now or datetime.now(timezone.utc)
    return f"INV-{now:%Y%m%d}-{uuid.uuid4().hex[:6].upper()}"


def open_invoice_for_project(project_id, statuses):
    return (
        Invoice.query.filter(Invoice.project_id == project_id, Invoice.status.in_(statuses))
        .order_by(Invoice.id.desc())
        .first()
    )


# ── Invoice status rule ──────────────────────────────────────────────────────


def set_invoice_status(invoice, new_status, actor, *, now=None):
    """Change an invoice's status and apply the closure rule.

    Must run inside a transaction.
    """
    old_status = invoice.status
    if old_status == new_status:
        return invoice
    if not validate_invoice_transition(old_status, new_status):
        raise ConflictError(
            f"Invoice cannot move from {old_status} to {new_status}",
            resource="Invoice", current_status=old_status,
        )
    invoice = compare_and_set_status(Invoice, invoice.id, old_status, new_status)
    on_invoice_status_changed(invoice, old_status, actor, now=now)
    return invoice


def on_invoice_status_changed(invoice, old_status, actor, *, now=None):
    """Closure rule: invoice reached PAID while its project is DONE → CLOSED."""
    now = now or datetime.now(timezone.utc)
    if invoice.status == INVOICE_PAID and invoice.paid_at is None:
        invoice.paid_at = now
    if invoice.status != INVOICE_PAID or invoice.project_id is None:
        return None

    project = db.session.get(Project, invoice.project_id)
    if project is None or project.status != PROJECT_DONE:
        return None
    return _close_project(project, f"invoice {invoice.invoice_number} paid", actor, now)


def close_project_if_settled(project, actor, *, now=None):
    """Close a DONE project whose invoices were all paid before completion."""
    if project.status != PROJECT_DONE:
        return None
    invoices = Invoice.query.filter(
        Invoice.project_id == project.id, Invoice.status != INVOICE_CANCELLED,
    ).all()
    if not invoices or any(inv.status != INVOICE_PAID for inv in invoices):
        return None
    return _close_project(project, "all invoices already paid", actor,
                          now or datetime.now(timezone.utc))


def _close_project(project, reason, actor, now):
    project = compare_and_set_status(
        Project, project.id, PROJECT_DONE, PROJECT_CLOSED, closed_at=now,
    )
    record_activity(project.id, "STATUS_CHANGE", f"Project closed: {reason}", actor)
    logger.info("Project %s closed (%s)", project.id, reason,
                extra={"project_id": project.id, "transition": "DONE->CLOSED"})
    return project


# ── Invoice operations ───────────────────────────────────────────────────────


def update_invoice_items(invoice_id, items, actor, *, tax_rate=None):
    """Replace an invoice's lines and recompute its totals.

    Args:
        items: list of {description, quantity, unit_price, work_order_id?}.
        tax_rate: optional new percentage.
    """
    require_role(actor, *CONTRACTOR_SIDE, action="edit invoices")
    with transaction():
        invoice = get_invoice(invoice_id)
        if invoice.status not in (INVOICE_DRAFT, INVOICE_SENT):
            raise ConflictError(
                f"Cannot edit a {invoice.status} invoice",
                resource="Invoice", current_status=invoice.status,
            )
        new_items = []
        for idx, raw in enumerate(items or []):
            description = (raw.get("description") or "").strip()
            if not description:
                raise ValidationError(f"items[{idx}].description is required")
            try:
                quantity = float(raw.get("quantity", 1))
                unit_price = float(raw.get("unit_price", 0))
            except (TypeError, ValueError):
                raise ValidationError(f"items[{idx}] quantity and unit_price must be numbers")
            new_items.append(InvoiceItem(
                description=description,
                quantity=quantity,
                unit_price=unit_price,
                work_order_id=raw.get("work_order_id"),
            ))
        if tax_rate is not None:
            invoice.tax_rate = float(tax_rate)
        invoice.items = new_items
        recalculate_invoice_totals(invoice)
    return invoice


def send_invoice(invoice_id, actor, *, now=None):
    require_role(actor, *CONTRACTOR_SIDE, action="send invoices")
    now = now or datetime.now(timezone.utc)
    with transaction():
        invoice = get_invoice(invoice_id)
        if invoice.status != INVOICE_DRAFT:
            raise ConflictError(
                "Only DRAFT invoices can be sent",
                resource="Invoice", current_status=invoice.status,
            )
        invoice = set_invoice_status(invoice, INVOICE_SENT, actor, now=now)
        invoice.sent_at = now
    return invoice


def record_invoice_payment(invoice_id, amount, actor, *, now=None):
    """Register a received amount; the invoice becomes PARTIAL or PAID."""
    require_role(actor, *CONTRACTOR_SIDE, action="record payments")
    try:
        amount = float(amount)
    except (TypeError, ValueError):
        raise ValidationError("amount must be a number", details={"amount": "invalid"})
    if amount <= 0:
        raise ValidationError("amount must be positive", details={"amount": "not positive"})

    with transaction():
        invoice = get_invoice(invoice_id)
        if invoice.status in (INVOICE_PAID, INVOICE_CANCELLED):
            raise ConflictError(
                f"Invoice is already {invoice.status}",
                resource="Invoice", current_status=invoice.status,
            )
        invoice.amount_paid = round((invoice.amount_paid or 0) + amount, 2)
        target = INVOICE_PAID if invoice.amount_paid >= invoice.total else INVOICE_PARTIAL
        invoice = set_invoice_status(invoice, target, actor, now=now)
    return invoice


def mark_invoice_paid(invoice_id, actor, *, now=None):
    require_role(actor, *CONTRACTOR_SIDE, action="mark invoices paid")
    with transaction():
        invoice = get_invoice(invoice_id)
        if invoice.status == INVOICE_PAID:
            raise ConflictError("Invoice is already PAID", resource="Invoice",
                                current_status=invoice.status)
        invoice = set_invoice_status(invoice, INVOICE_PAID, actor, now=now)
        invoice.amount_paid = invoice.total
        invoice.payment_status = PAYMENT_PAID
    return invoice


# ── Contracts ────────────────────────────────────────────────────────────────


def sign_contract(contract_id, signature_url, actor, *, now=None):
    """Client signature on a DRAFT / PENDING_SIGNATURE contract."""
    require_role(actor, CLIENT, action="sign contracts")
    if not signature_url:
        raise ValidationError("signature_url is required", details={"signature_url": "required"})
    now = now or datetime.now(timezone.utc)

    with transaction():
        contract = compare_and_set_status(
            Contract, contract_id, [CONTRACT_DRAFT, CONTRACT_PENDING_SIGNATURE], CONTRACT_SIGNED,
            signed_at=now, signed_by_id=actor.user_id, signature_url=signature_url,
        )
        NotificationService.notify_many(
            NotificationService.contractor_user_ids(contract.branch_id),
            "CONTRACT_SIGNED",
            "Contract Signed",
            f'"{contract.title}" was signed by the client',
            related_id=contract.id, related_type="Contract",
        )
        if contract.project_id:
            record_activity(contract.project_id, "STATUS_CHANGE",
                            f'Contract "{contract.title}" signed', actor)
    return contract


def contract_work_blockers(contract):
    """Return (incomplete_ids, unpaid_ids) for the contract's project."""
    if contract.project_id is None:
        return [], []
    project = db.session.get(Project, contract.project_id)
    if project is None:
        return [], []
    work_orders = project.work_orders()
    incomplete = [wo.id for wo in work_orders if wo.stage != STAGE_COMPLETED]
    unpaid = [wo.id for wo in work_orders if not wo.is_paid]
    return incomplete, unpaid


def sign_contract_end(contract_id, signature_url, actor, *, now=None):
    """End-of-engagement signature; the contract becomes COMPLETED.

    Raises:
        ValidationError: no signature supplied.
        WorkIncompleteError: some work order is not COMPLETED.
        WorkUnpaidError: every work order is COMPLETED but some are not PAID.
        ConflictError: the contract is not SIGNED.
    """
    require_role(actor, CLIENT, CONTRACTOR, action="sign the end of a contract")
    if not signature_url:
        raise ValidationError("signature_url is required", details={"signature_url": "required"})
    now = now or datetime.now(timezone.utc)

    with transaction():
        contract = get_contract(contract_id)
        if contract.status != CONTRACT_SIGNED:
            raise ConflictError(
                "Contract must be SIGNED before its end signature",
                resource="Contract", current_status=contract.status,
            )
        incomplete, unpaid = contract_work_blockers(contract)
        if incomplete:
            raise WorkIncompleteError(incomplete)
        if unpaid:
            raise WorkUnpaidError(unpaid)

        contract = compare_and_set_status(
            Contract, contract.id, CONTRACT_SIGNED, CONTRACT_COMPLETED,
            end_signed_at=now, end_signed_by_id=actor.user_id, end_signature_url=signature_url,
        )
        if contract.project_id:
            record_activity(contract.project_id, "STATUS_CHANGE",
                            f'Contract "{contract.title}" end-signed', actor)

    logger.info("Contract %s end-signed", contract.id,
                extra={"contract_id": contract.id, "user_id": actor.user_id})
    return contract
