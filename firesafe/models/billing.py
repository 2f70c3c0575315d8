"""
Fire-safety contract management
Billing domain models.

Models:
    - Contract:     legal record of a signed engagement
    - Invoice:      billing record with recomputed subtotal / tax / total
    - InvoiceItem:  one billed line, usually one work order

Both Contract and Invoice reference their Project weakly: deleting a project
nulls ``project_id`` instead of cascading.

Lifecycle states:
    Contract:  DRAFT → PENDING_SIGNATURE → SIGNED → COMPLETED  (| EXPIRED | TERMINATED)
    Invoice:   DRAFT → SENT → PAYMENT_PENDING → PAID | PARTIAL  (| CANCELLED)
"""

from datetime import datetime, timezone

from firesafe.models import db
from firesafe.models.base import PaymentTrackedModel


# ── Constants ────────────────────────────────────────────────────────────────

CONTRACT_DRAFT = "DRAFT"
CONTRACT_PENDING_SIGNATURE = "PENDING_SIGNATURE"
CONTRACT_SIGNED = "SIGNED"
CONTRACT_COMPLETED = "COMPLETED"
CONTRACT_EXPIRED = "EXPIRED"
CONTRACT_TERMINATED = "TERMINATED"

CONTRACT_STATUSES = {
    CONTRACT_DRAFT, CONTRACT_PENDING_SIGNATURE, CONTRACT_SIGNED,
    CONTRACT_COMPLETED, CONTRACT_EXPIRED, CONTRACT_TERMINATED,
}

INVOICE_DRAFT = "DRAFT"
INVOICE_SENT = "SENT"
INVOICE_PAYMENT_PENDING = "PAYMENT_PENDING"
INVOICE_PAID = "PAID"
INVOICE_PARTIAL = "PARTIAL"
INVOICE_CANCELLED = "CANCELLED"

INVOICE_STATUSES = {
    INVOICE_DRAFT, INVOICE_SENT, INVOICE_PAYMENT_PENDING,
    INVOICE_PAID, INVOICE_PARTIAL, INVOICE_CANCELLED,
}

# Invoices that can still absorb new lines (ad-hoc approval)
OPEN_INVOICE_STATUSES = [INVOICE_DRAFT, INVOICE_SENT]


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

INVOICE_TRANSITIONS = {
    INVOICE_DRAFT:           [INVOICE_SENT, INVOICE_PAID, INVOICE_PARTIAL, INVOICE_CANCELLED],
    INVOICE_SENT:            [INVOICE_PAYMENT_PENDING, INVOICE_PAID, INVOICE_PARTIAL, INVOICE_CANCELLED],
    INVOICE_PAYMENT_PENDING: [INVOICE_PAID, INVOICE_PARTIAL, INVOICE_SENT],
    INVOICE_PARTIAL:         [INVOICE_PAYMENT_PENDING, INVOICE_PAID],
    INVOICE_PAID:            [],
    INVOICE_CANCELLED:       [],
}


def validate_invoice_transition(old_status, new_status):
    return new_status in INVOICE_TRANSITIONS.get(old_status, [])


# ═════════════════════════════════════════════════════════════════════════════
# Contract
# ═════════════════════════════════════════════════════════════════════════════


class Contract(db.Model):
    """
    Signed engagement.

    total_value is a snapshot taken at approval and re-synced to the project
    total whenever an ad-hoc work order is approved into it.
    """

    __tablename__ = "contracts"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=CONTRACT_DRAFT, index=True)
    total_value = db.Column(db.Float, nullable=False, default=0.0)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True, index=True)

    # Opening signature
    signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    signed_by_id = db.Column(db.Integer, nullable=True)
    signature_url = db.Column(db.Text, nullable=True)

    # End-of-engagement signature
    end_signed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    end_signed_by_id = db.Column(db.Integer, nullable=True)
    end_signature_url = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project")
    branch = db.relationship("Branch")

    def to_dict(self):
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "project_id": self.project_id,
            "title": self.title,
            "status": self.status,
            "total_value": self.total_value,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "signed_at": self.signed_at.isoformat() if self.signed_at else None,
            "signed_by_id": self.signed_by_id,
            "end_signed_at": self.end_signed_at.isoformat() if self.end_signed_at else None,
            "end_signed_by_id": self.end_signed_by_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Contract {self.id}: {self.title[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Invoice
# ═════════════════════════════════════════════════════════════════════════════


class Invoice(PaymentTrackedModel):
    """
    Billing record for a project.

    subtotal / tax_amount / total are derived from the items and written only
    by ``firesafe.services.valuation.recalculate_invoice_totals``.
    tax_rate is a percentage (18.0 means 18 %).
    """

    __tablename__ = "invoices"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    invoice_number = db.Column(db.String(40), nullable=False, unique=True)
    status = db.Column(db.String(20), nullable=False, default=INVOICE_DRAFT, index=True)

    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    tax_rate = db.Column(db.Float, nullable=False, default=0.0)
    tax_amount = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False, default=0.0)
    amount_paid = db.Column(db.Float, nullable=False, default=0.0)

    due_date = db.Column(db.Date, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project")
    items = db.relationship(
        "InvoiceItem", back_populates="invoice", cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    def to_dict(self, include_items=True):
        d = {
            "id": self.id,
            "branch_id": self.branch_id,
            "project_id": self.project_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "subtotal": self.subtotal,
            "tax_rate": self.tax_rate,
            "tax_amount": self.tax_amount,
            "total": self.total,
            "amount_paid": self.amount_paid,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        d.update(self.payment_dict())
        if include_items:
            d["items"] = [i.to_dict() for i in self.items]
        return d

    def __repr__(self):
        return f"<Invoice {self.id}: {self.invoice_number} [{self.status}] total={self.total}>"


class InvoiceItem(db.Model):
    __tablename__ = "invoice_items"

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(
        db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("checklist_items.id", ondelete="SET NULL"), nullable=True,
    )
    description = db.Column(db.String(500), nullable=False)
    quantity = db.Column(db.Float, nullable=False, default=1.0)
    unit_price = db.Column(db.Float, nullable=False, default=0.0)
    total = db.Column(db.Float, nullable=False, default=0.0)

    invoice = db.relationship("Invoice", back_populates="items")

    def to_dict(self):
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "work_order_id": self.work_order_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "total": self.total,
        }

    def __repr__(self):
        return f"<InvoiceItem {self.id}: {self.description[:40]} = {self.total}>"
