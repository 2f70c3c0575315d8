"""
Fire-safety contract management
Upstream negotiation models.

Models:
    - Request:    a client (or renewal) request for service at a branch
    - Quotation:  the contractor's priced answer to a request

Both are consumed by project approval: pending quotations become APPROVED and
open requests become COMPLETED in the same transaction.
"""

from datetime import datetime, timezone

from firesafe.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REQUEST_OPEN = "OPEN"
REQUEST_IN_PROGRESS = "IN_PROGRESS"
REQUEST_COMPLETED = "COMPLETED"
REQUEST_CANCELLED = "CANCELLED"

REQUEST_STATUSES = {REQUEST_OPEN, REQUEST_IN_PROGRESS, REQUEST_COMPLETED, REQUEST_CANCELLED}

QUOTATION_DRAFT = "DRAFT"
QUOTATION_SENT = "SENT"
QUOTATION_APPROVED = "APPROVED"
QUOTATION_REJECTED = "REJECTED"

QUOTATION_STATUSES = {QUOTATION_DRAFT, QUOTATION_SENT, QUOTATION_APPROVED, QUOTATION_REJECTED}

# Quotations still waiting on the client
PENDING_QUOTATION_STATUSES = [QUOTATION_DRAFT, QUOTATION_SENT]


class Request(db.Model):
    __tablename__ = "requests"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=REQUEST_OPEN, index=True)
    priority = db.Column(db.String(10), default="MEDIUM")
    work_order_type = db.Column(db.String(30), nullable=True)
    needs_certificate = db.Column(db.Boolean, default=False)
    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    quotations = db.relationship("Quotation", back_populates="request", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "work_order_type": self.work_order_type,
            "needs_certificate": self.needs_certificate,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Request {self.id}: {self.title[:40]} [{self.status}]>"


class Quotation(db.Model):
    __tablename__ = "quotations"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    request_id = db.Column(
        db.Integer, db.ForeignKey("requests.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(20), nullable=False, default=QUOTATION_DRAFT, index=True)
    total = db.Column(db.Float, nullable=False, default=0.0)
    valid_until = db.Column(db.Date, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    request = db.relationship("Request", back_populates="quotations")

    def to_dict(self):
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "request_id": self.request_id,
            "project_id": self.project_id,
            "title": self.title,
            "status": self.status,
            "total": self.total,
            "valid_until": self.valid_until.isoformat() if self.valid_until else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
        }

    def __repr__(self):
        return f"<Quotation {self.id}: {self.title[:40]} [{self.status}]>"
