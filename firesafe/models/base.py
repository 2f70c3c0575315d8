"""
PaymentTrackedModel: abstract base for rows that carry a two-phase payment.

Work orders and invoices are both paid by the client submitting proof and the
contractor verifying it. Inheriting from PaymentTrackedModel instead of
db.Model adds the shared columns:
  - payment_status (UNPAID → PENDING_VERIFICATION → PAID)
  - proof reference, type and file name
  - submitter / verifier stamps and the verifier's signature reference
"""

from firesafe.models import db

PAYMENT_UNPAID = "UNPAID"
PAYMENT_PENDING_VERIFICATION = "PENDING_VERIFICATION"
PAYMENT_PAID = "PAID"

PAYMENT_STATUSES = {PAYMENT_UNPAID, PAYMENT_PENDING_VERIFICATION, PAYMENT_PAID}
PROOF_TYPES = {"file", "link"}


class PaymentTrackedModel(db.Model):
    """Abstract base for payable tables."""
    __abstract__ = True

    payment_status = db.Column(db.String(30), nullable=False, default=PAYMENT_UNPAID)
    payment_proof_url = db.Column(db.Text, nullable=True, comment="Opaque reference: data URL, storage key or link")
    payment_proof_type = db.Column(db.String(10), nullable=True, comment="file | link")
    payment_proof_file_name = db.Column(db.String(255), nullable=True)
    payment_submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_submitted_by_id = db.Column(db.Integer, nullable=True)
    payment_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_verified_by_id = db.Column(db.Integer, nullable=True)
    payment_signature_url = db.Column(db.Text, nullable=True)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PAYMENT_PAID

    def payment_dict(self) -> dict:
        return {
            "payment_status": self.payment_status,
            "payment_proof_url": self.payment_proof_url,
            "payment_proof_type": self.payment_proof_type,
            "payment_proof_file_name": self.payment_proof_file_name,
            "payment_submitted_at": self.payment_submitted_at.isoformat() if self.payment_submitted_at else None,
            "payment_submitted_by_id": self.payment_submitted_by_id,
            "payment_verified_at": self.payment_verified_at.isoformat() if self.payment_verified_at else None,
            "payment_verified_by_id": self.payment_verified_by_id,
        }
