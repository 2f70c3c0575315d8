"""
Compliance certificate issued for a completed work order.

At most one certificate exists per work order (unique ``work_order_id``).
``file_url`` stays empty at issuance; the document is attached later by the
upload flow.
"""

from datetime import datetime, timezone

from firesafe.models import db


CERT_PREVENTIVE_MAINTENANCE = "PREVENTIVE_MAINTENANCE"
CERT_COMPLETION = "COMPLETION"
CERT_COMPLIANCE = "COMPLIANCE"
CERT_INSPECTION = "INSPECTION"
CERT_CIVIL_DEFENSE = "CIVIL_DEFENSE"
CERT_OTHER = "OTHER"

CERTIFICATE_TYPES = {
    CERT_PREVENTIVE_MAINTENANCE, CERT_COMPLETION, CERT_COMPLIANCE,
    CERT_INSPECTION, CERT_CIVIL_DEFENSE, CERT_OTHER,
}


class Certificate(db.Model):
    __tablename__ = "certificates"

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    work_order_id = db.Column(
        db.Integer, db.ForeignKey("checklist_items.id", ondelete="SET NULL"),
        nullable=True, unique=True,
    )
    type = db.Column(db.String(30), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    issue_date = db.Column(db.Date, nullable=False)
    expiry_date = db.Column(db.Date, nullable=True)
    file_url = db.Column(db.Text, nullable=False, default="")
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "project_id": self.project_id,
            "work_order_id": self.work_order_id,
            "type": self.type,
            "title": self.title,
            "issue_date": self.issue_date.isoformat() if self.issue_date else None,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "file_url": self.file_url,
        }

    def __repr__(self):
        return f"<Certificate {self.id}: {self.type} work_order={self.work_order_id}>"
