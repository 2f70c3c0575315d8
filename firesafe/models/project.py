"""
Fire-safety contract management
Project lifecycle domain models.

Models:
    - Project:    one service engagement at one branch (site)
    - Checklist:  named grouping of work orders under a project
    - WorkOrder:  schedulable, billable unit of work (table ``checklist_items``)
    - Activity:   append-only audit entry written by every transition

Architecture:
    Branch ──1:N──▶ Project ──1:N──▶ Checklist ──1:N──▶ WorkOrder
    Project ──1:N──▶ Activity
    Project ◀──── Contract / Invoice / Certificate  (weak FK, SET NULL)

Lifecycle states:
    Project:    PENDING → ACTIVE → DONE → CLOSED  |  PENDING/ACTIVE → CANCELLED
    Checklist:  DRAFT → IN_PROGRESS → COMPLETED   (mirrors item progress)
    WorkOrder:  REQUESTED → SCHEDULED → IN_PROGRESS → FOR_REVIEW → COMPLETED
"""

from datetime import datetime, timezone

from sqlalchemy import event

from firesafe.models import db
from firesafe.models.base import PaymentTrackedModel


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_PENDING = "PENDING"
PROJECT_ACTIVE = "ACTIVE"
PROJECT_DONE = "DONE"
PROJECT_CLOSED = "CLOSED"
PROJECT_CANCELLED = "CANCELLED"

PROJECT_STATUSES = {
    PROJECT_PENDING, PROJECT_ACTIVE, PROJECT_DONE, PROJECT_CLOSED, PROJECT_CANCELLED,
}

PROJECT_PRIORITIES = {"LOW", "MEDIUM", "HIGH", "URGENT"}

CHECKLIST_DRAFT = "DRAFT"
CHECKLIST_IN_PROGRESS = "IN_PROGRESS"
CHECKLIST_COMPLETED = "COMPLETED"

STAGE_REQUESTED = "REQUESTED"
STAGE_SCHEDULED = "SCHEDULED"
STAGE_IN_PROGRESS = "IN_PROGRESS"
STAGE_FOR_REVIEW = "FOR_REVIEW"
STAGE_COMPLETED = "COMPLETED"

# Pipeline order; normal flow only moves right
WORK_ORDER_STAGES = [
    STAGE_REQUESTED,
    STAGE_SCHEDULED,
    STAGE_IN_PROGRESS,
    STAGE_FOR_REVIEW,
    STAGE_COMPLETED,
]

TYPE_SCHEDULED = "SCHEDULED"
TYPE_ADHOC = "ADHOC"
WORK_ORDER_ORIGINS = {TYPE_SCHEDULED, TYPE_ADHOC}

RECURRING_ONCE = "ONCE"
RECURRING_MONTHLY = "MONTHLY"
RECURRING_QUARTERLY = "QUARTERLY"
RECURRING_TYPES = {RECURRING_ONCE, RECURRING_MONTHLY, RECURRING_QUARTERLY}

WORK_ORDER_TYPES = {
    "INSPECTION", "MAINTENANCE", "INSTALLATION", "REPAIR", "STICKER_INSPECTION", "OTHER",
}

ACTIVITY_TYPES = {"CREATED", "UPDATED", "STATUS_CHANGE", "APPROVED", "PAYMENT", "COMMENT"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

def stage_index(stage):
    """Position of a stage in the pipeline, or -1 for unknown values."""
    try:
        return WORK_ORDER_STAGES.index(stage)
    except ValueError:
        return -1


# ═════════════════════════════════════════════════════════════════════════════
# Project
# ═════════════════════════════════════════════════════════════════════════════


class Project(db.Model):
    """
    One service engagement at one branch.

    total_value is a cached derived value: always written through
    ``firesafe.services.valuation.recalculate_project_total``.
    """

    __tablename__ = "projects"
    __table_args__ = (
        # One ACTIVE project per branch, enforced by the store as well as the services
        db.Index(
            "uq_projects_one_active_per_branch",
            "branch_id",
            unique=True,
            sqlite_where=db.text("status = 'ACTIVE'"),
            postgresql_where=db.text("status = 'ACTIVE'"),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(10), default="MEDIUM")
    status = db.Column(db.String(20), nullable=False, default=PROJECT_PENDING, index=True)

    total_value = db.Column(db.Float, nullable=False, default=0.0)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    auto_renew = db.Column(db.Boolean, default=False)

    renewed_from_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True,
        comment="Template project this one was cloned from",
    )

    created_by_id = db.Column(db.Integer, nullable=True)
    created_by_role = db.Column(db.String(20), nullable=True)

    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    branch = db.relationship("Branch")
    checklists = db.relationship(
        "Checklist", back_populates="project", cascade="all, delete-orphan",
        order_by="Checklist.id",
    )
    activities = db.relationship(
        "Activity", back_populates="project", lazy="dynamic", order_by="Activity.id",
        passive_deletes=True,
    )

    def work_orders(self):
        """All work orders under this project's checklists, in display order."""
        return [item for checklist in self.checklists for item in checklist.items]

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "branch_id": self.branch_id,
            "title": self.title,
            "description": self.description,
            "priority": self.priority,
            "status": self.status,
            "total_value": self.total_value,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "auto_renew": self.auto_renew,
            "renewed_from_id": self.renewed_from_id,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "closed_at": self.closed_at.isoformat() if self.closed_at else None,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_children:
            d["checklists"] = [c.to_dict(include_children=True) for c in self.checklists]
        return d

    def __repr__(self):
        return f"<Project {self.id}: {self.title[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Checklist
# ═════════════════════════════════════════════════════════════════════════════


class Checklist(db.Model):
    __tablename__ = "checklists"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    branch_id = db.Column(
        db.Integer, db.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=CHECKLIST_DRAFT)
    created_by_id = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project", back_populates="checklists")
    items = db.relationship(
        "WorkOrder", back_populates="checklist", cascade="all, delete-orphan",
        order_by="WorkOrder.order",
    )

    def _compute_status(self):
        """Derive checklist status from its items' stages."""
        if not self.items:
            return self.status
        if all(i.stage == STAGE_COMPLETED for i in self.items):
            return CHECKLIST_COMPLETED
        if any(i.stage != STAGE_REQUESTED for i in self.items):
            return CHECKLIST_IN_PROGRESS
        return self.status

    def to_dict(self, include_children=False):
        d = {
            "id": self.id,
            "project_id": self.project_id,
            "branch_id": self.branch_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "item_count": len(self.items),
        }
        if include_children:
            d["items"] = [i.to_dict() for i in self.items]
        return d

    def __repr__(self):
        return f"<Checklist {self.id}: {self.title[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# WorkOrder
# ═════════════════════════════════════════════════════════════════════════════


class WorkOrder(PaymentTrackedModel):
    """
    Schedulable, billable unit of service work.

    Business rules:
    - stage only moves forward, except through the explicit reschedule path.
    - price is immutable once payment_status = PAID.
    - ADHOC items stay REQUESTED until the contractor approves them.
    """

    __tablename__ = "checklist_items"

    id = db.Column(db.Integer, primary_key=True)
    checklist_id = db.Column(
        db.Integer, db.ForeignKey("checklists.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    description = db.Column(db.String(500), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    price = db.Column(db.Float, nullable=True)
    scheduled_date = db.Column(db.Date, nullable=True, index=True)

    stage = db.Column(db.String(20), nullable=False, default=STAGE_REQUESTED, index=True)
    type = db.Column(db.String(20), nullable=False, default=TYPE_SCHEDULED, comment="SCHEDULED | ADHOC")
    work_order_type = db.Column(db.String(30), nullable=True, comment="INSPECTION | MAINTENANCE | ...")
    recurring_type = db.Column(db.String(20), nullable=False, default=RECURRING_ONCE)
    occurrence_index = db.Column(db.Integer, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)

    is_completed = db.Column(db.Boolean, default=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    linked_request_id = db.Column(
        db.Integer, db.ForeignKey("requests.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    checklist = db.relationship("Checklist", back_populates="items")
    linked_request = db.relationship("Request")

    @property
    def project(self):
        return self.checklist.project if self.checklist else None

    def to_dict(self):
        d = {
            "id": self.id,
            "checklist_id": self.checklist_id,
            "checklist_title": self.checklist.title if self.checklist else None,
            "project_id": self.checklist.project_id if self.checklist else None,
            "description": self.description,
            "notes": self.notes,
            "price": self.price,
            "scheduled_date": self.scheduled_date.isoformat() if self.scheduled_date else None,
            "stage": self.stage,
            "type": self.type,
            "work_order_type": self.work_order_type,
            "recurring_type": self.recurring_type,
            "occurrence_index": self.occurrence_index,
            "order": self.order,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "linked_request_id": self.linked_request_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        d.update(self.payment_dict())
        return d

    def __repr__(self):
        return f"<WorkOrder {self.id}: {self.description[:40]} [{self.stage}]>"


# ═════════════════════════════════════════════════════════════════════════════
# Activity
# ═════════════════════════════════════════════════════════════════════════════


class Activity(db.Model):
    """
    Audit entry attached to a project.

    Records are NEVER updated or deleted; the listeners below refuse both.
    """

    __tablename__ = "activities"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(20), nullable=False, comment="CREATED | UPDATED | STATUS_CHANGE | APPROVED | ...")
    content = db.Column(db.Text, nullable=False)
    created_by_id = db.Column(db.Integer, nullable=True)
    created_by_role = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))

    project = db.relationship("Project", back_populates="activities")

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "type": self.type,
            "content": self.content,
            "created_by_id": self.created_by_id,
            "created_by_role": self.created_by_role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Activity #{self.id} project={self.project_id} {self.type}>"


@event.listens_for(Activity, "before_update")
def _refuse_activity_update(mapper, connection, target):
    raise RuntimeError(f"Activity #{target.id} is append-only")


@event.listens_for(Activity, "before_delete")
def _refuse_activity_delete(mapper, connection, target):
    raise RuntimeError(f"Activity #{target.id} is append-only")
