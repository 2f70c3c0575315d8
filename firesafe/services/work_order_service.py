"""
Work order stage machine and field edits.

Stage pipeline (forward only):
    REQUESTED → SCHEDULED → IN_PROGRESS → FOR_REVIEW → COMPLETED

Side effects on stage entry:
    FOR_REVIEW  notify the branch's client users
    COMPLETED   is_completed, project total recomputed, certificate issued

Every stage change writes one Activity.  The only backward move is the
explicit reschedule path (IN_PROGRESS → SCHEDULED with a new date).
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from firesafe.core.actor import CLIENT, CONTRACTOR_SIDE, SYSTEM, require_role
from firesafe.core.exceptions import ConflictError, NotFoundError, ValidationError
from firesafe.models import db
from firesafe.models.negotiation import Request
from firesafe.models.project import (
    PROJECT_ACTIVE,
    PROJECT_CANCELLED,
    PROJECT_CLOSED,
    PROJECT_DONE,
    RECURRING_ONCE,
    RECURRING_TYPES,
    STAGE_COMPLETED,
    STAGE_FOR_REVIEW,
    STAGE_IN_PROGRESS,
    STAGE_REQUESTED,
    STAGE_SCHEDULED,
    TYPE_ADHOC,
    TYPE_SCHEDULED,
    WORK_ORDER_ORIGINS,
    WORK_ORDER_STAGES,
    WORK_ORDER_TYPES,
    Checklist,
    Project,
    WorkOrder,
    stage_index,
)
from firesafe.services import certificate_service
from firesafe.services.activity_log import record_activity
from firesafe.services.notification import NotificationService
from firesafe.services.unit_of_work import compare_and_set_status, transaction
from firesafe.services.valuation import recalculate_project_total
from firesafe.utils.helpers import parse_date

logger = logging.getLogger(__name__)

# Project states in which work may progress
WORKABLE_PROJECT_STATUSES = {PROJECT_ACTIVE, PROJECT_DONE}

DEFAULT_CHECKLIST_TITLE = "Work Orders"


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_work_order(work_order_id):
    wo = db.session.get(WorkOrder, work_order_id)
    if wo is None:
        raise NotFoundError(resource="WorkOrder", resource_id=work_order_id)
    return wo


def get_project(project_id):
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def default_checklist(project, actor=None):
    """Return the project's first checklist, creating it when missing."""
    if project.checklists:
        return project.checklists[0]
    checklist = Checklist(
        project=project,
        branch_id=project.branch_id,
        title=DEFAULT_CHECKLIST_TITLE,
        created_by_id=actor.user_id if actor else None,
    )
    db.session.add(checklist)
    db.session.flush()
    return checklist


def next_order(checklist_id):
    current = (
        db.session.query(func.max(WorkOrder.order))
        .filter(WorkOrder.checklist_id == checklist_id)
        .scalar()
    )
    return 0 if current is None else current + 1


def sync_checklist_status(checklist):
    checklist.status = checklist._compute_status()
    return checklist.status


# ── Stage machine ────────────────────────────────────────────────────────────


def transition_work_order(work_order_id, new_stage, actor, *, now=None):
    """Advance a work order to ``new_stage``.

    Args:
        work_order_id: WorkOrder PK.
        new_stage: Target stage (must be later in the pipeline).
        actor: Contractor-side user or the system actor (reconciler).
        now: Clock override.

    Returns:
        The updated WorkOrder.

    Raises:
        ValidationError: unknown stage value.
        ConflictError: backward move, ad-hoc item not yet approved, project
            not in a workable state, or a concurrent transition won.
    """
    require_role(actor, *CONTRACTOR_SIDE, SYSTEM, action="change work order stages")
    if new_stage not in WORK_ORDER_STAGES:
        raise ValidationError(
            f"Invalid stage: {new_stage}",
            details={"stage": f"must be one of {WORK_ORDER_STAGES}"},
        )
    now = now or datetime.now(timezone.utc)

    with transaction():
        wo = get_work_order(work_order_id)
        old_stage = wo.stage

        if new_stage == old_stage:
            # Replayed completion re-runs the idempotent certificate issue only
            if new_stage == STAGE_COMPLETED:
                certificate_service.issue_for_work_order(wo, now=now)
            return wo

        if stage_index(new_stage) < stage_index(old_stage):
            raise ConflictError(
                f"Cannot move work order back from {old_stage} to {new_stage}",
                resource="WorkOrder", current_status=old_stage,
            )
        if wo.type == TYPE_ADHOC and old_stage == STAGE_REQUESTED:
            raise ConflictError(
                "Ad-hoc work order must be approved before it can be scheduled",
                resource="WorkOrder", current_status=old_stage,
            )
        project = wo.project
        if project.status not in WORKABLE_PROJECT_STATUSES:
            raise ConflictError(
                f"Project is {project.status}; work orders cannot progress",
                resource="Project", current_status=project.status,
            )

        values = {}
        if new_stage == STAGE_COMPLETED:
            values = {"is_completed": True, "completed_at": now}
        wo = compare_and_set_status(
            WorkOrder, wo.id, old_stage, new_stage, field="stage", **values,
        )
        _on_stage_entered(wo, project, actor, now)
        sync_checklist_status(wo.checklist)
        record_activity(
            project.id, "STATUS_CHANGE",
            f'Work order "{wo.description}" moved from {old_stage} to {new_stage}',
            actor,
        )

    logger.info("Work order %s: %s → %s", wo.id, old_stage, new_stage,
                extra={"work_order_id": wo.id, "project_id": wo.project.id,
                       "transition": f"{old_stage}->{new_stage}", "role": actor.role})
    return wo


def _on_stage_entered(wo, project, actor, now):
    if wo.stage == STAGE_FOR_REVIEW:
        NotificationService.notify_many(
            NotificationService.client_user_ids(project.branch_id),
            "WORK_ORDER_FOR_REVIEW",
            "Work Order Ready for Review",
            f'"{wo.description}" is ready for your review',
            f"/portal/branches/{project.branch_id}?tab=checklist",
            related_id=wo.id, related_type="ChecklistItem",
        )
    elif wo.stage == STAGE_COMPLETED:
        recalculate_project_total(project)
        certificate_service.issue_for_work_order(wo, now=now)


# ── Create / edit ────────────────────────────────────────────────────────────


def add_work_order(project_id, data, actor):
    """Add a single work order to the project's default checklist.

    Clients raise ad-hoc requests; contractor-side users add template items
    unless they say otherwise.  New items always start REQUESTED.
    """
    description = (data.get("description") or "").strip()
    if not description:
        raise ValidationError("description is required", details={"description": "required"})

    wo_origin = data.get("type") or (TYPE_ADHOC if actor.role == CLIENT else TYPE_SCHEDULED)
    if wo_origin not in WORK_ORDER_ORIGINS:
        raise ValidationError(f"Invalid type: {wo_origin}")
    if actor.role == CLIENT and wo_origin != TYPE_ADHOC:
        raise ValidationError("Clients can only request ad-hoc work orders")

    recurring_type = data.get("recurring_type") or RECURRING_ONCE
    if recurring_type not in RECURRING_TYPES:
        raise ValidationError(f"Invalid recurring_type: {recurring_type}")
    work_order_type = data.get("work_order_type")
    if work_order_type and work_order_type not in WORK_ORDER_TYPES:
        raise ValidationError(f"Invalid work_order_type: {work_order_type}")

    price = _parse_price(data.get("price"))

    with transaction():
        project = get_project(project_id)
        if project.status in (PROJECT_CLOSED, PROJECT_CANCELLED):
            raise ConflictError(
                f"Cannot add work orders to a {project.status} project",
                resource="Project", current_status=project.status,
            )
        linked_request_id = data.get("linked_request_id")
        if linked_request_id is not None:
            req = db.session.get(Request, linked_request_id)
            if req is None or req.branch_id != project.branch_id:
                raise ValidationError("linked_request_id does not belong to this branch",
                                      details={"linked_request_id": linked_request_id})
        checklist = default_checklist(project, actor)
        wo = WorkOrder(
            checklist_id=checklist.id,
            description=description,
            notes=data.get("notes"),
            price=price,
            scheduled_date=parse_date(data.get("scheduled_date")),
            stage=STAGE_REQUESTED,
            type=wo_origin,
            work_order_type=work_order_type,
            recurring_type=recurring_type,
            order=next_order(checklist.id),
            linked_request_id=linked_request_id,
        )
        db.session.add(wo)
        db.session.flush()
        if price is not None:
            recalculate_project_total(project)
        record_activity(project.id, "CREATED", f'Work order "{description}" added ({wo_origin})', actor)

    logger.info("Work order %s added to project %s", wo.id, project_id,
                extra={"work_order_id": wo.id, "project_id": project_id})
    return wo


def update_work_order(work_order_id, data, actor):
    """Edit description / notes / date / price.

    A price change recomputes the project total and is logged; the price of
    a PAID work order is frozen.
    """
    require_role(actor, *CONTRACTOR_SIDE, action="edit work orders")
    with transaction():
        wo = get_work_order(work_order_id)
        project = wo.project

        if "description" in data:
            description = (data.get("description") or "").strip()
            if not description:
                raise ValidationError("description cannot be empty")
            wo.description = description
        if "notes" in data:
            wo.notes = data.get("notes")
        if "scheduled_date" in data:
            wo.scheduled_date = parse_date(data.get("scheduled_date"))

        if "price" in data:
            new_price = _parse_price(data.get("price"))
            if new_price != wo.price:
                if wo.is_paid:
                    raise ConflictError(
                        "Price cannot change once the work order is paid",
                        resource="WorkOrder", current_status=wo.payment_status,
                    )
                old_price = wo.price
                wo.price = new_price
                recalculate_project_total(project)
                record_activity(
                    project.id, "UPDATED",
                    f'Price of "{wo.description}" changed from {old_price} to {new_price}',
                    actor,
                )
    return wo


def reschedule_work_order(work_order_id, scheduled_date, actor):
    """Move a work order to a new date.

    An IN_PROGRESS item goes back to SCHEDULED; COMPLETED or FOR_REVIEW
    items cannot be rescheduled.
    """
    require_role(actor, *CONTRACTOR_SIDE, action="reschedule work orders")
    new_date = parse_date(scheduled_date)
    if new_date is None:
        raise ValidationError("scheduled_date is required", details={"scheduled_date": "required"})

    with transaction():
        wo = get_work_order(work_order_id)
        if wo.stage in (STAGE_FOR_REVIEW, STAGE_COMPLETED):
            raise ConflictError(
                f"Cannot reschedule a work order in {wo.stage}",
                resource="WorkOrder", current_status=wo.stage,
            )
        old_date = wo.scheduled_date
        wo.scheduled_date = new_date
        if wo.stage == STAGE_IN_PROGRESS:
            wo.stage = STAGE_SCHEDULED
        record_activity(
            wo.project.id, "UPDATED",
            f'Work order "{wo.description}" rescheduled from {old_date} to {new_date}',
            actor,
        )
    return wo


def _parse_price(value):
    if value is None or value == "":
        return None
    try:
        price = float(value)
    except (TypeError, ValueError):
        raise ValidationError("price must be a number", details={"price": "invalid"})
    if price < 0:
        raise ValidationError("price cannot be negative", details={"price": "negative"})
    return price
