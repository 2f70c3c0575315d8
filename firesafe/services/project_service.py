"""
Project lifecycle orchestrator.

    PENDING ──approve──▶ ACTIVE ──complete──▶ DONE ──(invoice PAID)──▶ CLOSED
       └────────cancel────────┘

Each public function is one atomic unit of work.  Status preconditions are
checked with a guarded UPDATE inside the same transaction, so of two
concurrent approvals exactly one creates the Contract / Invoice pair and the
other gets ConflictError.

At most one ACTIVE project exists per branch: creation, cloning and
approval check it, and a partial unique index backs the check in the store.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app

from firesafe.core.actor import CLIENT, CONTRACTOR_SIDE, require_role
from firesafe.core.exceptions import ConflictError, NotFoundError, ValidationError
from firesafe.models import db
from firesafe.models.billing import (
    CONTRACT_SIGNED,
    INVOICE_SENT,
    OPEN_INVOICE_STATUSES,
    Contract,
    Invoice,
    InvoiceItem,
)
from firesafe.models.negotiation import (
    PENDING_QUOTATION_STATUSES,
    QUOTATION_APPROVED,
    QUOTATION_REJECTED,
    REQUEST_CANCELLED,
    REQUEST_COMPLETED,
    REQUEST_OPEN,
    Quotation,
    Request,
)
from firesafe.models.party import Branch
from firesafe.models.project import (
    CHECKLIST_DRAFT,
    CHECKLIST_IN_PROGRESS,
    PROJECT_ACTIVE,
    PROJECT_CANCELLED,
    PROJECT_DONE,
    PROJECT_PENDING,
    PROJECT_PRIORITIES,
    STAGE_REQUESTED,
    STAGE_SCHEDULED,
    TYPE_ADHOC,
    TYPE_SCHEDULED,
    Checklist,
    Project,
    WorkOrder,
)
from firesafe.services import billing_service
from firesafe.services.activity_log import record_activity
from firesafe.services.notification import NotificationService
from firesafe.services.recurrence import WorkOrderTemplate, expand_templates
from firesafe.services.unit_of_work import compare_and_set_status, transaction
from firesafe.services.valuation import recalculate_invoice_totals, recalculate_project_total
from firesafe.services.work_order_service import (
    default_checklist,
    get_project,
    get_work_order,
    next_order,
    sync_checklist_status,
)
from firesafe.utils.helpers import parse_date

logger = logging.getLogger(__name__)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _ensure_no_active_project(branch_id, *, exclude_id=None):
    q = Project.query.filter_by(branch_id=branch_id, status=PROJECT_ACTIVE)
    if exclude_id is not None:
        q = q.filter(Project.id != exclude_id)
    active = q.first()
    if active is not None:
        raise ConflictError(
            f"Branch {branch_id} already has an active project (#{active.id})",
            resource="Project", current_status=PROJECT_ACTIVE,
        )


def _validate_window(start_date, end_date):
    if start_date and end_date and end_date < start_date:
        raise ValidationError(
            "end_date cannot be before start_date",
            details={"end_date": "before start_date"},
        )


def _templates_from_payload(raw_templates):
    templates = []
    for idx, raw in enumerate(raw_templates or []):
        description = (raw.get("description") or "").strip()
        if not description:
            raise ValidationError(f"templates[{idx}].description is required")
        price = raw.get("price")
        try:
            price = float(price) if price not in (None, "") else None
        except (TypeError, ValueError):
            raise ValidationError(f"templates[{idx}].price must be a number")
        templates.append(WorkOrderTemplate(
            description=description,
            price=price,
            scheduled_date=parse_date(raw.get("scheduled_date")),
            recurring_type=raw.get("recurring_type") or "ONCE",
            work_order_type=raw.get("work_order_type"),
        ))
    return templates


def _add_drafts(checklist, drafts, linked_request_id=None):
    first = next_order(checklist.id)
    for draft in drafts:
        db.session.add(WorkOrder(
            checklist_id=checklist.id,
            description=draft.description,
            price=draft.price,
            scheduled_date=draft.scheduled_date,
            stage=STAGE_REQUESTED,
            type=TYPE_SCHEDULED,
            work_order_type=draft.work_order_type,
            recurring_type=draft.recurring_type,
            occurrence_index=draft.occurrence_index,
            order=first + draft.order,
            linked_request_id=linked_request_id,
        ))
    db.session.flush()


# ── Queries ──────────────────────────────────────────────────────────────────


def get_project_detail(project_id):
    project = get_project(project_id)
    d = project.to_dict(include_children=True)
    d["contracts"] = [c.to_dict() for c in Contract.query.filter_by(project_id=project.id)]
    d["invoices"] = [i.to_dict(include_items=False) for i in Invoice.query.filter_by(project_id=project.id)]
    return d


def list_work_orders(project_id, stage=None):
    project = get_project(project_id)
    items = project.work_orders()
    if stage:
        items = [wo for wo in items if wo.stage == stage]
    return items


# ── Create ───────────────────────────────────────────────────────────────────


def create_project(branch_id, data, actor):
    """Propose a new PENDING project at a branch.

    Args:
        data: title, description, priority, start_date, end_date, auto_renew,
            request_id, templates (list of work-order templates to expand).

    Raises:
        ConflictError: the branch already has an ACTIVE project.
    """
    require_role(actor, *CONTRACTOR_SIDE, action="create projects")
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})
    priority = data.get("priority") or "MEDIUM"
    if priority not in PROJECT_PRIORITIES:
        raise ValidationError(f"Invalid priority: {priority}")
    start_date = parse_date(data.get("start_date"))
    end_date = parse_date(data.get("end_date"))
    _validate_window(start_date, end_date)
    templates = _templates_from_payload(data.get("templates"))

    with transaction():
        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise NotFoundError(resource="Branch", resource_id=branch_id)
        _ensure_no_active_project(branch_id)

        project = Project(
            branch_id=branch_id,
            title=title,
            description=data.get("description"),
            priority=priority,
            status=PROJECT_PENDING,
            start_date=start_date,
            end_date=end_date,
            auto_renew=bool(data.get("auto_renew", False)),
            created_by_id=actor.user_id,
            created_by_role=actor.role,
        )
        db.session.add(project)
        db.session.flush()

        request_id = data.get("request_id")
        if request_id is not None:
            req = db.session.get(Request, request_id)
            if req is None or req.branch_id != branch_id:
                raise ValidationError("request_id does not belong to this branch",
                                      details={"request_id": request_id})
            req.project_id = project.id

        if templates:
            base_date = start_date or datetime.now(timezone.utc).date()
            try:
                drafts = expand_templates(
                    templates, base_date, end_date,
                    window_days=current_app.config.get("DEFAULT_SCHEDULE_WINDOW_DAYS", 365),
                )
            except ValueError as exc:
                raise ValidationError(str(exc))
            _add_drafts(default_checklist(project, actor), drafts, linked_request_id=request_id)

        recalculate_project_total(project)
        record_activity(project.id, "CREATED", f"Project created: {title}", actor)

    logger.info("Project %s created at branch %s", project.id, branch_id,
                extra={"project_id": project.id, "branch_id": branch_id, "user_id": actor.user_id})
    return project


# ── Approve ──────────────────────────────────────────────────────────────────


def approve_project(project_id, actor, *, now=None):
    """Client approval: PENDING → ACTIVE with contract, invoice and schedule.

    Returns:
        {"project": Project, "contract_id": int, "invoice_id": int}

    Raises:
        PermissionDeniedError: actor is not a client.
        ConflictError: project not PENDING, or the branch already has an
            ACTIVE project.
    """
    require_role(actor, CLIENT, action="approve projects")
    now = now or datetime.now(timezone.utc)

    with transaction():
        project = get_project(project_id)
        _ensure_no_active_project(project.branch_id, exclude_id=project.id)
        project = compare_and_set_status(
            Project, project.id, PROJECT_PENDING, PROJECT_ACTIVE, approved_at=now,
        )
        total = recalculate_project_total(project)

        for quotation in Quotation.query.filter(
            Quotation.project_id == project.id,
            Quotation.status.in_(PENDING_QUOTATION_STATUSES),
        ):
            quotation.status = QUOTATION_APPROVED
            quotation.approved_at = now

        contract = Contract(
            branch_id=project.branch_id,
            project_id=project.id,
            title=f"Contract: {project.title}",
            status=CONTRACT_SIGNED,
            total_value=total,
            start_date=project.start_date,
            end_date=project.end_date,
            signed_at=now,
            signed_by_id=actor.user_id,
        )
        db.session.add(contract)

        due_days = current_app.config.get("DEFAULT_INVOICE_DUE_DAYS", 30)
        invoice = Invoice(
            branch_id=project.branch_id,
            project_id=project.id,
            invoice_number=billing_service.generate_invoice_number(now),
            status=INVOICE_SENT,
            tax_rate=current_app.config.get("DEFAULT_TAX_RATE", 0.0),
            due_date=project.end_date or (now + timedelta(days=due_days)).date(),
            sent_at=now,
        )
        work_orders = project.work_orders()
        invoice.items = [
            InvoiceItem(
                description=wo.description,
                quantity=1,
                unit_price=wo.price or 0.0,
                work_order_id=wo.id,
            )
            for wo in work_orders
        ]
        recalculate_invoice_totals(invoice)
        db.session.add(invoice)

        for wo in work_orders:
            if wo.stage == STAGE_REQUESTED:
                wo.stage = STAGE_SCHEDULED
        for checklist in project.checklists:
            checklist.status = CHECKLIST_IN_PROGRESS

        for req in Request.query.filter_by(project_id=project.id, status=REQUEST_OPEN):
            req.status = REQUEST_COMPLETED

        record_activity(project.id, "APPROVED",
                        "Project approved by client. Contract signed, invoice created.", actor)
        NotificationService.notify_many(
            NotificationService.contractor_user_ids(project.branch_id),
            "PROJECT_APPROVED",
            "Project Approved",
            f'"{project.title}" was approved by the client',
            related_id=project.id, related_type="Project",
        )
        db.session.flush()
        contract_id, invoice_id = contract.id, invoice.id

    logger.info("Project %s approved", project.id,
                extra={"project_id": project.id, "contract_id": contract_id,
                       "invoice_id": invoice_id, "transition": "PENDING->ACTIVE",
                       "user_id": actor.user_id})
    return {"project": project, "contract_id": contract_id, "invoice_id": invoice_id}


def approve_adhoc_work_order(project_id, work_order_id, actor, *, now=None):
    """Merge an ad-hoc request into an ACTIVE project's schedule and billing.

    The work order becomes SCHEDULED, the project total is recomputed, an
    open invoice gains a line, and the signed contract grows by the
    approved price.
    """
    require_role(actor, *CONTRACTOR_SIDE, action="approve ad-hoc work orders")

    with transaction():
        project = get_project(project_id)
        if project.status != PROJECT_ACTIVE:
            raise ConflictError(
                "Project must be ACTIVE to approve ad-hoc work orders",
                resource="Project", current_status=project.status,
            )
        wo = get_work_order(work_order_id)
        if wo.checklist.project_id != project.id:
            raise NotFoundError(resource="WorkOrder", resource_id=work_order_id)
        if wo.type != TYPE_ADHOC:
            raise ValidationError("This is not an ad-hoc work order",
                                  details={"type": wo.type})

        wo = compare_and_set_status(
            WorkOrder, wo.id, STAGE_REQUESTED, STAGE_SCHEDULED, field="stage",
        )
        recalculate_project_total(project)

        invoice = billing_service.open_invoice_for_project(project.id, OPEN_INVOICE_STATUSES)
        if invoice is not None:
            invoice.items.append(InvoiceItem(
                description=f"Ad-hoc: {wo.description}",
                quantity=1,
                unit_price=wo.price or 0.0,
                work_order_id=wo.id,
            ))
            recalculate_invoice_totals(invoice)

        contract = (
            Contract.query.filter_by(project_id=project.id, status=CONTRACT_SIGNED)
            .order_by(Contract.id.desc())
            .first()
        )
        if contract is not None:
            contract.total_value = round((contract.total_value or 0.0) + (wo.price or 0.0), 2)

        sync_checklist_status(wo.checklist)
        record_activity(project.id, "APPROVED",
                        f"Ad-hoc work order approved: {wo.description}", actor)

    logger.info("Ad-hoc work order %s approved into project %s", wo.id, project.id,
                extra={"project_id": project.id, "work_order_id": wo.id})
    return wo


# ── Complete / cancel ────────────────────────────────────────────────────────


def complete_project(project_id, actor, *, now=None):
    """ACTIVE → DONE.

    Outstanding work does not block completion; the contract end-signature
    is where full completion and payment are enforced.  A project whose
    invoices are already all PAID is closed straight away.
    """
    require_role(actor, *CONTRACTOR_SIDE, CLIENT, action="complete projects")
    now = now or datetime.now(timezone.utc)

    with transaction():
        project = compare_and_set_status(
            Project, project_id, PROJECT_ACTIVE, PROJECT_DONE, completed_at=now,
        )
        record_activity(project.id, "STATUS_CHANGE", "Project marked as done", actor)
        closed = billing_service.close_project_if_settled(project, actor, now=now)
        if closed is not None:
            project = closed

    logger.info("Project %s completed", project.id,
                extra={"project_id": project.id, "transition": f"ACTIVE->{project.status}"})
    return project


def cancel_project(project_id, actor, *, reason=None, now=None):
    """PENDING / ACTIVE → CANCELLED; pending quotations rejected, open requests cancelled."""
    require_role(actor, *CONTRACTOR_SIDE, CLIENT, action="cancel projects")
    now = now or datetime.now(timezone.utc)

    with transaction():
        project = compare_and_set_status(
            Project, project_id, [PROJECT_PENDING, PROJECT_ACTIVE], PROJECT_CANCELLED,
            cancelled_at=now,
        )
        for quotation in Quotation.query.filter(
            Quotation.project_id == project.id,
            Quotation.status.in_(PENDING_QUOTATION_STATUSES),
        ):
            quotation.status = QUOTATION_REJECTED
        for req in Request.query.filter_by(project_id=project.id, status=REQUEST_OPEN):
            req.status = REQUEST_CANCELLED
        content = "Project cancelled" + (f": {reason}" if reason else "")
        record_activity(project.id, "STATUS_CHANGE", content, actor)

    logger.info("Project %s cancelled", project.id,
                extra={"project_id": project.id, "transition": "->CANCELLED"})
    return project


# ── Clone / renew ────────────────────────────────────────────────────────────


def clone_project(template_project_id, data, actor):
    """Create a PENDING renewal of an existing project.

    Only template-derived (SCHEDULED type) work orders are copied, reset to
    REQUESTED and UNPAID.  Dates move by the distance between the old and
    new start dates; without both start dates they are cleared.  A renewal
    request is opened for the client.
    """
    require_role(actor, *CONTRACTOR_SIDE, action="renew projects")
    start_date = parse_date(data.get("start_date"))
    end_date = parse_date(data.get("end_date"))
    _validate_window(start_date, end_date)

    with transaction():
        template = get_project(template_project_id)
        _ensure_no_active_project(template.branch_id)

        shift = None
        if start_date and template.start_date:
            shift = start_date - template.start_date

        project = Project(
            branch_id=template.branch_id,
            title=(data.get("title") or "").strip() or f"{template.title} (Renewal)",
            description=template.description,
            priority=template.priority,
            status=PROJECT_PENDING,
            start_date=start_date,
            end_date=end_date,
            auto_renew=data["auto_renew"] if data.get("auto_renew") is not None else template.auto_renew,
            renewed_from_id=template.id,
            created_by_id=actor.user_id,
            created_by_role=actor.role,
        )
        db.session.add(project)
        db.session.flush()

        for source in template.checklists:
            checklist = Checklist(
                project_id=project.id,
                branch_id=project.branch_id,
                title=source.title,
                description=source.description,
                status=CHECKLIST_DRAFT,
                created_by_id=actor.user_id,
            )
            db.session.add(checklist)
            db.session.flush()
            for item in source.items:
                if item.type != TYPE_SCHEDULED:
                    continue
                db.session.add(WorkOrder(
                    checklist_id=checklist.id,
                    description=item.description,
                    notes=item.notes,
                    price=item.price,
                    scheduled_date=item.scheduled_date + shift if (shift is not None and item.scheduled_date) else None,
                    stage=STAGE_REQUESTED,
                    type=TYPE_SCHEDULED,
                    work_order_type=item.work_order_type,
                    recurring_type=item.recurring_type,
                    occurrence_index=item.occurrence_index,
                    order=item.order,
                ))

        db.session.add(Request(
            branch_id=project.branch_id,
            project_id=project.id,
            title=f"Project Renewal: {project.title}",
            description="Renewal of previous contract. Please review the work orders and pricing.",
            priority=project.priority,
            status=REQUEST_OPEN,
            created_by_id=actor.user_id,
        ))
        recalculate_project_total(project)
        record_activity(project.id, "CREATED",
                        f"Project created from template: {template.title}", actor)
        NotificationService.notify_many(
            NotificationService.client_user_ids(project.branch_id),
            "PROJECT_RENEWAL",
            "Project Renewal Proposed",
            f'"{project.title}" is ready for your review',
            related_id=project.id, related_type="Project",
        )

    logger.info("Project %s cloned from %s", project.id, template_project_id,
                extra={"project_id": project.id, "branch_id": project.branch_id})
    return project

