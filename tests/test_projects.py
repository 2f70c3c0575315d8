"""
Tests: project orchestrator.

Covers approval (contract + invoice + schedule in one unit), the one-active
project per branch rule, ad-hoc approval, cancellation, completion and
renewal cloning.
"""

from datetime import date

import pytest

from firesafe.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from firesafe.models import db as _db
from firesafe.models.billing import Contract, Invoice
from firesafe.models.negotiation import Quotation, Request
from firesafe.models.notification import Notification
from firesafe.models.project import Activity, Project
from firesafe.services import billing_service, project_service, work_order_service


THREE_ITEMS = [
    {"description": "Extinguisher inspection", "price": 100, "work_order_type": "INSPECTION"},
    {"description": "Sprinkler service", "price": 200, "work_order_type": "MAINTENANCE"},
    {"description": "Alarm panel check", "price": 300},
]


# ── Helpers ──────────────────────────────────────────────────────────────────


def _create(branch_id, actor, templates=None, **extra):
    data = {
        "title": "Annual fire safety maintenance",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
        "templates": THREE_ITEMS if templates is None else templates,
    }
    data.update(extra)
    return project_service.create_project(branch_id, data, actor)


def _reload(project_id):
    return _db.session.get(Project, project_id)


# ── Create ───────────────────────────────────────────────────────────────────


def test_create_project_expands_templates(site, contractor_actor):
    project = _create(site.branch_id, contractor_actor, [
        {"description": "Extinguisher check", "price": 40, "recurring_type": "QUARTERLY"},
    ])

    assert project.status == "PENDING"
    items = project.work_orders()
    assert [wo.scheduled_date for wo in items] == [
        date(2025, 1, 1), date(2025, 4, 1), date(2025, 7, 1), date(2025, 10, 1),
    ]
    assert all(wo.stage == "REQUESTED" for wo in items)
    assert project.total_value == 160.0
    assert Activity.query.filter_by(project_id=project.id, type="CREATED").count() == 1


def test_create_requires_contractor_side(site, client_actor):
    with pytest.raises(PermissionDeniedError):
        _create(site.branch_id, client_actor)


def test_create_on_unknown_branch(contractor_actor):
    with pytest.raises(NotFoundError):
        _create(9999, contractor_actor)


def test_create_rejects_inverted_window(site, contractor_actor):
    with pytest.raises(ValidationError):
        _create(site.branch_id, contractor_actor, start_date="2025-06-01", end_date="2025-01-01")


# ── Approve ──────────────────────────────────────────────────────────────────


def test_approve_creates_contract_invoice_and_schedule(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor)
    quotation = Quotation(branch_id=site.branch_id, project_id=project.id,
                          title="Quote", status="SENT", total=600)
    request = Request(branch_id=site.branch_id, project_id=project.id, title="Annual service")
    _db.session.add_all([quotation, request])
    _db.session.commit()

    result = project_service.approve_project(project.id, client_actor)

    project = _reload(project.id)
    assert project.status == "ACTIVE"
    assert project.approved_at is not None
    assert project.total_value == 600.0

    contract = _db.session.get(Contract, result["contract_id"])
    assert contract.status == "SIGNED"
    assert contract.total_value == 600.0
    assert contract.signed_by_id == site.client_user_id

    invoice = _db.session.get(Invoice, result["invoice_id"])
    assert invoice.status == "SENT"
    assert invoice.subtotal == 600.0
    assert invoice.total == 600.0
    assert invoice.due_date == date(2025, 12, 31)
    assert sorted(i.unit_price for i in invoice.items) == [100.0, 200.0, 300.0]

    assert all(wo.stage == "SCHEDULED" for wo in project.work_orders())
    assert all(c.status == "IN_PROGRESS" for c in project.checklists)
    assert _db.session.get(Quotation, quotation.id).status == "APPROVED"
    assert _db.session.get(Request, request.id).status == "COMPLETED"

    notes = Notification.query.filter_by(type="PROJECT_APPROVED").all()
    assert [n.user_id for n in notes] == [site.contractor_user_id]


def test_second_approval_conflicts_without_side_effects(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor)
    project_service.approve_project(project.id, client_actor)

    with pytest.raises(ConflictError) as exc_info:
        project_service.approve_project(project.id, client_actor)

    assert exc_info.value.current_status == "ACTIVE"
    assert Contract.query.count() == 1
    assert Invoice.query.count() == 1


def test_only_clients_approve(site, contractor_actor):
    project = _create(site.branch_id, contractor_actor)

    with pytest.raises(PermissionDeniedError):
        project_service.approve_project(project.id, contractor_actor)
    assert _reload(project.id).status == "PENDING"


def test_approval_failure_rolls_back_everything(site, contractor_actor, client_actor, monkeypatch):
    project = _create(site.branch_id, contractor_actor)

    def _broken_numbering(now=None):
        raise RuntimeError("numbering service down")

    monkeypatch.setattr(billing_service, "generate_invoice_number", _broken_numbering)

    with pytest.raises(RuntimeError):
        project_service.approve_project(project.id, client_actor)

    project = _reload(project.id)
    assert project.status == "PENDING"
    assert Contract.query.count() == 0
    assert Invoice.query.count() == 0
    assert all(wo.stage == "REQUESTED" for wo in project.work_orders())


# ── One active project per branch ────────────────────────────────────────────


def test_cannot_create_while_branch_has_active_project(site, contractor_actor, client_actor):
    first = _create(site.branch_id, contractor_actor)
    project_service.approve_project(first.id, client_actor)

    with pytest.raises(ConflictError):
        _create(site.branch_id, contractor_actor, title="Second engagement")
    assert Project.query.count() == 1


def test_cannot_approve_while_branch_has_active_project(site, contractor_actor, client_actor):
    first = _create(site.branch_id, contractor_actor)
    second = _create(site.branch_id, contractor_actor, title="Second engagement")
    project_service.approve_project(first.id, client_actor)

    with pytest.raises(ConflictError):
        project_service.approve_project(second.id, client_actor)
    assert _reload(second.id).status == "PENDING"


def test_other_branches_are_independent(site, other_site, contractor_actor, client_actor):
    project_service.approve_project(_create(site.branch_id, contractor_actor).id, client_actor)

    other = _create(other_site.branch_id, contractor_actor)

    assert other.status == "PENDING"


# ── Ad-hoc approval ──────────────────────────────────────────────────────────


def test_adhoc_approval_merges_into_billing(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor)
    result = project_service.approve_project(project.id, client_actor)
    adhoc = work_order_service.add_work_order(
        project.id, {"description": "Replace exit sign", "price": 50}, client_actor,
    )
    assert _reload(project.id).total_value == 650.0

    wo = project_service.approve_adhoc_work_order(project.id, adhoc.id, contractor_actor)

    assert wo.stage == "SCHEDULED"
    assert _reload(project.id).total_value == 650.0
    invoice = _db.session.get(Invoice, result["invoice_id"])
    assert len(invoice.items) == 4
    assert invoice.total == 650.0
    assert any(i.description == "Ad-hoc: Replace exit sign" for i in invoice.items)
    assert _db.session.get(Contract, result["contract_id"]).total_value == 650.0


def test_adhoc_approval_bills_only_the_approved_item(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor, [{"description": "Survey", "price": 100}])
    result = project_service.approve_project(project.id, client_actor)
    sign = work_order_service.add_work_order(
        project.id, {"description": "Replace exit sign", "price": 50}, client_actor,
    )
    work_order_service.add_work_order(
        project.id, {"description": "Extra extinguisher", "price": 70}, client_actor,
    )

    project_service.approve_adhoc_work_order(project.id, sign.id, contractor_actor)

    contract = _db.session.get(Contract, result["contract_id"])
    invoice = _db.session.get(Invoice, result["invoice_id"])
    assert invoice.total == 150.0
    assert contract.total_value == 150.0
    assert _reload(project.id).total_value == 220.0


def test_adhoc_approval_rejects_template_items(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor)
    project_service.approve_project(project.id, client_actor)
    wo = _reload(project.id).work_orders()[0]

    with pytest.raises(ValidationError):
        project_service.approve_adhoc_work_order(project.id, wo.id, contractor_actor)


def test_adhoc_approval_requires_active_project(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor)
    adhoc = work_order_service.add_work_order(
        project.id, {"description": "Replace exit sign", "price": 50}, client_actor,
    )

    with pytest.raises(ConflictError):
        project_service.approve_adhoc_work_order(project.id, adhoc.id, contractor_actor)


def test_adhoc_approval_is_one_shot(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor)
    project_service.approve_project(project.id, client_actor)
    adhoc = work_order_service.add_work_order(
        project.id, {"description": "Replace exit sign", "price": 50}, client_actor,
    )
    project_service.approve_adhoc_work_order(project.id, adhoc.id, contractor_actor)

    with pytest.raises(ConflictError):
        project_service.approve_adhoc_work_order(project.id, adhoc.id, contractor_actor)
    assert _reload(project.id).total_value == 650.0


# ── Complete / cancel ────────────────────────────────────────────────────────


def test_complete_moves_active_to_done(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor)
    project_service.approve_project(project.id, client_actor)

    project = project_service.complete_project(project.id, client_actor)

    assert project.status == "DONE"
    assert project.completed_at is not None


def test_complete_closes_when_invoices_already_paid(site, contractor_actor, client_actor):
    project = _create(site.branch_id, contractor_actor)
    result = project_service.approve_project(project.id, client_actor)
    billing_service.mark_invoice_paid(result["invoice_id"], contractor_actor)

    project = project_service.complete_project(project.id, contractor_actor)

    assert project.status == "CLOSED"
    assert project.closed_at is not None


def test_complete_requires_active(site, contractor_actor):
    project = _create(site.branch_id, contractor_actor)

    with pytest.raises(ConflictError):
        project_service.complete_project(project.id, contractor_actor)


def test_cancel_rejects_quotes_and_requests(site, contractor_actor):
    project = _create(site.branch_id, contractor_actor)
    quotation = Quotation(branch_id=site.branch_id, project_id=project.id, title="Quote")
    request = Request(branch_id=site.branch_id, project_id=project.id, title="Annual service")
    _db.session.add_all([quotation, request])
    _db.session.commit()

    project = project_service.cancel_project(project.id, contractor_actor, reason="budget cut")

    assert project.status == "CANCELLED"
    assert _db.session.get(Quotation, quotation.id).status == "REJECTED"
    assert _db.session.get(Request, request.id).status == "CANCELLED"
    last = Activity.query.filter_by(project_id=project.id).order_by(Activity.id.desc()).first()
    assert last.content == "Project cancelled: budget cut"

    with pytest.raises(ConflictError):
        project_service.cancel_project(project.id, contractor_actor)


# ── Clone / renew ────────────────────────────────────────────────────────────


def test_clone_copies_template_items_with_shifted_dates(site, contractor_actor, client_actor):
    source = _create(site.branch_id, contractor_actor)
    project_service.approve_project(source.id, client_actor)
    adhoc = work_order_service.add_work_order(
        source.id, {"description": "Replace exit sign", "price": 50}, client_actor,
    )
    project_service.approve_adhoc_work_order(source.id, adhoc.id, contractor_actor)
    project_service.complete_project(source.id, contractor_actor)

    renewal = project_service.clone_project(
        source.id, {"start_date": "2026-01-01", "end_date": "2026-12-31"}, contractor_actor,
    )

    assert renewal.status == "PENDING"
    assert renewal.title == "Annual fire safety maintenance (Renewal)"
    assert renewal.renewed_from_id == source.id
    items = renewal.work_orders()
    assert [wo.description for wo in items] == [t["description"] for t in THREE_ITEMS]
    assert all(wo.stage == "REQUESTED" for wo in items)
    assert all(wo.payment_status == "UNPAID" for wo in items)
    assert all(wo.scheduled_date == date(2026, 1, 1) for wo in items)
    assert renewal.total_value == 600.0
    assert all(c.status == "DRAFT" for c in renewal.checklists)

    opened = Request.query.filter_by(project_id=renewal.id).one()
    assert opened.status == "OPEN"
    assert opened.title.startswith("Project Renewal:")
    notes = Notification.query.filter_by(type="PROJECT_RENEWAL").all()
    assert [n.user_id for n in notes] == [site.client_user_id]


def test_clone_without_start_date_clears_dates(site, contractor_actor):
    source = _create(site.branch_id, contractor_actor)

    renewal = project_service.clone_project(source.id, {"title": "Next year"}, contractor_actor)

    assert renewal.title == "Next year"
    assert all(wo.scheduled_date is None for wo in renewal.work_orders())


def test_clone_blocked_by_active_project(site, contractor_actor, client_actor):
    source = _create(site.branch_id, contractor_actor)
    project_service.approve_project(source.id, client_actor)

    with pytest.raises(ConflictError):
        project_service.clone_project(source.id, {}, contractor_actor)
    assert Project.query.count() == 1
