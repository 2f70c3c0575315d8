"""
Tests: work order stage machine, edits and certificate auto-issue.

Projects are built through the orchestrator (create + client approval) so
work orders start from the same SCHEDULED state the API produces.
"""

from datetime import date, datetime, timezone

import pytest

from firesafe.core.actor import SYSTEM_ACTOR
from firesafe.core.exceptions import (
    ConflictError,
    PermissionDeniedError,
    ValidationError,
)
from firesafe.models import db as _db
from firesafe.models.certificate import Certificate
from firesafe.models.negotiation import Request
from firesafe.models.notification import Notification
from firesafe.models.project import Activity, Project, WorkOrder
from firesafe.services import project_service, work_order_service
from firesafe.services.work_order_service import transition_work_order


NOW = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _project(branch_id, actor, templates, **extra):
    data = {
        "title": "Annual fire safety maintenance",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
        "templates": templates,
    }
    data.update(extra)
    return project_service.create_project(branch_id, data, actor)


def _active_project(site, contractor_actor, client_actor, templates):
    project = _project(site.branch_id, contractor_actor, templates)
    project_service.approve_project(project.id, client_actor)
    return _db.session.get(Project, project.id)


def _walk(wo_id, actor, stages, now=NOW):
    for stage in stages:
        wo = transition_work_order(wo_id, stage, actor, now=now)
    return wo


# ── Stage machine ────────────────────────────────────────────────────────────


def test_full_pipeline_completes_and_issues_certificate(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Extinguisher inspection", "price": 120, "work_order_type": "INSPECTION"},
    ])
    wo = project.work_orders()[0]
    assert wo.stage == "SCHEDULED"

    wo = _walk(wo.id, contractor_actor, ["IN_PROGRESS", "FOR_REVIEW", "COMPLETED"])

    assert wo.stage == "COMPLETED"
    assert wo.is_completed is True
    assert wo.completed_at is not None
    assert wo.checklist.status == "COMPLETED"

    cert = Certificate.query.filter_by(work_order_id=wo.id).one()
    assert cert.type == "INSPECTION"
    assert cert.issue_date == date(2025, 3, 10)
    assert cert.expiry_date == date(2026, 3, 10)
    assert cert.file_url == ""

    changes = Activity.query.filter_by(project_id=project.id, type="STATUS_CHANGE").count()
    assert changes == 3


def test_for_review_notifies_client_users(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Alarm test", "price": 80},
    ])
    wo = project.work_orders()[0]

    _walk(wo.id, contractor_actor, ["IN_PROGRESS", "FOR_REVIEW"])

    notes = Notification.query.filter_by(type="WORK_ORDER_FOR_REVIEW").all()
    assert [n.user_id for n in notes] == [site.client_user_id]
    assert notes[0].related_id == wo.id


def test_forward_jump_is_allowed(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Hose reel service", "price": 60},
    ])
    wo = project.work_orders()[0]

    wo = transition_work_order(wo.id, "COMPLETED", contractor_actor, now=NOW)

    assert wo.stage == "COMPLETED"


def test_backward_move_conflicts(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Hose reel service", "price": 60},
    ])
    wo = project.work_orders()[0]
    _walk(wo.id, contractor_actor, ["IN_PROGRESS", "FOR_REVIEW"])

    with pytest.raises(ConflictError) as exc_info:
        transition_work_order(wo.id, "IN_PROGRESS", contractor_actor)
    assert exc_info.value.current_status == "FOR_REVIEW"
    assert _db.session.get(WorkOrder, wo.id).stage == "FOR_REVIEW"


def test_unknown_stage_is_validation_error(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [{"description": "Survey"}])
    wo = project.work_orders()[0]

    with pytest.raises(ValidationError):
        transition_work_order(wo.id, "ARCHIVED", contractor_actor)


def test_client_cannot_change_stage(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [{"description": "Survey"}])
    wo = project.work_orders()[0]

    with pytest.raises(PermissionDeniedError):
        transition_work_order(wo.id, "IN_PROGRESS", client_actor)


def test_pending_project_blocks_progress(site, contractor_actor):
    project = _project(site.branch_id, contractor_actor, [{"description": "Survey"}])
    wo = project.work_orders()[0]

    with pytest.raises(ConflictError) as exc_info:
        transition_work_order(wo.id, "SCHEDULED", contractor_actor)
    assert exc_info.value.current_status == "PENDING"


def test_unapproved_adhoc_cannot_progress(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [{"description": "Survey"}])
    adhoc = work_order_service.add_work_order(
        project.id, {"description": "Replace broken sign", "price": 40}, client_actor,
    )
    assert adhoc.type == "ADHOC"
    assert adhoc.stage == "REQUESTED"

    with pytest.raises(ConflictError):
        transition_work_order(adhoc.id, "SCHEDULED", contractor_actor)


def test_completed_replay_keeps_single_certificate(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Pump maintenance", "price": 300, "work_order_type": "MAINTENANCE"},
    ])
    wo = project.work_orders()[0]
    transition_work_order(wo.id, "COMPLETED", contractor_actor, now=NOW)

    again = transition_work_order(wo.id, "COMPLETED", SYSTEM_ACTOR, now=NOW)

    assert again.stage == "COMPLETED"
    certs = Certificate.query.filter_by(work_order_id=wo.id).all()
    assert len(certs) == 1
    assert certs[0].type == "PREVENTIVE_MAINTENANCE"
    assert Activity.query.filter_by(project_id=project.id, type="STATUS_CHANGE").count() == 1


def test_ineligible_work_gets_no_certificate(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Door repair", "price": 75, "work_order_type": "REPAIR"},
    ])
    wo = project.work_orders()[0]

    transition_work_order(wo.id, "COMPLETED", contractor_actor, now=NOW)

    assert Certificate.query.count() == 0


def test_request_flag_makes_work_certifiable(site, contractor_actor, client_actor):
    req = Request(branch_id=site.branch_id, title="Need a compliance certificate",
                  needs_certificate=True)
    _db.session.add(req)
    _db.session.flush()
    project = _project(site.branch_id, contractor_actor, [
        {"description": "Exit lights", "price": 90, "recurring_type": "MONTHLY"},
    ], request_id=req.id, end_date="2025-02-15")
    project_service.approve_project(project.id, client_actor)
    wo = _db.session.get(Project, project.id).work_orders()[0]
    assert wo.linked_request_id == req.id

    transition_work_order(wo.id, "COMPLETED", contractor_actor, now=NOW)

    cert = Certificate.query.filter_by(work_order_id=wo.id).one()
    assert cert.type == "COMPLETION"
    assert cert.expiry_date == date(2025, 4, 10)


def test_completion_recomputes_project_total(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Survey", "price": 100},
    ])
    wo = project.work_orders()[0]
    _db.session.get(Project, project.id).total_value = 0.0
    _db.session.commit()

    transition_work_order(wo.id, "COMPLETED", contractor_actor, now=NOW)

    assert _db.session.get(Project, project.id).total_value == 100.0


# ── Edits ────────────────────────────────────────────────────────────────────


def test_price_change_recomputes_total_and_logs(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Survey", "price": 100},
        {"description": "Alarm test", "price": 50},
    ])
    wo = project.work_orders()[0]

    work_order_service.update_work_order(wo.id, {"price": 140}, contractor_actor)

    assert _db.session.get(Project, project.id).total_value == 190.0
    assert Activity.query.filter_by(project_id=project.id, type="UPDATED").count() == 1


def test_price_of_paid_work_order_is_frozen(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [
        {"description": "Survey", "price": 100},
    ])
    wo = project.work_orders()[0]
    wo.payment_status = "PAID"
    _db.session.commit()

    with pytest.raises(ConflictError):
        work_order_service.update_work_order(wo.id, {"price": 10}, contractor_actor)
    assert _db.session.get(WorkOrder, wo.id).price == 100.0


def test_reschedule_returns_in_progress_item_to_scheduled(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [{"description": "Survey"}])
    wo = project.work_orders()[0]
    transition_work_order(wo.id, "IN_PROGRESS", contractor_actor)

    wo = work_order_service.reschedule_work_order(wo.id, "2025-05-20", contractor_actor)

    assert wo.stage == "SCHEDULED"
    assert wo.scheduled_date == date(2025, 5, 20)


def test_reschedule_refused_once_for_review(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [{"description": "Survey"}])
    wo = project.work_orders()[0]
    transition_work_order(wo.id, "FOR_REVIEW", contractor_actor)

    with pytest.raises(ConflictError):
        work_order_service.reschedule_work_order(wo.id, "2025-05-20", contractor_actor)


def test_client_may_only_add_adhoc_work(site, contractor_actor, client_actor):
    project = _active_project(site, contractor_actor, client_actor, [{"description": "Survey"}])

    with pytest.raises(ValidationError):
        work_order_service.add_work_order(
            project.id, {"description": "Extra survey", "type": "SCHEDULED"}, client_actor,
        )


def test_activity_rows_are_append_only(site, contractor_actor):
    project = _project(site.branch_id, contractor_actor, [])
    entry = Activity.query.filter_by(project_id=project.id).first()

    entry.content = "rewritten"
    with pytest.raises(RuntimeError):
        _db.session.flush()
    _db.session.rollback()


def test_adding_priced_work_order_updates_project_total(site, contractor_actor):
    project = _project(site.branch_id, contractor_actor, [])
    assert project.total_value == 0.0

    work_order_service.add_work_order(
        project.id, {"description": "Fire door survey", "price": 250}, contractor_actor,
    )

    assert _db.session.get(Project, project.id).total_value == 250.0


def test_linked_request_must_belong_to_the_branch(site, other_site, contractor_actor):
    project = _project(site.branch_id, contractor_actor, [])
    foreign = Request(branch_id=other_site.branch_id, title="Dockside certificate",
                      needs_certificate=True)
    local = Request(branch_id=site.branch_id, title="Main Street certificate")
    _db.session.add_all([foreign, local])
    _db.session.commit()

    for request_id in (foreign.id, 99999):
        with pytest.raises(ValidationError):
            work_order_service.add_work_order(
                project.id, {"description": "Survey", "linked_request_id": request_id},
                contractor_actor,
            )

    wo = work_order_service.add_work_order(
        project.id, {"description": "Survey", "linked_request_id": local.id}, contractor_actor,
    )
    assert wo.linked_request_id == local.id
