"""
Tests: daily reconciliation (reminders, auto-progress, contract expiry).

Every test pins ``now`` so day differences are deterministic; the dedup
tests run the job twice to check that a second run on one day changes nothing.
"""

from datetime import date, datetime, timedelta, timezone

from firesafe.models import db as _db
from firesafe.models.billing import Contract
from firesafe.models.notification import Notification
from firesafe.models.project import WorkOrder
from firesafe.models.scheduling import ScheduledJob
from firesafe.services import project_service, reconciler
from firesafe.services.scheduler_service import SchedulerService


NOW = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _project(branch_id, contractor_actor, client_actor, dates, approve=True):
    project = project_service.create_project(branch_id, {
        "title": "Spring checks",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
        "templates": [
            {"description": f"Check {d}", "price": 10, "scheduled_date": d} for d in dates
        ],
    }, contractor_actor)
    if approve:
        project_service.approve_project(project.id, client_actor)
    return {wo.scheduled_date.isoformat(): wo.id for wo in project.work_orders()}


def _count(type_, user_id=None):
    q = Notification.query.filter_by(type=type_)
    if user_id is not None:
        q = q.filter_by(user_id=user_id)
    return q.count()


# ── Work orders ──────────────────────────────────────────────────────────────


def test_reminders_and_auto_progress(site, contractor_actor, client_actor):
    ids = _project(site.branch_id, contractor_actor, client_actor,
                   ["2025-03-15", "2025-03-10", "2025-03-12", "2025-03-11"])

    result = reconciler.reconcile_work_orders(NOW)

    assert result == {"processed": 4, "notifications_created": 4,
                      "auto_progressed": 1, "skipped": 0}
    assert _count("WORK_ORDER_REMINDER", site.contractor_user_id) == 3
    assert _count("WORK_ORDER_STARTED", site.client_user_id) == 1
    assert _db.session.get(WorkOrder, ids["2025-03-10"]).stage == "IN_PROGRESS"
    assert _db.session.get(WorkOrder, ids["2025-03-12"]).stage == "SCHEDULED"


def test_second_run_same_day_is_a_no_op(site, contractor_actor, client_actor):
    _project(site.branch_id, contractor_actor, client_actor,
             ["2025-03-15", "2025-03-10", "2025-03-11"])
    reconciler.reconcile_work_orders(NOW)
    before = Notification.query.count()

    result = reconciler.reconcile_work_orders(NOW.replace(hour=17))

    assert result["notifications_created"] == 0
    assert result["auto_progressed"] == 0
    assert Notification.query.count() == before


def test_next_day_reminds_again(site, contractor_actor, client_actor):
    _project(site.branch_id, contractor_actor, client_actor, ["2025-03-13"])

    first = reconciler.reconcile_work_orders(NOW)               # 3 days out
    second = reconciler.reconcile_work_orders(datetime(2025, 3, 12, 8, 0, tzinfo=timezone.utc))

    assert first["notifications_created"] == 1
    assert second["notifications_created"] == 1
    assert _count("WORK_ORDER_REMINDER") == 2


def test_dedup_uses_the_utc_day_for_offset_clocks(site, contractor_actor, client_actor):
    _project(site.branch_id, contractor_actor, client_actor, ["2025-03-11"])
    utc_plus_5 = timezone(timedelta(hours=5))

    # 01:00 on the 11th in UTC+5 is still the 10th in UTC
    first = reconciler.reconcile_work_orders(datetime(2025, 3, 11, 1, 0, tzinfo=utc_plus_5))
    second = reconciler.reconcile_work_orders(datetime(2025, 3, 10, 23, 0, tzinfo=timezone.utc))

    assert first["notifications_created"] == 1
    assert second["notifications_created"] == 0
    assert _count("WORK_ORDER_REMINDER") == 1


def test_pending_project_is_reminded_but_not_started(site, contractor_actor, client_actor):
    ids = _project(site.branch_id, contractor_actor, client_actor, ["2025-03-10"], approve=False)

    result = reconciler.reconcile_work_orders(NOW)

    assert result["auto_progressed"] == 0
    assert _count("WORK_ORDER_REMINDER") == 1
    assert _count("WORK_ORDER_STARTED") == 1
    assert _db.session.get(WorkOrder, ids["2025-03-10"]).stage == "REQUESTED"


def test_items_past_scheduling_are_ignored(site, contractor_actor, client_actor):
    ids = _project(site.branch_id, contractor_actor, client_actor, ["2025-03-10"])
    wo = _db.session.get(WorkOrder, ids["2025-03-10"])
    wo.stage = "FOR_REVIEW"
    _db.session.commit()

    result = reconciler.reconcile_work_orders(NOW)

    assert result["processed"] == 0
    assert Notification.query.filter(Notification.type.like("WORK_ORDER_%")).count() == 0


# ── Contracts ────────────────────────────────────────────────────────────────


def test_contract_expiry_thresholds(site):
    _db.session.add_all([
        Contract(branch_id=site.branch_id, title="Ten days", status="SIGNED",
                 end_date=date(2025, 3, 20)),
        Contract(branch_id=site.branch_id, title="Tomorrow", status="SIGNED",
                 end_date=date(2025, 3, 11)),
        Contract(branch_id=site.branch_id, title="Four days", status="SIGNED",
                 end_date=date(2025, 3, 14)),
        Contract(branch_id=site.branch_id, title="Lapsed", status="SIGNED",
                 end_date=date(2025, 3, 1)),
        Contract(branch_id=site.branch_id, title="Draft", status="DRAFT",
                 end_date=date(2025, 3, 11)),
    ])
    _db.session.commit()

    result = reconciler.remind_expiring_contracts(NOW)

    assert result == {"processed": 3, "notifications_created": 3}
    assert _count("CONTRACT_EXPIRING", site.contractor_user_id) == 2
    assert _count("CONTRACT_EXPIRING", site.client_user_id) == 1

    again = reconciler.remind_expiring_contracts(NOW)
    assert again["notifications_created"] == 0


# ── Job bookkeeping ──────────────────────────────────────────────────────────


def test_run_job_records_history(site, contractor_actor, client_actor):
    _project(site.branch_id, contractor_actor, client_actor, ["2025-03-10"])

    outcome = SchedulerService.run_job("work_order_reconciler", now=NOW)

    assert outcome["status"] == "success"
    assert outcome["result"]["auto_progressed"] == 1
    job = ScheduledJob.query.filter_by(job_name="work_order_reconciler").one()
    assert job.run_count == 1
    assert job.last_run_status == "success"
    assert job.last_run_for == date(2025, 3, 10)


def test_disabled_job_is_skipped(site):
    SchedulerService.toggle_job("contract_expiry_reminders", False)

    outcome = SchedulerService.run_job("contract_expiry_reminders", now=NOW)

    assert outcome["status"] == "skipped"


def test_unknown_job(site):
    outcome = SchedulerService.run_job("no_such_job")

    assert outcome["status"] == "error"
