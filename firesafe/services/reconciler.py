"""
Daily date-driven reconciliation.

Work orders (stage SCHEDULED / REQUESTED, with a date, in a PENDING or
ACTIVE project):
    days until date ∈ {5, 3, 1, 0}  contractor reminder
    days until date == 0            client "starting today" notice and
                                    SCHEDULED → IN_PROGRESS

Signed contracts with an end date:
    days until end ∈ {10, 5, 3, 1}  contractor reminder
    days until end == 1             client reminder

Every notification goes through ``notify_once`` (one per user, entity, type
and day), and auto-progress only touches SCHEDULED items, so running the
job twice on one day changes nothing the second time.
"""

import logging
from datetime import datetime, timezone

from firesafe.core.actor import SYSTEM_ACTOR
from firesafe.core.exceptions import ConflictError
from firesafe.models.billing import CONTRACT_SIGNED, Contract
from firesafe.models.project import (
    PROJECT_ACTIVE,
    PROJECT_PENDING,
    STAGE_IN_PROGRESS,
    STAGE_REQUESTED,
    STAGE_SCHEDULED,
    Checklist,
    Project,
    WorkOrder,
)
from firesafe.services.notification import NotificationService
from firesafe.services.unit_of_work import transaction
from firesafe.services.work_order_service import transition_work_order
from firesafe.utils.helpers import utc_today

logger = logging.getLogger(__name__)

WORK_ORDER_REMINDER_DAYS = {5, 3, 1, 0}
CONTRACT_CONTRACTOR_REMINDER_DAYS = {10, 5, 3, 1}
CONTRACT_CLIENT_REMINDER_DAYS = {1}


def _day_text(days):
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def reconcile_work_orders(now=None):
    """Reminders and auto-progress for dated work orders.

    Returns:
        {"processed", "notifications_created", "auto_progressed", "skipped"}
    """
    now = now or datetime.now(timezone.utc)
    today = utc_today(now)
    results = {"processed": 0, "notifications_created": 0, "auto_progressed": 0, "skipped": 0}

    with transaction():
        rows = (
            WorkOrder.query.join(Checklist, WorkOrder.checklist_id == Checklist.id)
            .join(Project, Checklist.project_id == Project.id)
            .filter(
                WorkOrder.scheduled_date.isnot(None),
                WorkOrder.stage.in_([STAGE_SCHEDULED, STAGE_REQUESTED]),
                Project.status.in_([PROJECT_PENDING, PROJECT_ACTIVE]),
            )
            .add_columns(Project.branch_id)
            .order_by(WorkOrder.id)
            .all()
        )
        for wo, branch_id in rows:
            results["processed"] += 1
            diff_days = (wo.scheduled_date - today).days
            if diff_days not in WORK_ORDER_REMINDER_DAYS:
                continue

            day_text = _day_text(diff_days)
            for user_id in NotificationService.contractor_user_ids(branch_id):
                created = NotificationService.notify_once(
                    user_id, "WORK_ORDER_REMINDER",
                    "Work Order Due Today" if diff_days == 0 else "Work Order Reminder",
                    f'"{wo.description}" is scheduled {day_text}',
                    f"/dashboard/branches/{branch_id}?tab=checklist",
                    related_id=wo.id, related_type="ChecklistItem", now=now,
                )
                if created is not None:
                    results["notifications_created"] += 1

            if diff_days != 0:
                continue

            for user_id in NotificationService.client_user_ids(branch_id):
                created = NotificationService.notify_once(
                    user_id, "WORK_ORDER_STARTED",
                    "Work Order Starting Today",
                    f'"{wo.description}" is scheduled to begin today',
                    f"/portal/branches/{branch_id}?tab=checklist",
                    related_id=wo.id, related_type="ChecklistItem", now=now,
                )
                if created is not None:
                    results["notifications_created"] += 1

            if wo.stage == STAGE_SCHEDULED:
                try:
                    transition_work_order(wo.id, STAGE_IN_PROGRESS, SYSTEM_ACTOR, now=now)
                    results["auto_progressed"] += 1
                except ConflictError as exc:
                    results["skipped"] += 1
                    logger.warning("Auto-progress skipped for work order %s: %s", wo.id, exc,
                                   extra={"work_order_id": wo.id})

    logger.info("Work order reconciliation: %s", results)
    return results


def remind_expiring_contracts(now=None):
    """Expiry reminders for SIGNED contracts.

    Returns:
        {"processed", "notifications_created"}
    """
    now = now or datetime.now(timezone.utc)
    today = utc_today(now)
    results = {"processed": 0, "notifications_created": 0}

    with transaction():
        contracts = (
            Contract.query.filter(
                Contract.status == CONTRACT_SIGNED,
                Contract.end_date.isnot(None),
                Contract.end_date >= today,
            )
            .order_by(Contract.id)
            .all()
        )
        for contract in contracts:
            results["processed"] += 1
            diff_days = (contract.end_date - today).days
            recipients = []
            if diff_days in CONTRACT_CONTRACTOR_REMINDER_DAYS:
                recipients += NotificationService.contractor_user_ids(contract.branch_id)
            if diff_days in CONTRACT_CLIENT_REMINDER_DAYS:
                recipients += NotificationService.client_user_ids(contract.branch_id)

            for user_id in recipients:
                created = NotificationService.notify_once(
                    user_id, "CONTRACT_EXPIRING",
                    "Contract Expiring",
                    f'"{contract.title}" ends {_day_text(diff_days)}',
                    related_id=contract.id, related_type="Contract", now=now,
                )
                if created is not None:
                    results["notifications_created"] += 1

    logger.info("Contract expiry reminders: %s", results)
    return results

