"""
Recurrence generator: work-order template → dated occurrences.

Pure functions only; callers persist the returned drafts.

    templates = [WorkOrderTemplate("Extinguisher check", price=50, recurring_type="QUARTERLY")]
    drafts = expand_templates(templates, base_date=date(2025, 1, 1), end_date=date(2025, 12, 31))

Counting rule: the number of candidate occurrences is
``ceil(months_between / interval)`` where ``months_between`` uses 30-day
months.  Generation stops at the first candidate on or after ``end_date``.
"""

import math
from dataclasses import dataclass
from datetime import date, timedelta

from firesafe.models.project import (
    RECURRING_MONTHLY,
    RECURRING_ONCE,
    RECURRING_QUARTERLY,
    RECURRING_TYPES,
)
from firesafe.utils.helpers import add_months

DEFAULT_WINDOW_DAYS = 365

INTERVAL_MONTHS = {
    RECURRING_MONTHLY: 1,
    RECURRING_QUARTERLY: 3,
}


@dataclass(frozen=True)
class WorkOrderTemplate:
    description: str
    price: float | None = None
    scheduled_date: date | None = None
    recurring_type: str = RECURRING_ONCE
    work_order_type: str | None = None


@dataclass(frozen=True)
class WorkOrderDraft:
    description: str
    price: float | None
    scheduled_date: date
    recurring_type: str
    occurrence_index: int | None
    order: int
    work_order_type: str | None = None


def months_between(start: date, end: date) -> int:
    """Whole 30-day months from start to end, rounded up; never negative."""
    days = (end - start).days
    return max(0, math.ceil(days / 30))


def occurrence_label(description: str, recurring_type: str, index: int) -> str:
    if recurring_type == RECURRING_QUARTERLY:
        return f"{description} (Q{index})"
    return f"{description} (Month{index})"


def expand_template(template, base_date, end_date=None, *, start_order=0,
                    window_days=DEFAULT_WINDOW_DAYS):
    """Expand one template into its dated occurrences.

    Args:
        template: WorkOrderTemplate.
        base_date: Window start; the template's own date wins when set.
        end_date: Window end (exclusive for recurring templates).
            Defaults to ``base_date + window_days``.
        start_order: Display order assigned to the first draft.

    Returns:
        list[WorkOrderDraft] ordered by date.

    Raises:
        ValueError: unknown recurring type.
    """
    recurring_type = template.recurring_type or RECURRING_ONCE
    if recurring_type not in RECURRING_TYPES:
        raise ValueError(f"Unknown recurring type: {recurring_type}")

    start = template.scheduled_date or base_date
    if end_date is None:
        end_date = start + timedelta(days=window_days)

    if recurring_type == RECURRING_ONCE:
        return [WorkOrderDraft(
            description=template.description,
            price=template.price,
            scheduled_date=start,
            recurring_type=RECURRING_ONCE,
            occurrence_index=None,
            order=start_order,
            work_order_type=template.work_order_type,
        )]

    interval = INTERVAL_MONTHS[recurring_type]
    count = math.ceil(months_between(start, end_date) / interval)

    drafts = []
    for i in range(count):
        occurrence_date = add_months(start, i * interval)
        if occurrence_date >= end_date:
            break
        drafts.append(WorkOrderDraft(
            description=occurrence_label(template.description, recurring_type, i + 1),
            price=template.price,
            scheduled_date=occurrence_date,
            recurring_type=recurring_type,
            occurrence_index=i + 1,
            order=start_order + i,
            work_order_type=template.work_order_type,
        ))
    return drafts


def expand_templates(templates, base_date, end_date=None, *, start_order=0,
                     window_days=DEFAULT_WINDOW_DAYS):
    """Expand several templates; ``order`` runs continuously across them."""
    drafts = []
    for template in templates:
        batch = expand_template(
            template, base_date, end_date,
            start_order=start_order + len(drafts), window_days=window_days,
        )
        drafts.extend(batch)
    return drafts
