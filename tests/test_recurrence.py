"""
Tests: work-order template expansion.

Pure functions; no database rows are written.
"""

from datetime import date

import pytest

from firesafe.services.recurrence import (
    WorkOrderTemplate,
    expand_template,
    expand_templates,
    months_between,
)
from firesafe.utils.helpers import add_months


JAN_1 = date(2025, 1, 1)
JUN_1 = date(2025, 6, 1)


def test_monthly_template_stops_before_end_date():
    template = WorkOrderTemplate("Extinguisher check", price=50.0, recurring_type="MONTHLY")

    drafts = expand_template(template, JAN_1, JUN_1)

    assert [d.scheduled_date for d in drafts] == [
        date(2025, 1, 1), date(2025, 2, 1), date(2025, 3, 1), date(2025, 4, 1), date(2025, 5, 1),
    ]
    assert [d.occurrence_index for d in drafts] == [1, 2, 3, 4, 5]
    assert drafts[0].description == "Extinguisher check (Month1)"
    assert drafts[4].description == "Extinguisher check (Month5)"
    assert all(d.price == 50.0 for d in drafts)


def test_quarterly_template_over_same_window():
    template = WorkOrderTemplate("Sprinkler test", recurring_type="QUARTERLY")

    drafts = expand_template(template, JAN_1, JUN_1)

    assert [d.scheduled_date for d in drafts] == [date(2025, 1, 1), date(2025, 4, 1)]
    assert [d.description for d in drafts] == ["Sprinkler test (Q1)", "Sprinkler test (Q2)"]


def test_base_after_end_yields_no_recurring_occurrences():
    template = WorkOrderTemplate("Alarm panel", recurring_type="MONTHLY")

    assert expand_template(template, JUN_1, JAN_1) == []


def test_once_template_yields_single_undated_index():
    template = WorkOrderTemplate("Install hydrant", price=900.0, scheduled_date=date(2025, 3, 15))

    drafts = expand_template(template, JAN_1, JUN_1)

    assert len(drafts) == 1
    assert drafts[0].scheduled_date == date(2025, 3, 15)
    assert drafts[0].occurrence_index is None
    assert drafts[0].description == "Install hydrant"


def test_once_template_falls_back_to_base_date():
    drafts = expand_template(WorkOrderTemplate("Survey"), JUN_1, JAN_1)

    assert len(drafts) == 1
    assert drafts[0].scheduled_date == JUN_1


def test_missing_end_date_uses_window():
    template = WorkOrderTemplate("Monthly walk-through", recurring_type="MONTHLY")

    drafts = expand_template(template, JAN_1, window_days=90)

    # 2025-01-01 + 90 days = 2025-04-01, exclusive
    assert [d.scheduled_date for d in drafts] == [date(2025, 1, 1), date(2025, 2, 1), date(2025, 3, 1)]


def test_unknown_recurring_type_rejected():
    with pytest.raises(ValueError):
        expand_template(WorkOrderTemplate("Odd", recurring_type="WEEKLY"), JAN_1, JUN_1)


def test_expand_templates_orders_continuously():
    templates = [
        WorkOrderTemplate("Survey"),
        WorkOrderTemplate("Sprinkler test", recurring_type="QUARTERLY"),
    ]

    drafts = expand_templates(templates, JAN_1, JUN_1, start_order=3)

    assert [d.order for d in drafts] == [3, 4, 5]


def test_months_between_rounds_up_and_clamps():
    assert months_between(JAN_1, JUN_1) == 6
    assert months_between(JAN_1, date(2025, 1, 31)) == 1
    assert months_between(JUN_1, JAN_1) == 0


def test_add_months_clamps_to_month_end():
    assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)
    assert add_months(date(2025, 12, 15), 1) == date(2026, 1, 15)
