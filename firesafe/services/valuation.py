"""
Derived money values.

Project.total_value and Invoice.subtotal / tax_amount / total are caches of
their source rows.  These two functions are the only code that writes them;
every mutation that can change a price or an invoice line calls one of them.
"""

from sqlalchemy import func, select

from firesafe.models import db
from firesafe.models.project import Checklist, WorkOrder


def project_work_order_total(project_id):
    """Sum of WorkOrder.price over every checklist of the project."""
    stmt = (
        select(func.coalesce(func.sum(WorkOrder.price), 0.0))
        .join(Checklist, WorkOrder.checklist_id == Checklist.id)
        .where(Checklist.project_id == project_id)
    )
    return float(db.session.execute(stmt).scalar_one())


def recalculate_project_total(project):
    """Recompute and store ``project.total_value``; returns the new value."""
    db.session.flush()
    project.total_value = project_work_order_total(project.id)
    return project.total_value


def recalculate_invoice_totals(invoice):
    """Recompute item totals, subtotal, tax and total from the invoice lines."""
    subtotal = 0.0
    for item in invoice.items:
        item.total = round((item.quantity or 0) * (item.unit_price or 0), 2)
        subtotal += item.total
    invoice.subtotal = round(subtotal, 2)
    invoice.tax_amount = round(invoice.subtotal * (invoice.tax_rate or 0) / 100.0, 2)
    invoice.total = round(invoice.subtotal + invoice.tax_amount, 2)
    return invoice.total
