"""
Fire-safety contract management
Scheduled Jobs.

Jobs:
    - work_order_reconciler: reminders and auto-progress for dated work orders
    - contract_expiry_reminders: reminders for signed contracts nearing their end
"""

from __future__ import annotations

from typing import Any

from firesafe.services import reconciler
from firesafe.services.scheduler_service import register_job


@register_job("work_order_reconciler")
def reconcile_work_orders(app, now=None) -> dict[str, Any]:
    """Send work-order reminders and start work orders due today."""
    return reconciler.reconcile_work_orders(now)


@register_job("contract_expiry_reminders")
def remind_expiring_contracts(app, now=None) -> dict[str, Any]:
    """Remind both parties of signed contracts nearing their end date."""
    return reconciler.remind_expiring_contracts(now)
