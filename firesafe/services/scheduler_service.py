"""
Fire-safety contract management
Scheduler Service.

Job registry and run bookkeeping.  Nothing here runs on a timer: the
platform cron hits ``POST /api/v1/cron/reconcile`` (or runs
``flask reconcile``), which executes the registered jobs through
``SchedulerService.run_job`` and records each run on its ScheduledJob row.

Architecture:
    - register_job: decorator adding a function to the registry
    - SchedulerService: persistence and execution of registered jobs
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from flask import Flask

from firesafe.models import db
from firesafe.models.scheduling import RUN_FAILED, RUN_SUCCESS, ScheduledJob
from firesafe.utils.helpers import utc_today

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("work_order_reconciler")
        def reconcile(app, now=None):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


class SchedulerService:
    """Executes registered jobs inside the Flask app context."""

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def ensure_job_record(cls, job_name: str) -> ScheduledJob:
        job = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job is None:
            doc = (_job_registry[job_name].__doc__ or "").strip()
            job = ScheduledJob(
                job_name=job_name,
                description=doc.splitlines()[0] if doc else f"Scheduled job: {job_name}",
            )
            db.session.add(job)
            db.session.flush()
        return job

    @classmethod
    def run_job(cls, job_name: str, now=None) -> dict:
        """
        Execute a single job by name with one clock value.

        Returns:
            Dict with job_name, status (success/failed/skipped/error),
            duration_ms, result and error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if not cls._app:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        now = now or datetime.now(timezone.utc)
        job = cls.ensure_job_record(job_name)
        db.session.commit()
        if not job.is_enabled:
            logger.info("Job %s is disabled; skipping", job_name, extra={"job_name": job_name})
            return {"job_name": job_name, "status": "skipped", "result": None, "error": None}

        start = time.monotonic()
        result = None
        error = None
        status = RUN_SUCCESS
        try:
            result = fn(cls._app, now=now)
        except Exception as exc:
            # A failed job is recorded on its row; the remaining jobs still run
            status = RUN_FAILED
            error = str(exc)
            db.session.rollback()
            logger.exception("Job %s failed", job_name, extra={"job_name": job_name})
        duration_ms = int((time.monotonic() - start) * 1000)

        job = ScheduledJob.query.filter_by(job_name=job_name).one()
        job.record_run(
            run_for=utc_today(now),
            status=status,
            duration_ms=duration_ms,
            result=result if isinstance(result, dict) else {"output": str(result)},
            error=error,
        )
        db.session.commit()

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def run_all(cls, now=None) -> list[dict]:
        now = now or datetime.now(timezone.utc)
        return [cls.run_job(name, now=now) for name in _job_registry]

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a registered job; None for unknown names."""
        if job_name not in _job_registry:
            return None
        job = cls.ensure_job_record(job_name)
        job.set_enabled(enabled)
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "disabled",
                    extra={"job_name": job_name})
        return job.to_dict()

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """Registered jobs with their stored state (None before the first run)."""
        records = {j.job_name: j for j in ScheduledJob.query.all()}
        return [
            {
                "job_name": name,
                "registered": True,
                "db_record": records[name].to_dict() if name in records else None,
            }
            for name in _job_registry
        ]
