"""
Fire-safety contract management
Scheduled job registry.

Models:
    - ScheduledJob: one row per registered reconciler job, with the outcome
      of its most recent run
"""

from datetime import date, datetime, timezone

from firesafe.models import db


JOB_ACTIVE = "active"
JOB_PAUSED = "paused"
JOB_STATUSES = {JOB_ACTIVE, JOB_PAUSED}

RUN_SUCCESS = "success"
RUN_FAILED = "failed"

DEFAULT_CRON = "0 8 * * *"


def _iso(value):
    return value.isoformat() if isinstance(value, (date, datetime)) else value


class ScheduledJob(db.Model):
    """
    Bookkeeping for a reconciler job.

    Runs are triggered from outside (platform cron or ``flask reconcile``);
    ``cron_expression`` documents the expected cadence and is not evaluated
    here.  ``last_run_for`` is the UTC day the run reconciled, which differs
    from ``last_run_at`` when a run is replayed with an explicit clock.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Registry key, e.g. work_order_reconciler")
    description = db.Column(db.String(500), default="")
    cron_expression = db.Column(db.String(50), default=DEFAULT_CRON)
    status = db.Column(db.String(20), nullable=False, default=JOB_ACTIVE)
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_for = db.Column(db.Date, nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True)
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    failure_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def set_enabled(self, enabled):
        self.is_enabled = bool(enabled)
        self.status = JOB_ACTIVE if self.is_enabled else JOB_PAUSED

    def record_run(self, *, run_for, status=RUN_SUCCESS, duration_ms=0, result=None, error=None):
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_for = run_for
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == RUN_FAILED:
            self.failure_count = (self.failure_count or 0) + 1
            self.last_error = str(error) if error else None
        else:
            self.last_error = None

    def to_dict(self):
        return {c.name: _iso(getattr(self, c.name)) for c in self.__table__.columns}

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} [{self.status}]>"
