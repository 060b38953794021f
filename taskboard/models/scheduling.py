"""
Taskboard Platform
Background job bookkeeping.

Models:
    - ScheduledJob: one row per registered job; interval, enabled flag and last outcome
"""

from datetime import datetime, timedelta, timezone

from taskboard.models import db


RUN_OUTCOMES = {"success", "failed"}


def _utcnow():
    return datetime.now(timezone.utc)


def _aware(dt):
    # SQLite hands back naive datetimes
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class ScheduledJob(db.Model):
    """
    Run history for a background job.

    The job code itself lives in the scheduler registry; this row keeps what
    must survive a restart: how often it runs, whether an operator paused it
    and how the last run went.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="Registry key: recurrence_check, due_date_scanner, ...")
    description = db.Column(db.String(500), default="")
    interval_seconds = db.Column(db.Integer, nullable=False, default=86400)
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_outcome = db.Column(db.String(20), nullable=True, comment="success | failed")
    last_duration_ms = db.Column(db.Integer, nullable=True)
    last_result = db.Column(db.JSON, nullable=True)
    last_error = db.Column(db.Text, nullable=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    failure_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def state(self):
        return "active" if self.is_enabled else "paused"

    @property
    def next_run_at(self):
        last = _aware(self.last_run_at)
        if last is None:
            return None
        return last + timedelta(seconds=self.interval_seconds or 0)

    def is_due(self, now):
        if not self.is_enabled:
            return False
        next_run = self.next_run_at
        return next_run is None or now >= next_run

    def finish_run(self, outcome, duration_ms, result=None, error=None):
        if outcome not in RUN_OUTCOMES:
            raise ValueError(f"unknown run outcome: {outcome}")
        self.last_run_at = _utcnow()
        self.last_outcome = outcome
        self.last_duration_ms = duration_ms
        self.last_result = result
        self.run_count = (self.run_count or 0) + 1
        if outcome == "failed":
            self.failure_count = (self.failure_count or 0) + 1
            self.last_error = str(error) if error else None
        else:
            self.last_error = None

    def to_dict(self):
        next_run = self.next_run_at
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "interval_seconds": self.interval_seconds,
            "is_enabled": self.is_enabled,
            "state": self.state,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "next_run_at": next_run.isoformat() if next_run else None,
            "last_outcome": self.last_outcome,
            "last_duration_ms": self.last_duration_ms,
            "last_result": self.last_result,
            "last_error": self.last_error,
            "run_count": self.run_count,
            "failure_count": self.failure_count,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} every {self.interval_seconds}s [{self.state}]>"
