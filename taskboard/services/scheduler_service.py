"""
Taskboard Platform
Scheduler Service.

Jobs are plain functions taking the Flask app. They register with
``@register_job(name, every=seconds)``; ``ScheduledJob`` rows carry the
interval, the enabled flag and the last outcome so both survive restarts.
Jobs run either from the optional daemon thread (``SCHEDULER_ENABLED``) or
on demand through ``/api/v1/scheduler/jobs/<name>/trigger``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

from flask import Flask

from taskboard.models import db
from taskboard.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)

HOUR = 3600
DAY = 24 * HOUR


@dataclass(frozen=True)
class JobSpec:
    name: str
    fn: Callable[[Flask], Any]
    every: int
    description: str


_job_registry: dict[str, JobSpec] = {}


def register_job(name: str, every: int = DAY):
    """Register ``fn(app)`` as background job ``name`` running every ``every`` seconds."""
    def decorator(fn):
        doc = (fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0]
        _job_registry[name] = JobSpec(name=name, fn=fn, every=every, description=doc[:500])
        return fn
    return decorator


def get_registered_jobs() -> dict[str, JobSpec]:
    return dict(_job_registry)


def _record(name: str) -> ScheduledJob | None:
    return ScheduledJob.query.filter_by(job_name=name).first()


class SchedulerService:
    """Registry-backed job runner bound to one Flask app."""

    _app: Flask | None = None
    _running: bool = False
    _thread: threading.Thread | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("Scheduler bound to app with %d job(s)", len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[str]:
        """Create a ScheduledJob row for every registered job lacking one; return their names."""
        if cls._app is None:
            return []
        with cls._app.app_context():
            missing = [spec for name, spec in _job_registry.items() if _record(name) is None]
            for spec in missing:
                db.session.add(ScheduledJob(
                    job_name=spec.name, description=spec.description, interval_seconds=spec.every,
                ))
            if missing:
                db.session.commit()
                logger.info("Registered %d scheduled job row(s)", len(missing))
            return [spec.name for spec in missing]

    # ── Execution ─────────────────────────────────────────────────────────

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """Run one job in its own app context and store the outcome on its row."""
        spec = _job_registry.get(job_name)
        if spec is None:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        if cls._app is None:
            return {"job_name": job_name, "status": "error", "error": "Scheduler not initialized"}

        started = time.monotonic()
        outcome, result, error = "success", None, None
        try:
            with cls._app.app_context():
                result = spec.fn(cls._app)
        except Exception as exc:
            outcome, error = "failed", str(exc)
            logger.exception("Job %s failed", job_name)
        duration_ms = int((time.monotonic() - started) * 1000)

        with cls._app.app_context():
            row = _record(job_name)
            if row is not None:
                row.finish_run(
                    outcome, duration_ms,
                    result=result if isinstance(result, dict) else {"output": repr(result)},
                    error=error,
                )
                db.session.commit()

        logger.info("Job %s finished: %s in %dms", job_name, outcome, duration_ms)
        return {
            "job_name": job_name,
            "status": outcome,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    # ── Inspection ────────────────────────────────────────────────────────

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name, spec in _job_registry.items():
            row = _record(name)
            jobs.append({
                "job_name": name,
                "description": spec.description,
                "every_seconds": spec.every,
                "db_record": row.to_dict() if row else None,
            })
        return jobs

    @classmethod
    def get_job_status(cls, job_name: str) -> dict | None:
        row = _record(job_name)
        return row.to_dict() if row else None

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        row = _record(job_name)
        if row is None:
            return None
        row.is_enabled = enabled
        db.session.commit()
        logger.info("Job %s %s", job_name, "enabled" if enabled else "paused")
        return row.to_dict()

    @classmethod
    def due_jobs(cls, now: datetime | None = None) -> list[str]:
        """Registered jobs whose row is enabled and whose interval has elapsed."""
        now = now or datetime.now(timezone.utc)
        due = []
        for name in _job_registry:
            row = _record(name)
            if row is not None and row.is_due(now):
                due.append(name)
        return due

    # ── Background loop ───────────────────────────────────────────────────

    @classmethod
    def start(cls, poll_seconds: int = 60) -> None:
        if cls._running or cls._app is None:
            return
        cls.ensure_jobs_registered()
        cls._running = True

        def _loop():
            while cls._running:
                with cls._app.app_context():
                    names = cls.due_jobs()
                for name in names:
                    cls.run_job(name)
                time.sleep(poll_seconds)

        cls._thread = threading.Thread(target=_loop, name="taskboard-scheduler", daemon=True)
        cls._thread.start()
        logger.info("Scheduler thread started (poll=%ss)", poll_seconds)

    @classmethod
    def stop(cls) -> None:
        cls._running = False
