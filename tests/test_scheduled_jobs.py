"""
Scheduled jobs & scheduler service tests.

Covers:
    1. Job registry and DB records
    2. run_job bookkeeping (success, unknown job)
    3. recurrence_check materializes due occurrences
    4. due_date_scanner notifies card members and raises events once per day
    5. stale_notification_cleanup retention
    6. due_jobs interval logic and toggling
    7. /api/v1/scheduler endpoints (admin only)
"""

from datetime import datetime, timedelta, timezone

import pytest

from taskboard.models import db
from taskboard.models.board import Card
from taskboard.models.notification import Notification
from taskboard.models.scheduling import ScheduledJob
from taskboard.services import board_service
from taskboard.services.scheduled_jobs import (
    cleanup_stale_notifications,
    materialize_recurring_cards,
    scan_due_dates,
)
from taskboard.services.scheduler_service import SchedulerService, get_registered_jobs

JOB_NAMES = {"recurrence_check", "due_date_scanner", "scheduled_workflows", "stale_notification_cleanup"}


def _today():
    return datetime.now(timezone.utc).date()


def _due_card(actor, column, days, **data):
    due = (_today() + timedelta(days=days)).isoformat()
    return board_service.create_card(actor, column.id, {"title": f"Due {days:+d}", "due_date": due, **data}).entity


# ═════════════════════════════════════════════════════════════════════════════
# Registry
# ═════════════════════════════════════════════════════════════════════════════


class TestRegistry:
    def test_all_jobs_registered(self):
        assert JOB_NAMES <= set(get_registered_jobs())

    def test_ensure_jobs_registered_creates_records_once(self):
        assert len(SchedulerService.ensure_jobs_registered()) == len(get_registered_jobs())
        assert SchedulerService.ensure_jobs_registered() == []
        names = {row.job_name for row in ScheduledJob.query.all()}
        assert names >= JOB_NAMES

    def test_default_intervals(self):
        SchedulerService.ensure_jobs_registered()
        status = SchedulerService.get_job_status("recurrence_check")
        assert status["interval_seconds"] == 3600
        assert status["is_enabled"] is True

    def test_unknown_job(self):
        result = SchedulerService.run_job("does_not_exist")
        assert result["status"] == "error"
        assert "Unknown job" in result["error"]


# ═════════════════════════════════════════════════════════════════════════════
# run_job bookkeeping
# ═════════════════════════════════════════════════════════════════════════════


class TestRunJob:
    def test_run_job_records_success(self):
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job("stale_notification_cleanup")
        assert result["status"] == "success"
        assert result["result"]["deleted"] == 0

        db.session.expire_all()
        record = ScheduledJob.query.filter_by(job_name="stale_notification_cleanup").one()
        assert record.run_count == 1
        assert record.last_outcome == "success"
        assert record.last_run_at is not None

    def test_failed_job_counts_error(self, monkeypatch):
        from taskboard.services import scheduler_service

        def boom(app):
            raise RuntimeError("disk full")

        spec = scheduler_service._job_registry["stale_notification_cleanup"]
        monkeypatch.setitem(
            scheduler_service._job_registry, spec.name, scheduler_service.JobSpec(spec.name, boom, spec.every, spec.description),
        )
        SchedulerService.ensure_jobs_registered()
        result = SchedulerService.run_job("stale_notification_cleanup")
        assert result["status"] == "failed"
        assert "disk full" in result["error"]

        db.session.expire_all()
        record = ScheduledJob.query.filter_by(job_name="stale_notification_cleanup").one()
        assert record.failure_count == 1
        assert record.last_error == "disk full"


# ═════════════════════════════════════════════════════════════════════════════
# Jobs
# ═════════════════════════════════════════════════════════════════════════════


class TestRecurrenceJob:
    def test_materializes_due_occurrences(self, app, admin, actor, columns):
        start = (_today() - timedelta(days=2)).isoformat()
        template = board_service.create_card(actor(admin), columns[0].id, {
            "title": "Daily check", "due_date": start, "recurrence": {"type": "daily"},
        }).entity

        stats = materialize_recurring_cards(app)
        assert stats == {"checked": 1, "created": 3, "failed": 0, "as_of": _today().isoformat()}
        instances = Card.query.filter_by(parent_recurrence_id=template.id).all()
        assert len(instances) == 3

        assert materialize_recurring_cards(app)["created"] == 0


class TestDueDateScanner:
    def test_notifies_members_of_due_and_overdue_cards(self, app, admin, member, actor, columns):
        a = actor(admin)
        soon = _due_card(a, columns[0], 1, member_ids=[member.id])
        late = _due_card(a, columns[1], -2, member_ids=[member.id, admin.id])
        _due_card(a, columns[0], 10, member_ids=[member.id])

        results = scan_due_dates(app)
        assert results == {"due_soon": 1, "overdue": 1, "notifications_created": 3, "already_alerted": 0, "errors": 0}

        types = {(n.related_card_id, n.user_id): n.type for n in Notification.query.all()}
        assert types[(soon.id, member.id)] == "due_date"
        assert types[(late.id, admin.id)] == "warning"

    def test_deduplicates_within_a_day(self, app, admin, member, actor, columns):
        _due_card(actor(admin), columns[0], 0, member_ids=[member.id])
        assert scan_due_dates(app)["notifications_created"] == 1
        assert scan_due_dates(app)["notifications_created"] == 0
        assert Notification.query.count() == 1

    def test_rescan_does_not_refire_rules(self, app, board, admin, actor, columns):
        from taskboard.models.automation import WorkflowExecution
        from taskboard.services import automation

        a = actor(admin)
        rule = automation.create_rule(a, {
            "name": "Overdue ping", "board_id": board.id, "trigger_type": "card_overdue",
            "actions": [{"type": "add_comment", "config": {"text": "overdue"}}],
        })
        # no members, so no notification guards the second scan
        late = _due_card(a, columns[0], -1)

        assert scan_due_dates(app)["already_alerted"] == 0
        assert scan_due_dates(app)["already_alerted"] == 1
        assert WorkflowExecution.query.filter_by(rule_id=rule.id).count() == 1
        assert db.session.get(Card, late.id).due_alerted_on == _today()

    def test_changing_due_date_rearms_the_alert(self, app, admin, actor, columns):
        a = actor(admin)
        card = _due_card(a, columns[0], -1)
        scan_due_dates(app)
        board_service.update_card(a, card.id, {"due_date": _today().isoformat()})
        assert db.session.get(Card, card.id).due_alerted_on is None
        assert scan_due_dates(app)["already_alerted"] == 0

    def test_skips_completed_and_archived_cards(self, app, admin, member, actor, columns):
        a = actor(admin)
        done = _due_card(a, columns[0], -1, member_ids=[member.id])
        board_service.move_card(a, done.id, column_id=columns[2].id)
        archived = _due_card(a, columns[0], -1, member_ids=[member.id])
        board_service.archive_card(a, archived.id)

        results = scan_due_dates(app)
        assert results["overdue"] == 0
        assert Notification.query.count() == 0


class TestCleanupJob:
    def test_removes_old_read_notifications(self, app, member):
        old = datetime.now(timezone.utc) - timedelta(days=120)
        db.session.add_all([
            Notification(user_id=member.id, title="old read", is_read=True, created_at=old),
            Notification(user_id=member.id, title="old unread", is_read=False, created_at=old),
            Notification(user_id=member.id, title="fresh read", is_read=True),
        ])
        db.session.commit()

        result = cleanup_stale_notifications(app)
        assert result == {"deleted": 1, "retention_days": app.config.get("NOTIFICATION_RETENTION_DAYS", 90)}
        assert {n.title for n in Notification.query.all()} == {"old unread", "fresh read"}


# ═════════════════════════════════════════════════════════════════════════════
# Scheduling
# ═════════════════════════════════════════════════════════════════════════════


class TestDueJobs:
    def test_never_run_jobs_are_due(self):
        SchedulerService.ensure_jobs_registered()
        assert set(SchedulerService.due_jobs()) >= JOB_NAMES

    def test_recent_run_not_due(self):
        SchedulerService.ensure_jobs_registered()
        record = ScheduledJob.query.filter_by(job_name="due_date_scanner").one()
        record.last_run_at = datetime.now(timezone.utc) - timedelta(hours=1)
        db.session.commit()

        now = datetime.now(timezone.utc)
        assert "due_date_scanner" not in SchedulerService.due_jobs(now)
        assert "due_date_scanner" in SchedulerService.due_jobs(now + timedelta(days=1))

    def test_disabled_job_never_due(self):
        SchedulerService.ensure_jobs_registered()
        toggled = SchedulerService.toggle_job("recurrence_check", False)
        assert toggled["state"] == "paused"
        assert "recurrence_check" not in SchedulerService.due_jobs()

    def test_toggle_unknown_job(self):
        assert SchedulerService.toggle_job("nope", True) is None


# ═════════════════════════════════════════════════════════════════════════════
# API
# ═════════════════════════════════════════════════════════════════════════════


class TestSchedulerAPI:
    def test_list_jobs_admin_only(self, client, admin, member, auth_headers):
        assert client.get("/api/v1/scheduler/jobs", headers=auth_headers(member)).status_code == 403

        res = client.get("/api/v1/scheduler/jobs", headers=auth_headers(admin))
        assert res.status_code == 200
        assert {j["job_name"] for j in res.get_json()["jobs"]} >= JOB_NAMES

    def test_trigger_job(self, client, admin, auth_headers):
        res = client.post("/api/v1/scheduler/jobs/stale_notification_cleanup/trigger", headers=auth_headers(admin))
        assert res.status_code == 200
        assert res.get_json()["status"] == "success"

    def test_trigger_unknown_job(self, client, admin, auth_headers):
        res = client.post("/api/v1/scheduler/jobs/nope/trigger", headers=auth_headers(admin))
        assert res.status_code == 404

    @pytest.mark.parametrize("body, status", [({"enabled": False}, 200), ({}, 400)])
    def test_toggle(self, client, admin, auth_headers, body, status):
        res = client.patch("/api/v1/scheduler/jobs/due_date_scanner/toggle",
                           headers=auth_headers(admin), json=body)
        assert res.status_code == status
