"""
Time tracking — manual entries, timers, derived actual hours, reports.
"""

from datetime import datetime, timedelta, timezone

import pytest

from taskboard.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from taskboard.models import db
from taskboard.models.board import Activity, Card, TimeEntry
from taskboard.services import board_service, time_tracking


@pytest.fixture()
def card(admin, actor, columns):
    return board_service.create_card(actor(admin), columns[0].id, {"title": "Timed"}).entity


def _log(actor, card, **data):
    return time_tracking.log_time(actor, card.id, data).entity


def _card_feed(card):
    return Activity.query.filter_by(card_id=card.id).count()


class TestEntries:
    def test_log_duration_updates_actual_hours(self, admin, actor, card):
        _log(actor(admin), card, duration_minutes=90)
        _log(actor(admin), card, duration_minutes=30)
        assert db.session.get(Card, card.id).actual_hours == 2.0

    def test_log_interval(self, admin, actor, card):
        entry = time_tracking.log_time(actor(admin), card.id, {
            "started_at": "2026-03-02T09:00:00Z", "ended_at": "2026-03-02T10:15:00Z",
        }).to_dict()
        assert entry["duration_minutes"] == 75
        assert entry["entry_date"] == "2026-03-02"

    @pytest.mark.parametrize("data", [
        {"duration_minutes": 0},
        {"duration_minutes": "60"},
        {},
        {"started_at": "2026-03-02T10:00:00", "ended_at": "2026-03-02T09:00:00"},
    ])
    def test_invalid_entries(self, admin, actor, card, data):
        with pytest.raises(ValidationError):
            time_tracking.log_time(actor(admin), card.id, data)

    def test_delete_recomputes(self, admin, actor, card):
        keep = _log(actor(admin), card, duration_minutes=60)
        drop = _log(actor(admin), card, duration_minutes=60)
        time_tracking.delete_entry(actor(admin), drop.id)
        assert db.session.get(Card, card.id).actual_hours == 1.0
        assert [e["id"] for e in time_tracking.list_entries(actor(admin), card.id)] == [keep.id]

    def test_only_author_deletes(self, admin, member, actor, card):
        entry = _log(actor(admin), card, duration_minutes=10)
        with pytest.raises(PermissionDenied):
            time_tracking.delete_entry(actor(member), entry.id)

    def test_outsider_cannot_log(self, outsider, actor, card):
        with pytest.raises(PermissionDenied):
            time_tracking.log_time(actor(outsider), card.id, {"duration_minutes": 10})


class TestActivityAndEvents:
    def test_log_records_activity_and_event(self, admin, actor, card):
        before = _card_feed(card)
        result = time_tracking.log_time(actor(admin), card.id, {"duration_minutes": 30})

        assert _card_feed(card) == before + 1
        assert result.event.type == "card_updated"
        assert result.event.payload == {"fields": ["actual_hours"]}
        payload = result.to_dict()
        assert payload["activity"]["feed_position"] == before
        assert payload["activity"]["new_value"]["actual_hours"] == 0.5

    def test_delete_records_activity(self, admin, actor, card):
        entry = _log(actor(admin), card, duration_minutes=30)
        before = _card_feed(card)

        result = time_tracking.delete_entry(actor(admin), entry.id)

        assert _card_feed(card) == before + 1
        assert result.event.type == "card_updated"
        assert result.activity.old_value["time_entry_id"] == entry.id
        assert result.to_dict()["id"] == entry.id

    def test_timer_start_and_stop_each_record_one_entry(self, admin, actor, card):
        before = _card_feed(card)
        started = time_tracking.start_timer(actor(admin), card.id)
        assert started.changed and started.event.card_id == card.id
        stopped = time_tracking.stop_timer(actor(admin))
        assert stopped.changed and stopped.event.type == "card_updated"
        assert _card_feed(card) == before + 2


class TestTimer:
    def test_single_running_timer_per_user(self, admin, actor, card, columns):
        other = board_service.create_card(actor(admin), columns[1].id, {"title": "Other"}).entity
        time_tracking.start_timer(actor(admin), card.id)
        with pytest.raises(ConflictError):
            time_tracking.start_timer(actor(admin), other.id)

    def test_stop_records_duration(self, admin, actor, card):
        started = time_tracking.start_timer(actor(admin), card.id).entity
        entry = db.session.get(TimeEntry, started.id)
        entry.started_at = datetime.now(timezone.utc) - timedelta(minutes=45)
        db.session.commit()

        stopped = time_tracking.stop_timer(actor(admin)).to_dict()
        assert stopped["is_running"] is False
        assert 44 <= stopped["duration_minutes"] <= 46
        assert db.session.get(Card, card.id).actual_hours == round(stopped["duration_minutes"] / 60.0, 2)

    def test_running_timer_not_counted(self, admin, actor, card):
        time_tracking.start_timer(actor(admin), card.id)
        assert db.session.get(Card, card.id).actual_hours in (None, 0, 0.0)

    def test_stop_without_timer(self, admin, actor):
        with pytest.raises(NotFoundError):
            time_tracking.stop_timer(actor(admin))


class TestReport:
    def test_grouping(self, board, admin, member, actor, card):
        _log(actor(admin), card, duration_minutes=60, entry_date="2026-03-02")
        _log(actor(admin), card, duration_minutes=30, entry_date="2026-03-04")
        _log(actor(member), card, duration_minutes=15, entry_date="2026-04-01")
        time_tracking.start_timer(actor(member), card.id)

        by_week = time_tracking.board_report(actor(admin), board.id, group_by="week")
        assert by_week["total_minutes"] == 105
        assert by_week["buckets"] == [
            {"period": "2026-03-02", "minutes": 90},
            {"period": "2026-03-30", "minutes": 15},
        ]
        assert by_week["by_user"] == [{"user_id": admin.id, "minutes": 90}, {"user_id": member.id, "minutes": 15}]

        march = time_tracking.board_report(actor(admin), board.id, "2026-03-01", "2026-03-31", group_by="month")
        assert march["buckets"] == [{"period": "2026-03", "minutes": 90}]

    def test_bad_group_by(self, board, admin, actor):
        with pytest.raises(ValidationError):
            time_tracking.board_report(actor(admin), board.id, group_by="year")
