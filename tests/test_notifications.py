"""
Notification dispatcher — fan-out, recipient scoping, read tracking.

Covers:
    1. notify_user validation (type, title, related references)
    2. notify_board_members reaches every current member, reports inactive ones
    3. Recipient scoping: other users' notifications look missing
    4. mark_read idempotence, mark_all_read, clear, cleanup
    5. Due-date notifications for card members
    6. /api/v1/notifications and /boards/<id>/notify endpoints
"""

from datetime import datetime, timedelta, timezone

import pytest

from taskboard.core.exceptions import NotFoundError, ValidationError
from taskboard.models import db
from taskboard.models.notification import Notification
from taskboard.services import board_service
from taskboard.services.notification import NotificationService


# ═════════════════════════════════════════════════════════════════════════════
# Dispatch
# ═════════════════════════════════════════════════════════════════════════════


class TestDispatch:
    def test_notify_user(self, member):
        notif = NotificationService.notify_user(member.id, "  Hello  ", "body", "mention")
        assert notif.id is not None
        assert notif.title == "Hello"
        assert notif.is_read is False

    @pytest.mark.parametrize("kwargs", [
        {"title": ""},
        {"ntype": "shout"},
        {"related_card_id": 9999},
        {"related_board_id": 9999},
    ])
    def test_notify_user_validation(self, member, kwargs):
        args = {"title": "Hi", "ntype": "info", **kwargs}
        with pytest.raises(ValidationError):
            NotificationService.notify_user(
                member.id, args.pop("title"), "", args.pop("ntype"), **args,
            )

    def test_unknown_recipient(self):
        with pytest.raises(NotFoundError):
            NotificationService.notify_user(424242, "Hi")

    def test_related_board_of_other_tenant_rejected(self, board, other_tenant, make_user):
        stranger = make_user("zed", tenant_obj=other_tenant)
        with pytest.raises(ValidationError):
            NotificationService.notify_user(stranger.id, "Hi", related_board_id=board.id)

    def test_board_fan_out_reaches_every_member(self, board, admin, member, make_user, actor):
        third = make_user("dave")
        board_service.add_board_member(actor(admin), board.id, third.id)

        outcome = NotificationService.notify_board_members(board.id, "Release", "v2 shipped")

        assert sorted(n.user_id for n in outcome.notifications) == sorted([admin.id, member.id, third.id])
        assert outcome.failures == []
        assert all(n.related_board_id == board.id for n in outcome.notifications)

    def test_board_fan_out_excludes_sender(self, board, admin, member):
        outcome = NotificationService.notify_board_members(board.id, "Ping", exclude_user_id=admin.id)
        assert [n.user_id for n in outcome.notifications] == [member.id]

    def test_inactive_member_reported_as_failure(self, board, admin, member):
        member.is_active = False
        db.session.commit()
        outcome = NotificationService.notify_board_members(board.id, "Ping")
        assert [n.user_id for n in outcome.notifications] == [admin.id]
        assert outcome.failures == [{"user_id": member.id, "error": "user inactive or missing"}]
        assert outcome.to_dict()["sent"] == 1

    def test_card_must_belong_to_board(self, board, admin, actor):
        other = board_service.create_board(actor(admin), {"title": "Other"}).entity
        card = board_service.create_card(actor(admin), other.columns[0].id, {"title": "Elsewhere"}).entity
        with pytest.raises(ValidationError):
            NotificationService.notify_board_members(board.id, "Ping", related_card_id=card.id)

    def test_card_due_notifies_members(self, admin, member, actor, columns):
        card = board_service.create_card(actor(admin), columns[0].id, {
            "title": "Report", "due_date": "2026-01-10", "member_ids": [admin.id, member.id],
        }).entity
        sent = NotificationService.notify_card_due(card, -2)
        assert {n.user_id for n in sent} == {admin.id, member.id}
        assert all(n.type == "warning" and n.title == "Overdue: Report" for n in sent)
        soon = NotificationService.notify_card_due(card, 1)[0]
        assert soon.type == "due_date"


# ═════════════════════════════════════════════════════════════════════════════
# Recipient-side operations
# ═════════════════════════════════════════════════════════════════════════════


class TestRecipientOperations:
    def test_list_is_newest_first_and_scoped(self, admin, member, actor):
        NotificationService.notify_user(member.id, "first")
        NotificationService.notify_user(member.id, "second")
        NotificationService.notify_user(admin.id, "admin only")

        items, total = NotificationService.list_for_user(actor(member))
        assert total == 2
        assert [n.title for n in items] == ["second", "first"]

    def test_other_users_notification_is_not_found(self, admin, member, actor):
        notif = NotificationService.notify_user(member.id, "private")
        with pytest.raises(NotFoundError):
            NotificationService.get(actor(admin), notif.id)
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(actor(admin), notif.id)

    def test_mark_read_is_idempotent(self, member, actor):
        notif = NotificationService.notify_user(member.id, "once")
        first = NotificationService.mark_read(actor(member), notif.id)
        read_at = first.read_at
        second = NotificationService.mark_read(actor(member), notif.id)
        assert second.is_read is True
        assert second.read_at == read_at
        assert NotificationService.unread_count(actor(member)) == 0

    def test_mark_all_read(self, member, actor):
        for title in ("a", "b", "c"):
            NotificationService.notify_user(member.id, title)
        assert NotificationService.mark_all_read(actor(member)) == 3
        assert NotificationService.mark_all_read(actor(member)) == 0
        assert NotificationService.counts(actor(member)) == {"total": 3, "unread": 0, "read": 3}

    def test_clear_read_only(self, member, actor):
        keep = NotificationService.notify_user(member.id, "keep")
        gone = NotificationService.notify_user(member.id, "gone")
        NotificationService.mark_read(actor(member), gone.id)
        assert NotificationService.clear(actor(member), read_only=True) == 1
        assert [n.id for n in Notification.query.all()] == [keep.id]

    def test_cleanup_removes_old_read_only(self, member):
        old_read = NotificationService.notify_user(member.id, "old read")
        old_unread = NotificationService.notify_user(member.id, "old unread")
        fresh_read = NotificationService.notify_user(member.id, "fresh read")
        long_ago = datetime.now(timezone.utc) - timedelta(days=120)
        old_read.created_at = long_ago
        old_read.is_read = True
        old_unread.created_at = long_ago
        fresh_read.is_read = True
        db.session.commit()

        assert NotificationService.cleanup(retention_days=90) == 1
        remaining = {n.title for n in Notification.query.all()}
        assert remaining == {"old unread", "fresh read"}


# ═════════════════════════════════════════════════════════════════════════════
# API
# ═════════════════════════════════════════════════════════════════════════════


class TestNotificationAPI:
    def test_requires_authentication(self, client):
        res = client.get("/api/v1/notifications")
        assert res.status_code == 401

    def test_list_and_unread_count(self, client, member, auth_headers):
        NotificationService.notify_user(member.id, "hello")
        res = client.get("/api/v1/notifications", headers=auth_headers(member))
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["unread_count"] == 1
        assert body["items"][0]["title"] == "hello"

    def test_mark_read_endpoint(self, client, member, auth_headers):
        notif = NotificationService.notify_user(member.id, "hello")
        res = client.patch(f"/api/v1/notifications/{notif.id}/read", headers=auth_headers(member))
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

    def test_foreign_notification_is_404(self, client, admin, member, auth_headers):
        notif = NotificationService.notify_user(member.id, "hello")
        res = client.get(f"/api/v1/notifications/{notif.id}", headers=auth_headers(admin))
        assert res.status_code == 404

    def test_board_notify_excludes_sender(self, client, board, admin, member, auth_headers):
        res = client.post(
            f"/api/v1/boards/{board.id}/notify",
            json={"title": "Standup moved", "message": "10:30 today"},
            headers=auth_headers(admin),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["sent"] == 1
        assert body["notifications"][0]["user_id"] == member.id

    def test_board_notify_partial_is_207(self, client, board, admin, member, make_user, actor, auth_headers):
        third = make_user("dave")
        board_service.add_board_member(actor(admin), board.id, third.id)
        third.is_active = False
        db.session.commit()
        res = client.post(f"/api/v1/boards/{board.id}/notify", json={"title": "Heads up"},
                          headers=auth_headers(admin))
        assert res.status_code == 207
        assert res.get_json()["failures"][0]["user_id"] == third.id

    def test_board_notify_needs_membership(self, client, board, outsider, auth_headers):
        res = client.post(f"/api/v1/boards/{board.id}/notify", json={"title": "Hi"},
                          headers=auth_headers(outsider))
        assert res.status_code == 403
