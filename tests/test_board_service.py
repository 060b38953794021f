"""
Entity store — boards, columns, cards and their children.

Covers:
    1. Board creation from templates (default columns, owner membership)
    2. Card creation / move / reorder keeps positions dense
    3. Done columns set and clear completed_at
    4. WIP limits and default-column deletion guard
    5. Board deletion keeps users and labels
    6. Tenant isolation and membership policy
    7. Activity entries per mutation, none for no-op updates
"""

from datetime import date

import pytest

from taskboard.core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationError
from taskboard.models import db
from taskboard.models.auth import User
from taskboard.models.board import Activity, Board, Card, Column, Label
from taskboard.services import board_service, ordering


def _card(actor, column, title="Task", **data):
    return board_service.create_card(actor, column.id, {"title": title, **data}).entity


# ═════════════════════════════════════════════════════════════════════════════
# Boards
# ═════════════════════════════════════════════════════════════════════════════


class TestBoards:
    def test_create_board_uses_template_columns(self, admin, actor):
        result = board_service.create_board(actor(admin), {"title": "Dev", "template": "software"})
        board = result.entity
        titles = [c.title for c in ordering.ordered(board.columns)]
        assert titles == ["Backlog", "To Do", "In Progress", "Code Review", "Testing", "Done"]
        assert all(c.is_default for c in board.columns)
        assert [c.position for c in ordering.ordered(board.columns)] == list(range(6))
        assert result.activity.type == "created"
        assert result.event.type == "board_created"

    def test_creator_becomes_owner(self, admin, actor):
        board = board_service.create_board(actor(admin), {"title": "Mine"}).entity
        owners = [m for m in board.members if m.role == "owner"]
        assert [m.user_id for m in owners] == [admin.id]

    def test_unknown_template_rejected(self, admin, actor):
        with pytest.raises(ValidationError):
            board_service.create_board(actor(admin), {"title": "X", "template": "nope"})

    def test_blank_title_rejected(self, admin, actor):
        with pytest.raises(ValidationError):
            board_service.create_board(actor(admin), {"title": "   "})

    def test_update_without_change_records_nothing(self, board, admin, actor):
        before = Activity.query.count()
        result = board_service.update_board(actor(admin), board.id, {"title": board.title})
        assert result.activity is None
        assert not result.changed
        assert Activity.query.count() == before

    def test_list_boards_scoped_to_membership(self, board, member, outsider, actor):
        assert [b["id"] for b in board_service.list_boards(actor(member))] == [board.id]
        assert board_service.list_boards(actor(outsider)) == []

    def test_delete_board_keeps_users_and_labels(self, board, admin, member, actor, columns):
        a = actor(admin)
        labels = board_service.list_labels(a)
        _card(a, columns[0], label_ids=[labels[0]["id"]], member_ids=[member.id])
        _card(a, columns[1])

        result = board_service.delete_board(a, board.id)

        assert result.entity["deleted_cards"] == 2
        assert result.entity["deleted_columns"] == 3
        assert result.activity is None
        assert db.session.get(Board, board.id) is None
        assert Card.query.count() == 0
        assert Column.query.count() == 0
        assert db.session.get(User, member.id) is not None
        assert Label.query.count() == 4

    def test_only_creator_or_admin_deletes(self, board, member, actor):
        with pytest.raises(PermissionDenied):
            board_service.delete_board(actor(member), board.id)

    def test_other_tenant_sees_not_found(self, board, other_tenant, make_user, actor):
        stranger = make_user("zed", role="admin", tenant_obj=other_tenant)
        with pytest.raises(NotFoundError):
            board_service.get_board(actor(stranger), board.id)

    def test_add_member_twice_conflicts(self, board, admin, outsider, actor):
        board_service.add_board_member(actor(admin), board.id, outsider.id)
        with pytest.raises(ConflictError):
            board_service.add_board_member(actor(admin), board.id, outsider.id)

    def test_remove_member_detaches_card_assignments(self, board, admin, member, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0], member_ids=[member.id])
        board_service.remove_board_member(a, board.id, member.id)
        db.session.expire_all()
        assert member not in db.session.get(Card, card.id).members


# ═════════════════════════════════════════════════════════════════════════════
# Columns
# ═════════════════════════════════════════════════════════════════════════════


class TestColumns:
    def test_insert_column_in_middle(self, board, admin, actor):
        col = board_service.create_column(actor(admin), board.id, {"title": "Review", "position": 1}).entity
        titles = [c.title for c in ordering.ordered(board.columns)]
        assert titles == ["To Do", "Review", "In Progress", "Done"]
        assert col.position == 1
        assert not col.is_default

    def test_move_column(self, board, admin, actor, columns):
        board_service.move_column(actor(admin), columns[2].id, 0)
        assert [c.title for c in ordering.ordered(board.columns)] == ["Done", "To Do", "In Progress"]
        ordering.assert_dense(board.columns)

    def test_default_column_with_cards_cannot_be_deleted(self, admin, actor, columns):
        _card(actor(admin), columns[0])
        with pytest.raises(ValidationError):
            board_service.delete_column(actor(admin), columns[0].id)

    def test_empty_default_column_can_be_deleted(self, board, admin, actor, columns):
        result = board_service.delete_column(actor(admin), columns[1].id)
        assert result.activity.card_id is None
        assert [c.title for c in ordering.ordered(board.columns)] == ["To Do", "Done"]
        ordering.assert_dense(board.columns)

    def test_non_default_column_deleted_with_cards(self, board, admin, actor):
        a = actor(admin)
        extra = board_service.create_column(a, board.id, {"title": "Parking"}).entity
        _card(a, extra)
        board_service.delete_column(a, extra.id)
        assert Card.query.count() == 0

    def test_wip_limit_blocks_create_and_move(self, admin, actor, columns):
        a = actor(admin)
        board_service.update_column(a, columns[1].id, {"wip_limit": 1})
        _card(a, columns[1], "first")
        with pytest.raises(ValidationError):
            _card(a, columns[1], "second")
        waiting = _card(a, columns[0], "waiting")
        with pytest.raises(ValidationError):
            board_service.move_card(a, waiting.id, columns[1].id)

    def test_invalid_wip_limit(self, admin, actor, columns):
        with pytest.raises(ValidationError):
            board_service.update_column(actor(admin), columns[0].id, {"wip_limit": 0})


# ═════════════════════════════════════════════════════════════════════════════
# Cards
# ═════════════════════════════════════════════════════════════════════════════


class TestCards:
    def test_positions_stay_dense_through_inserts_and_moves(self, admin, actor, columns):
        a = actor(admin)
        todo, doing = columns[0], columns[1]
        c1 = _card(a, todo, "one")
        c2 = _card(a, todo, "two")
        c3 = _card(a, todo, "zero", position=0)
        assert [c.title for c in ordering.ordered(todo.cards)] == ["zero", "one", "two"]

        board_service.move_card(a, c1.id, doing.id, 0)
        board_service.move_card(a, c3.id, None, 1)

        assert [c.title for c in ordering.ordered(todo.cards)] == ["two", "zero"]
        assert [c.title for c in ordering.ordered(doing.cards)] == ["one"]
        ordering.assert_dense(todo.cards)
        ordering.assert_dense(doing.cards)
        assert c2.position == 0

    def test_move_without_target_is_rejected(self, admin, actor, columns):
        a = actor(admin)
        c1 = _card(a, columns[0], "one")
        c2 = _card(a, columns[0], "two")
        with pytest.raises(ValidationError):
            board_service.move_card(a, c1.id)
        assert (c1.position, c2.position) == (0, 1)

    def test_same_column_move_without_index_is_noop(self, admin, actor, columns):
        a = actor(admin)
        c1 = _card(a, columns[0], "one")
        _card(a, columns[0], "two")
        before = Activity.query.filter_by(card_id=c1.id).count()

        result = board_service.move_card(a, c1.id, columns[0].id)

        assert not result.changed
        assert result.event is None
        assert c1.position == 0
        assert Activity.query.filter_by(card_id=c1.id).count() == before

    def test_move_into_done_completes_and_back_clears(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0])
        result = board_service.move_card(a, card.id, columns[2].id)
        assert result.event.type == "card_completed"
        assert card.completed_at is not None
        board_service.move_card(a, card.id, columns[0].id)
        assert card.completed_at is None

    def test_create_in_done_column_is_completed(self, admin, actor, columns):
        card = _card(actor(admin), columns[2])
        assert card.completed_at is not None

    def test_move_to_another_board_rejected(self, admin, actor, columns):
        a = actor(admin)
        other = board_service.create_board(a, {"title": "Other"}).entity
        card = _card(a, columns[0])
        with pytest.raises(ValidationError):
            board_service.move_card(a, card.id, other.columns[0].id)

    def test_move_to_same_place_is_noop(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0])
        result = board_service.move_card(a, card.id, columns[0].id, 0)
        assert result.activity is None

    def test_negative_position_rejected(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0])
        with pytest.raises(ValidationError):
            board_service.move_card(a, card.id, columns[1].id, -1)

    def test_start_after_due_rejected(self, admin, actor, columns):
        with pytest.raises(ValidationError):
            _card(actor(admin), columns[0], start_date="2026-05-10", due_date="2026-05-01")

    def test_invalid_priority_rejected(self, admin, actor, columns):
        with pytest.raises(ValidationError):
            _card(actor(admin), columns[0], priority="Critical")

    def test_update_records_single_activity(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0])
        result = board_service.update_card(a, card.id, {"priority": "High"})
        assert result.activity.type == "priority"
        assert result.activity.old_value == {"priority": "Medium"}
        result = board_service.update_card(a, card.id, {"title": "Renamed", "due_date": "2026-03-01"})
        assert result.activity.type == "updated"
        assert card.due_date == date(2026, 3, 1)

    def test_outsider_cannot_touch_cards(self, admin, outsider, actor, columns):
        card = _card(actor(admin), columns[0])
        with pytest.raises(PermissionDenied):
            board_service.update_card(actor(outsider), card.id, {"title": "mine"})

    def test_assignee_must_be_board_member(self, admin, outsider, actor, columns):
        card = _card(actor(admin), columns[0])
        with pytest.raises(ValidationError):
            board_service.assign_member(actor(admin), card.id, outsider.id)

    def test_assign_emits_card_assigned(self, admin, member, actor, columns):
        card = _card(actor(admin), columns[0])
        result = board_service.assign_member(actor(admin), card.id, member.id)
        assert result.event.type == "card_assigned"
        assert result.event.payload["assignee_id"] == member.id
        again = board_service.assign_member(actor(admin), card.id, member.id)
        assert again.activity is None

    def test_labels_are_idempotent(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0])
        label_id = board_service.list_labels(a)[0]["id"]
        assert board_service.add_label(a, card.id, label_id).changed
        assert not board_service.add_label(a, card.id, label_id).changed
        assert board_service.remove_label(a, card.id, label_id).changed
        assert not board_service.remove_label(a, card.id, label_id).changed

    def test_delete_card_logs_on_board_feed(self, board, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0], "Doomed")
        _card(a, columns[0], "Survivor")
        result = board_service.delete_card(a, card.id)
        assert result.activity.card_id is None
        assert "Doomed" in result.activity.message
        assert [c.title for c in columns[0].cards] == ["Survivor"]
        assert columns[0].cards[0].position == 0

    def test_list_cards_filters(self, board, admin, member, actor, columns):
        a = actor(admin)
        _card(a, columns[0], "Fix login bug", priority="High", member_ids=[member.id])
        _card(a, columns[1], "Write docs", due_date="2026-01-10")
        archived = _card(a, columns[1], "Old")
        board_service.archive_card(a, archived.id)

        assert [c["title"] for c in board_service.list_cards(a, board.id, {"q": "login"})] == ["Fix login bug"]
        assert len(board_service.list_cards(a, board.id, {"priority": "High"})) == 1
        assert len(board_service.list_cards(a, board.id, {"member_id": member.id})) == 1
        assert len(board_service.list_cards(a, board.id, {"due_before": "2026-02-01"})) == 1
        assert len(board_service.list_cards(a, board.id)) == 2
        assert len(board_service.list_cards(a, board.id, {"include_archived": True})) == 3


class TestCardChildren:
    def test_subtasks_reorder_and_complete(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0], subtasks=["a", "b"])
        c = board_service.add_subtask(a, card.id, "c", position=0).entity
        assert [s.title for s in ordering.ordered(card.subtasks)] == ["c", "a", "b"]
        result = board_service.update_subtask(a, c.id, {"is_done": True, "position": 2})
        assert result.activity.type == "subtask"
        assert [s.title for s in ordering.ordered(card.subtasks)] == ["a", "b", "c"]
        board_service.delete_subtask(a, c.id)
        ordering.assert_dense(card.subtasks)

    def test_comment_delete_needs_author(self, admin, member, actor, columns):
        card = _card(actor(admin), columns[0])
        comment = board_service.add_comment(actor(member), card.id, "looks good").entity
        board_service.delete_comment(actor(member), comment.id)
        comment = board_service.add_comment(actor(admin), card.id, "admin note").entity
        with pytest.raises(PermissionDenied):
            board_service.delete_comment(actor(member), comment.id)

    def test_attachment_metadata(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0])
        att = board_service.add_attachment(
            a, card.id, {"file_name": "spec.pdf", "url": "https://files/spec.pdf", "size_bytes": 1200},
        ).entity
        assert att.size_bytes == 1200
        with pytest.raises(ValidationError):
            board_service.add_attachment(a, card.id, {"file_name": "x", "url": "u", "size_bytes": -1})

    def test_card_feed_is_ordered(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0])
        board_service.update_card(a, card.id, {"priority": "Low"})
        board_service.move_card(a, card.id, columns[1].id)
        feed = board_service.get_card_activity(a, card.id)
        assert [e["type"] for e in feed] == ["created", "priority", "moved"]

    def test_mutation_result_feed_position(self, admin, actor, columns):
        a = actor(admin)
        card = _card(a, columns[0])
        d = board_service.update_card(a, card.id, {"priority": "High"}).to_dict()
        assert d["activity"]["feed_position"] == 1
