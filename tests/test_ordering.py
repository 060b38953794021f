"""
Ordering engine — dense positions for columns, cards and subtasks.

Covers:
    1. insert at head / middle / past the end
    2. move within a container in both directions
    3. removal closes the gap
    4. (position, id) tie-break after a racing writer
    5. invalid indexes rejected
"""

from dataclasses import dataclass

import pytest

from taskboard.core.exceptions import ValidationError
from taskboard.services import ordering


@dataclass
class Item:
    id: int
    position: int


def _items(n):
    return [Item(id=i + 1, position=i) for i in range(n)]


def _ids(items):
    return [i.id for i in ordering.ordered(items)]


class TestInsert:
    def test_insert_at_head_shifts_everything(self):
        items = _items(3)
        new = Item(id=99, position=None)
        result = ordering.insert_at(items, new, 0)
        assert [i.id for i in result] == [99, 1, 2, 3]
        assert [i.position for i in result] == [0, 1, 2, 3]

    def test_insert_in_middle(self):
        items = _items(3)
        new = Item(id=99, position=None)
        result = ordering.insert_at(items, new, 1)
        assert [i.id for i in result] == [1, 99, 2, 3]
        ordering.assert_dense(result)

    def test_none_and_past_end_append(self):
        items = _items(2)
        a = Item(id=50, position=None)
        ordering.insert_at(items, a, None)
        items.append(a)
        b = Item(id=51, position=None)
        result = ordering.insert_at(items, b, 100)
        assert [i.id for i in result] == [1, 2, 50, 51]
        assert b.position == 3

    def test_insert_into_empty_container(self):
        new = Item(id=1, position=None)
        assert ordering.insert_at([], new, 5) == [new]
        assert new.position == 0


class TestMove:
    def test_move_down(self):
        items = _items(4)
        ordering.move_to(items, items[0], 2)
        assert _ids(items) == [2, 3, 1, 4]
        ordering.assert_dense(items)

    def test_move_up(self):
        items = _items(4)
        ordering.move_to(items, items[3], 0)
        assert _ids(items) == [4, 1, 2, 3]

    def test_move_to_same_index_is_stable(self):
        items = _items(3)
        ordering.move_to(items, items[1], 1)
        assert [i.position for i in items] == [0, 1, 2]

    def test_move_foreign_item_rejected(self):
        with pytest.raises(ValidationError):
            ordering.move_to(_items(2), Item(id=9, position=0), 0)


class TestRemove:
    def test_remove_closes_gap(self):
        items = _items(4)
        result = ordering.remove_from(items, items[1])
        assert [i.id for i in result] == [1, 3, 4]
        assert [i.position for i in result] == [0, 1, 2]


class TestTieBreakAndValidation:
    def test_duplicate_positions_resolve_by_id(self):
        items = [Item(id=3, position=1), Item(id=1, position=0), Item(id=2, position=1)]
        assert _ids(items) == [1, 2, 3]
        new = Item(id=10, position=None)
        ordering.insert_at(items, new, None)
        items.append(new)
        ordering.assert_dense(items)

    def test_negative_index_rejected(self):
        with pytest.raises(ValidationError):
            ordering.insert_at(_items(2), Item(id=9, position=None), -1)

    def test_non_integer_index_rejected(self):
        with pytest.raises(ValidationError):
            ordering.insert_at(_items(2), Item(id=9, position=None), "1")
        with pytest.raises(ValidationError):
            ordering.insert_at(_items(2), Item(id=9, position=None), True)

    def test_assert_dense_detects_gap(self):
        with pytest.raises(ValidationError):
            ordering.assert_dense([Item(id=1, position=0), Item(id=2, position=2)])
