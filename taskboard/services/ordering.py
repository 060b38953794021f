"""
Taskboard Platform
Ordering Engine — dense integer positions for columns and cards.

Every structural change renumbers the whole container to 0..n-1, so a
client never observes a duplicate or a gap. Concurrent writers on the same
container resolve as last-writer-wins: each writer reloads the siblings in
(position, id) order inside its own transaction and rewrites every position.
Fractional positions are never used.

The functions work on any objects exposing a mutable ``position`` attribute
(Column, Card, Subtask) and return the new ordered list.
"""

from __future__ import annotations

from typing import Sequence, TypeVar

from taskboard.core.exceptions import ValidationError

T = TypeVar("T")


def ordered(items: Sequence[T]) -> list[T]:
    """Sort by (position, id); id breaks ties left behind by a racing writer."""
    return sorted(items, key=lambda i: (i.position if i.position is not None else 0, i.id or 0))


def _renumber(items: list[T]) -> list[T]:
    for index, item in enumerate(items):
        if item.position != index:
            item.position = index
    return items


def _clamp_index(index: int | None, size: int) -> int:
    if index is None:
        return size
    if not isinstance(index, int) or isinstance(index, bool):
        raise ValidationError("position must be an integer", details={"position": index})
    if index < 0:
        raise ValidationError("position must be >= 0", details={"position": index})
    return min(index, size)


def insert_at(items: Sequence[T], item: T, index: int | None = None) -> list[T]:
    """Insert item at index (None or past the end appends) and renumber.

    Items at or after the index shift by +1.
    """
    siblings = [i for i in ordered(items) if i is not item]
    siblings.insert(_clamp_index(index, len(siblings)), item)
    return _renumber(siblings)


def move_to(items: Sequence[T], item: T, new_index: int | None) -> list[T]:
    """Move an existing member of items to new_index and renumber."""
    current = ordered(items)
    if not any(i is item for i in current):
        raise ValidationError("item is not part of this container")
    siblings = [i for i in current if i is not item]
    siblings.insert(_clamp_index(new_index, len(siblings)), item)
    return _renumber(siblings)


def remove_from(items: Sequence[T], item: T) -> list[T]:
    """Drop item from the container and close the gap."""
    current = ordered(items)
    if not any(i is item for i in current):
        raise ValidationError("item is not part of this container")
    return _renumber([i for i in current if i is not item])


def assert_dense(items: Sequence[T]) -> None:
    """Raise ValidationError unless positions are exactly 0..n-1."""
    positions = sorted(i.position for i in items)
    if positions != list(range(len(positions))):
        raise ValidationError(
            "positions are not dense",
            details={"positions": positions},
        )
