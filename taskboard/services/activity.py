"""
Taskboard Platform
Activity Log — append-only history per card and per board.

A card feed holds the entries with that card_id. The board feed holds
board-level entries (card_id NULL): column changes, membership and card
deletion, whose card feed is gone with the card.
"""

from __future__ import annotations

import logging

from taskboard.core.exceptions import ValidationError
from taskboard.models import db
from taskboard.models.board import ACTIVITY_TYPES, Activity

logger = logging.getLogger(__name__)


def record(
    board_id: int,
    activity_type: str,
    message: str,
    *,
    card_id: int | None = None,
    user_id: int | None = None,
    old_value=None,
    new_value=None,
) -> Activity:
    """Append one entry to the session (flushed, not committed)."""
    if activity_type not in ACTIVITY_TYPES:
        raise ValidationError(f"Unknown activity type: {activity_type}")
    entry = Activity(
        board_id=board_id,
        card_id=card_id,
        user_id=user_id,
        type=activity_type,
        message=message[:1000],
        old_value=old_value,
        new_value=new_value,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _feed_query(card_id=None, board_id=None):
    if card_id is not None:
        return Activity.query.filter(Activity.card_id == card_id)
    return Activity.query.filter(Activity.board_id == board_id, Activity.card_id.is_(None))


def feed_position(entry: Activity) -> int:
    """0-based position of entry within its feed (ids grow with time)."""
    q = _feed_query(entry.card_id, entry.board_id)
    return q.filter(Activity.id < entry.id).count()


def serialize(entry: Activity | None) -> dict | None:
    if entry is None:
        return None
    d = entry.to_dict()
    d["feed_position"] = feed_position(entry)
    return d


def list_for_card(card_id: int, limit: int = 100) -> list[dict]:
    entries = (
        _feed_query(card_id)
        .order_by(Activity.created_at, Activity.id)
        .limit(limit)
        .all()
    )
    return [e.to_dict() for e in entries]


def list_for_board(board_id: int, include_cards: bool = False, limit: int = 100) -> list[dict]:
    """Newest-first board history; include_cards merges card feeds in."""
    q = Activity.query.filter(Activity.board_id == board_id)
    if not include_cards:
        q = q.filter(Activity.card_id.is_(None))
    entries = q.order_by(Activity.created_at.desc(), Activity.id.desc()).limit(limit).all()
    return [e.to_dict() for e in entries]
