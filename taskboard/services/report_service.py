"""
Taskboard Platform
Board statistics — card distribution, due-date health, member workload.

Everything is computed from the live rows in one pass over the board's
non-archived cards; nothing is cached.

Usage:
    from taskboard.services import report_service
    stats = report_service.board_statistics(actor, board_id)
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from flask import current_app

from taskboard.models.board import CARD_PRIORITIES, Card
from taskboard.services import board_service, ordering, policy
from taskboard.services.policy import Actor


def _safe_pct(numerator: int, denominator: int) -> float:
    """Percentage rounded to one decimal; 0.0 when denominator is 0."""
    return round((numerator / denominator) * 100, 1) if denominator else 0.0


def _rag(value: float, *, green_min: float = 80, amber_min: float = 60) -> str:
    if value >= green_min:
        return "green"
    elif value >= amber_min:
        return "amber"
    return "red"


def _workload_row(user_id: int) -> dict:
    return {
        "user_id": user_id,
        "assigned": 0,
        "open": 0,
        "completed": 0,
        "overdue": 0,
        "estimated_hours": 0.0,
        "actual_hours": 0.0,
    }


def board_statistics(actor: Actor, board_id: int, today: date | None = None) -> dict:
    """
    Aggregate statistics for one board.

    Returns:
        {
            "board_id", "total", "completed", "open", "completion_rate",
            "overdue", "due_soon", "no_due_date", "unassigned",
            "estimated_hours", "actual_hours", "health",
            "by_column":   [{column_id, title, count, wip_limit, over_wip_limit}],
            "by_priority": {"Low": n, "Medium": n, "High": n},
            "workload":    [{user_id, assigned, open, completed, overdue,
                             estimated_hours, actual_hours}],
        }

    Overdue and due-soon count open cards only; due soon means due within
    DUE_SOON_DAYS from today, today included.
    """
    board = board_service.get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_READ, board)

    today = today or datetime.now(timezone.utc).date()
    horizon = today + timedelta(days=current_app.config.get("DUE_SOON_DAYS", 1))
    cards = Card.query.filter_by(board_id=board.id, is_archived=False).all()

    by_priority = {p: 0 for p in CARD_PRIORITIES}
    per_column: dict[int, int] = {}
    workload = {user_id: _workload_row(user_id) for user_id in board.member_ids()}
    completed = overdue = due_soon = no_due_date = unassigned = 0
    estimated = actual = 0.0

    for card in cards:
        done = card.is_completed
        late = not done and card.due_date is not None and card.due_date < today
        completed += done
        overdue += late
        if card.due_date is None:
            no_due_date += 1
        elif not done and today <= card.due_date <= horizon:
            due_soon += 1
        by_priority[card.priority] = by_priority.get(card.priority, 0) + 1
        per_column[card.column_id] = per_column.get(card.column_id, 0) + 1
        estimated += card.estimated_hours or 0.0
        actual += card.actual_hours or 0.0

        if not card.members and not done:
            unassigned += 1
        for user in card.members:
            row = workload.setdefault(user.id, _workload_row(user.id))
            row["assigned"] += 1
            row["completed" if done else "open"] += 1
            row["overdue"] += late
            row["estimated_hours"] += card.estimated_hours or 0.0
            row["actual_hours"] += card.actual_hours or 0.0

    by_column = []
    for column in ordering.ordered(board.columns):
        count = per_column.get(column.id, 0)
        by_column.append({
            "column_id": column.id,
            "title": column.title,
            "count": count,
            "wip_limit": column.wip_limit,
            "over_wip_limit": column.wip_limit is not None and count > column.wip_limit,
        })

    for row in workload.values():
        row["estimated_hours"] = round(row["estimated_hours"], 2)
        row["actual_hours"] = round(row["actual_hours"], 2)

    total = len(cards)
    open_cards = total - completed
    return {
        "board_id": board.id,
        "as_of": today.isoformat(),
        "total": total,
        "completed": completed,
        "open": open_cards,
        "completion_rate": _safe_pct(completed, total),
        "overdue": overdue,
        "due_soon": due_soon,
        "no_due_date": no_due_date,
        "unassigned": unassigned,
        "estimated_hours": round(estimated, 2),
        "actual_hours": round(actual, 2),
        # share of open cards that are on time
        "health": _rag(100 - _safe_pct(overdue, open_cards)),
        "by_column": by_column,
        "by_priority": by_priority,
        "workload": sorted(workload.values(), key=lambda r: r["user_id"]),
    }
