"""
Taskboard Platform
Time tracking — manual entries, running timers and board reports.

A user has at most one running timer (started_at set, ended_at NULL) across
all cards. Card.actual_hours is derived: it is recomputed from the card's
entries after every change and never written directly.

Entry and timer changes go through board_service.finish_mutation: one
Activity entry on the card, then one card_updated event.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone

from taskboard.core.exceptions import ConflictError, NotFoundError, ValidationError
from taskboard.models import db
from taskboard.models.board import Card, TimeEntry
from taskboard.services import activity, board_service, policy
from taskboard.services.board_service import MutationResult
from taskboard.services.policy import Actor

logger = logging.getLogger(__name__)

REPORT_BUCKETS = ("day", "week", "month")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value, field: str) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{field} must be an ISO datetime", details={field: value})
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def recompute_actual_hours(card: Card) -> float:
    total = sum(e.duration_minutes or 0 for e in card.time_entries if not e.is_running)
    card.actual_hours = round(total / 60.0, 2)
    return card.actual_hours


def _get_entry_or_404(actor: Actor, entry_id: int) -> TimeEntry:
    entry = db.session.get(TimeEntry, entry_id)
    if entry is None or entry.card.column.board.tenant_id != actor.tenant_id:
        raise NotFoundError("TimeEntry", entry_id, actor.tenant_id)
    return entry


def running_timer(user_id: int) -> TimeEntry | None:
    return TimeEntry.query.filter(
        TimeEntry.user_id == user_id,
        TimeEntry.started_at.isnot(None),
        TimeEntry.ended_at.is_(None),
    ).first()


# ═════════════════════════════════════════════════════════════════════════════
# Entries
# ═════════════════════════════════════════════════════════════════════════════


def _hours_changed(actor: Actor, card: Card, entry_activity, entity) -> MutationResult:
    return board_service.finish_mutation(entity, entry_activity, board_service.domain_event(
        "card_updated", actor, card.board_id, card.id, fields=["actual_hours"],
    ))


def log_time(actor: Actor, card_id: int, data: dict) -> MutationResult:
    """Add a finished entry from either started_at/ended_at or duration_minutes."""
    card = board_service.get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)

    if data.get("started_at") and data.get("ended_at"):
        started = _parse_datetime(data["started_at"], "started_at")
        ended = _parse_datetime(data["ended_at"], "ended_at")
        if ended <= started:
            raise ValidationError("ended_at must be after started_at")
        minutes = max(1, int((ended - started).total_seconds() // 60))
        entry_date = started.date()
    else:
        minutes = data.get("duration_minutes")
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError("duration_minutes must be a positive integer",
                                  details={"duration_minutes": minutes})
        started = ended = None
        entry_date = board_service.parse_date(data.get("entry_date"), "entry_date") or _utcnow().date()

    entry = TimeEntry(
        user_id=actor.user_id,
        started_at=started,
        ended_at=ended,
        duration_minutes=minutes,
        entry_date=entry_date,
        description=(data.get("description") or "")[:500],
    )
    old_hours = card.actual_hours
    card.time_entries.append(entry)
    recompute_actual_hours(card)
    db.session.flush()
    recorded = activity.record(
        card.board_id, "updated", f"Logged {minutes} minute(s)",
        card_id=card.id, user_id=actor.user_id,
        old_value={"actual_hours": old_hours},
        new_value={"time_entry_id": entry.id, "minutes": minutes, "actual_hours": card.actual_hours},
    )
    return _hours_changed(actor, card, recorded, entry)


def start_timer(actor: Actor, card_id: int, description: str = "") -> MutationResult:
    card = board_service.get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    running = running_timer(actor.user_id)
    if running is not None:
        raise ConflictError("TimeEntry", "running_timer", str(running.id))

    now = _utcnow()
    entry = TimeEntry(
        user_id=actor.user_id,
        started_at=now,
        duration_minutes=0,
        entry_date=now.date(),
        description=(description or "")[:500],
    )
    card.time_entries.append(entry)
    db.session.flush()
    recorded = activity.record(
        card.board_id, "updated", "Timer started",
        card_id=card.id, user_id=actor.user_id, new_value={"time_entry_id": entry.id},
    )
    logger.debug("Timer started user_id=%s card_id=%s", actor.user_id, card_id)
    return board_service.finish_mutation(entry, recorded, board_service.domain_event(
        "card_updated", actor, card.board_id, card.id, fields=["timer"],
    ))


def stop_timer(actor: Actor) -> MutationResult:
    entry = running_timer(actor.user_id)
    if entry is None:
        raise NotFoundError("TimeEntry", "running", actor.tenant_id)
    now = _utcnow()
    entry.ended_at = now
    entry.duration_minutes = max(1, int((now - _as_utc(entry.started_at)).total_seconds() // 60))
    card = entry.card
    old_hours = card.actual_hours
    recompute_actual_hours(card)
    recorded = activity.record(
        card.board_id, "updated", f"Logged {entry.duration_minutes} minute(s)",
        card_id=card.id, user_id=actor.user_id,
        old_value={"actual_hours": old_hours},
        new_value={"time_entry_id": entry.id, "minutes": entry.duration_minutes, "actual_hours": card.actual_hours},
    )
    return _hours_changed(actor, card, recorded, entry)


def delete_entry(actor: Actor, entry_id: int) -> MutationResult:
    entry = _get_entry_or_404(actor, entry_id)
    policy.require(actor, policy.TIME_ENTRY_MODIFY, entry)
    card = entry.card
    snapshot = entry.to_dict()
    old_hours = card.actual_hours
    card.time_entries.remove(entry)
    recompute_actual_hours(card)
    recorded = activity.record(
        card.board_id, "updated", f"Removed {snapshot['duration_minutes']} minute(s) of logged time",
        card_id=card.id, user_id=actor.user_id,
        old_value={"time_entry_id": entry_id, "actual_hours": old_hours},
        new_value={"actual_hours": card.actual_hours},
    )
    return _hours_changed(actor, card, recorded, snapshot)


def list_entries(actor: Actor, card_id: int) -> list[dict]:
    card = board_service.get_card_or_404(actor, card_id)
    policy.require(actor, policy.BOARD_READ, card)
    return [e.to_dict() for e in card.time_entries]


# ═════════════════════════════════════════════════════════════════════════════
# Reports
# ═════════════════════════════════════════════════════════════════════════════


def _bucket(d: date, group_by: str) -> str:
    if group_by == "week":
        monday = d - timedelta(days=d.weekday())
        return monday.isoformat()
    if group_by == "month":
        return d.strftime("%Y-%m")
    return d.isoformat()


def board_report(actor: Actor, board_id: int, date_from=None, date_to=None, group_by: str = "day") -> dict:
    """Minutes per date bucket and per user for a board's finished entries."""
    board = board_service.get_board_or_404(actor, board_id)
    policy.require(actor, policy.BOARD_READ, board)
    if group_by not in REPORT_BUCKETS:
        raise ValidationError(f"group_by must be one of: {', '.join(REPORT_BUCKETS)}")
    start = board_service.parse_date(date_from, "date_from")
    end = board_service.parse_date(date_to, "date_to")

    q = (
        TimeEntry.query.join(Card, TimeEntry.card_id == Card.id)
        .filter(Card.board_id == board.id, TimeEntry.ended_at.isnot(None) | TimeEntry.started_at.is_(None))
    )
    if start:
        q = q.filter(TimeEntry.entry_date >= start)
    if end:
        q = q.filter(TimeEntry.entry_date <= end)

    by_bucket: dict[str, int] = defaultdict(int)
    by_user: dict[int, int] = defaultdict(int)
    by_card: dict[int, int] = defaultdict(int)
    for entry in q.all():
        minutes = entry.duration_minutes or 0
        by_bucket[_bucket(entry.entry_date, group_by)] += minutes
        by_user[entry.user_id] += minutes
        by_card[entry.card_id] += minutes

    total = sum(by_user.values())
    return {
        "board_id": board.id,
        "group_by": group_by,
        "total_minutes": total,
        "total_hours": round(total / 60.0, 2),
        "buckets": [{"period": k, "minutes": by_bucket[k]} for k in sorted(by_bucket)],
        "by_user": [{"user_id": k, "minutes": v} for k, v in sorted(by_user.items())],
        "by_card": [{"card_id": k, "minutes": v} for k, v in sorted(by_card.items())],
    }
