"""
Taskboard Platform
Recurrence Engine — occurrence computation and card materialization.

A recurring card is a template: its ``recurrence`` column holds the
pattern, and every due occurrence becomes a new card cloned from it with
``parent_recurrence_id`` pointing back. The template itself is not an
occurrence.

Schedules are anchored on a start date (pattern ``start_date``, else the
template's due date, else its creation date):

    daily    start + k * interval days
    weekly   listed days_of_week (Sunday=0) in every interval-th week,
             weeks counted from the Sunday of the start's week
    monthly  day_of_month (default: start day) of every interval-th month,
             clamped to the month's last day
    yearly   start month/day every interval years, Feb 29 -> Feb 28

Termination is at most one of end_date / occurrences. The occurrence count
is read from ``Card.recurrence_count``, never recomputed from history.

Idempotence: each materialized date advances (recurrence_last_created,
recurrence_count) through a compare-and-set UPDATE inside the same
transaction that inserts the clone. A writer that loses the race updates
zero rows, rolls back and creates nothing.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterator

from flask import current_app

from taskboard.core.exceptions import NotFoundError, ValidationError
from taskboard.models import db
from taskboard.models.board import Card
from taskboard.services.events import publish

logger = logging.getLogger(__name__)

RECURRENCE_TYPES = ("daily", "weekly", "monthly", "yearly")

# Accept the web client's camelCase keys as well
_KEY_ALIASES = {
    "endDate": "end_date",
    "startDate": "start_date",
    "daysOfWeek": "days_of_week",
    "dayOfMonth": "day_of_month",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ═════════════════════════════════════════════════════════════════════════════
# Pattern
# ═════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class RecurrencePattern:
    type: str
    interval: int = 1
    end_date: date | None = None
    occurrences: int | None = None
    days_of_week: tuple[int, ...] = ()
    day_of_month: int | None = None
    start_date: date | None = None

    def to_dict(self) -> dict:
        d = {"type": self.type, "interval": self.interval}
        if self.end_date:
            d["end_date"] = self.end_date.isoformat()
        if self.occurrences is not None:
            d["occurrences"] = self.occurrences
        if self.days_of_week:
            d["days_of_week"] = list(self.days_of_week)
        if self.day_of_month is not None:
            d["day_of_month"] = self.day_of_month
        if self.start_date:
            d["start_date"] = self.start_date.isoformat()
        return d


def _as_date(value, field: str) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"recurrence.{field} must be an ISO date", details={field: value})


def _as_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"recurrence.{field} must be an integer", details={field: value})
    return value


def parse_pattern(raw) -> RecurrencePattern:
    """Validate a pattern dict and return a RecurrencePattern.

    Raises ValidationError on an unknown type, interval < 1, out-of-range
    weekday or month day, or when both end_date and occurrences are given.
    """
    if isinstance(raw, RecurrencePattern):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("recurrence must be an object")
    data = {_KEY_ALIASES.get(k, k): v for k, v in raw.items()}

    rtype = data.get("type")
    if rtype not in RECURRENCE_TYPES:
        raise ValidationError(
            f"recurrence.type must be one of: {', '.join(RECURRENCE_TYPES)}",
            details={"type": rtype},
        )
    interval = _as_int(data.get("interval", 1), "interval")
    if interval < 1:
        raise ValidationError("recurrence.interval must be >= 1", details={"interval": interval})

    end_date = _as_date(data.get("end_date"), "end_date")
    occurrences = data.get("occurrences")
    if occurrences is not None:
        occurrences = _as_int(occurrences, "occurrences")
        if occurrences < 1:
            raise ValidationError("recurrence.occurrences must be >= 1", details={"occurrences": occurrences})
    if end_date is not None and occurrences is not None:
        raise ValidationError("recurrence may set end_date or occurrences, not both")

    days = data.get("days_of_week") or []
    if not isinstance(days, (list, tuple)):
        raise ValidationError("recurrence.days_of_week must be a list")
    days_of_week = tuple(sorted({_as_int(d, "days_of_week") for d in days}))
    if any(d < 0 or d > 6 for d in days_of_week):
        raise ValidationError("recurrence.days_of_week values must be 0-6 (Sunday=0)",
                              details={"days_of_week": list(days_of_week)})

    day_of_month = data.get("day_of_month")
    if day_of_month is not None:
        day_of_month = _as_int(day_of_month, "day_of_month")
        if not 1 <= day_of_month <= 31:
            raise ValidationError("recurrence.day_of_month must be 1-31", details={"day_of_month": day_of_month})

    return RecurrencePattern(
        type=rtype,
        interval=interval,
        end_date=end_date,
        occurrences=occurrences,
        days_of_week=days_of_week if rtype == "weekly" else (),
        day_of_month=day_of_month if rtype == "monthly" else None,
        start_date=_as_date(data.get("start_date"), "start_date"),
    )


# ═════════════════════════════════════════════════════════════════════════════
# Schedules
# ═════════════════════════════════════════════════════════════════════════════


def _sunday_weekday(d: date) -> int:
    """0=Sunday .. 6=Saturday."""
    return (d.weekday() + 1) % 7


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _daily(start: date, interval: int, lower: date) -> Iterator[date]:
    k = 0
    if lower > start:
        k = -(-(lower - start).days // interval)  # ceil
    while True:
        yield start + timedelta(days=k * interval)
        k += 1


def _weekly(start: date, interval: int, days_of_week, lower: date) -> Iterator[date]:
    days = days_of_week or (_sunday_weekday(start),)
    first_week = start - timedelta(days=_sunday_weekday(start))
    k = 0
    if lower > first_week:
        k = (lower - first_week).days // 7 // interval
    while True:
        week = first_week + timedelta(weeks=k * interval)
        for day in days:
            d = week + timedelta(days=day)
            if d >= start and d >= lower:
                yield d
        k += 1


def _monthly(start: date, interval: int, day_of_month, lower: date) -> Iterator[date]:
    day = day_of_month or start.day
    k = 0
    if lower > start:
        k = max(0, ((lower.year - start.year) * 12 + lower.month - start.month) // interval - 1)
    while True:
        index = start.month - 1 + k * interval
        d = _clamped(start.year + index // 12, index % 12 + 1, day)
        if d >= start and d >= lower:
            yield d
        k += 1


def _yearly(start: date, interval: int, lower: date) -> Iterator[date]:
    k = 0
    if lower > start:
        k = max(0, (lower.year - start.year) // interval - 1)
    while True:
        d = _clamped(start.year + k * interval, start.month, start.day)
        if d >= lower:
            yield d
        k += 1


def iter_schedule(pattern: RecurrencePattern, start: date, lower: date) -> Iterator[date]:
    """Infinite ascending schedule of dates >= lower (ignores termination)."""
    if pattern.type == "daily":
        return _daily(start, pattern.interval, lower)
    if pattern.type == "weekly":
        return _weekly(start, pattern.interval, pattern.days_of_week, lower)
    if pattern.type == "monthly":
        return _monthly(start, pattern.interval, pattern.day_of_month, lower)
    return _yearly(start, pattern.interval, lower)


def due_occurrences(
    pattern,
    last_created: date | None,
    as_of: date,
    already_created: int = 0,
    start: date | None = None,
) -> list[date]:
    """Occurrence dates d with last_created < d <= as_of (start <= d when never created).

    Deterministic for the same inputs. Stops after end_date and once
    ``occurrences - already_created`` dates have been produced.
    """
    pattern = parse_pattern(pattern)
    start = pattern.start_date or start or as_of
    remaining = None
    if pattern.occurrences is not None:
        remaining = pattern.occurrences - already_created
        if remaining <= 0:
            return []

    lower = start if last_created is None else max(start, last_created + timedelta(days=1))
    result = []
    for d in iter_schedule(pattern, start, lower):
        if d > as_of or (pattern.end_date and d > pattern.end_date):
            break
        result.append(d)
        if remaining is not None and len(result) >= remaining:
            break
    return result


def upcoming(pattern, start: date, after: date | None = None, count: int = 5) -> list[date]:
    """Next ``count`` dates strictly after ``after``; used for previews."""
    pattern = parse_pattern(pattern)
    start = pattern.start_date or start
    lower = start if after is None else max(start, after + timedelta(days=1))
    result = []
    for d in iter_schedule(pattern, start, lower):
        if pattern.end_date and d > pattern.end_date:
            break
        if pattern.occurrences is not None and len(result) >= pattern.occurrences:
            break
        result.append(d)
        if len(result) >= count:
            break
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Materialization
# ═════════════════════════════════════════════════════════════════════════════


def schedule_start(card: Card) -> date:
    """Anchor date of a template's schedule."""
    pattern = parse_pattern(card.recurrence)
    if pattern.start_date:
        return pattern.start_date
    if card.due_date:
        return card.due_date
    created = card.created_at or _utcnow()
    return created.date()


def materialize_due(card_id: int, as_of: date | None = None) -> list[Card]:
    """Create one card per due occurrence of a recurring template.

    Each date commits separately; a lost compare-and-set stops the run
    without creating anything for that date. Returns the created cards.
    """
    from taskboard.services import board_service

    as_of = as_of or _utcnow().date()
    template = db.session.get(Card, card_id)
    if template is None:
        raise NotFoundError("Card", card_id)
    if not template.recurrence or template.is_archived or template.parent_recurrence_id is not None:
        return []

    pattern = parse_pattern(template.recurrence)
    max_catchup = current_app.config.get("RECURRENCE_MAX_CATCHUP", 31)
    dates = due_occurrences(
        pattern,
        template.recurrence_last_created,
        as_of,
        already_created=template.recurrence_count or 0,
        start=schedule_start(template),
    )
    if len(dates) > max_catchup:
        logger.warning(
            "Recurring card %s has %d due occurrences, materializing the first %d",
            card_id, len(dates), max_catchup,
        )
        dates = dates[:max_catchup]

    created = []
    for occurrence in dates:
        last = template.recurrence_last_created
        count = template.recurrence_count or 0
        last_clause = Card.recurrence_last_created.is_(None) if last is None else Card.recurrence_last_created == last
        rows = (
            Card.query
            .filter(Card.id == template.id, last_clause, Card.recurrence_count == count)
            .update(
                {"recurrence_last_created": occurrence, "recurrence_count": count + 1},
                synchronize_session=False,
            )
        )
        if rows != 1:
            db.session.rollback()
            logger.info("Recurring card %s already advanced by another writer, skipping %s", card_id, occurrence)
            break

        card, _entry, event = board_service.clone_recurring_card(template, occurrence)
        db.session.commit()  # expires template; next loop reads the advanced values
        logger.info("Recurring card %s materialized %s as card %s", card_id, occurrence, card.id)
        publish(event)
        created.append(card)
    return created


def materialize_all_due(as_of: date | None = None) -> dict:
    """Walk every active recurring template. Best effort: failures are logged and counted."""
    as_of = as_of or _utcnow().date()
    template_ids = [
        row.id for row in db.session.query(Card.id).filter(
            Card.recurrence.isnot(None),
            Card.is_archived.is_(False),
            Card.parent_recurrence_id.is_(None),
        ).order_by(Card.id).all()
    ]

    stats = {"checked": len(template_ids), "created": 0, "failed": 0, "as_of": as_of.isoformat()}
    for card_id in template_ids:
        try:
            stats["created"] += len(materialize_due(card_id, as_of))
        except Exception:
            db.session.rollback()
            stats["failed"] += 1
            logger.exception("Recurrence materialization failed for card %s", card_id)
    return stats


# ── Per-card entry points (API) ──────────────────────────────────────────────


def preview(actor, card_id: int, count: int = 5) -> dict:
    """Next dates a recurring card will produce after its last materialized one."""
    from taskboard.services import board_service, policy

    card = board_service.get_card_or_404(actor, card_id)
    policy.require(actor, policy.BOARD_READ, card)
    if not card.recurrence:
        raise ValidationError("Card has no recurrence", details={"card_id": card_id})
    pattern = parse_pattern(card.recurrence)
    limit = max(1, min(count, 50))
    if pattern.occurrences is not None:
        limit = min(limit, max(pattern.occurrences - (card.recurrence_count or 0), 0))
    dates = upcoming(pattern, schedule_start(card), card.recurrence_last_created, count=limit) if limit else []
    return {
        "card_id": card.id,
        "pattern": pattern.to_dict(),
        "last_created": card.recurrence_last_created.isoformat() if card.recurrence_last_created else None,
        "created_count": card.recurrence_count or 0,
        "upcoming": [d.isoformat() for d in dates],
    }


def materialize_for_card(actor, card_id: int, as_of: date | None = None) -> list[dict]:
    """Catch a single template up to ``as_of`` on request."""
    from taskboard.services import board_service, policy

    card = board_service.get_card_or_404(actor, card_id)
    policy.require(actor, policy.CARD_WRITE, card)
    if not card.recurrence:
        raise ValidationError("Card has no recurrence", details={"card_id": card_id})
    return [c.to_dict() for c in materialize_due(card.id, as_of)]
