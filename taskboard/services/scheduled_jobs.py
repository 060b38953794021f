"""
Taskboard Platform
Scheduled Jobs.

Concrete job implementations that run on a schedule.

Jobs:
    - recurrence_check: Materializes due occurrences of recurring cards
    - due_date_scanner: Raises due-soon / overdue events and notifies card members
    - scheduled_workflows: Fires automation rules with a ``schedule`` trigger
    - stale_notification_cleanup: Deletes old read notifications
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from taskboard.models import db
from taskboard.models.board import Board, Card
from taskboard.models.notification import Notification
from taskboard.services.scheduler_service import DAY, HOUR, register_job

logger = logging.getLogger(__name__)


def _notified_today(card_id: int) -> bool:
    """Has a due-date notification for this card been created today?"""
    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return (
        Notification.query.filter(
            Notification.related_card_id == card_id,
            Notification.type.in_(["due_date", "warning"]),
            Notification.created_at >= today_start,
        ).first()
    ) is not None


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Recurrence Check
# ═══════════════════════════════════════════════════════════════════════════

@register_job("recurrence_check", every=HOUR)
def materialize_recurring_cards(app) -> dict[str, Any]:
    """Create cards for every due occurrence of recurring templates."""
    from taskboard.services.recurrence import materialize_all_due

    stats = materialize_all_due()
    logger.info(
        "Recurrence check: %d templates, %d cards created, %d failed",
        stats["checked"], stats["created"], stats["failed"],
    )
    return stats


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Due Date Scanner
# ═══════════════════════════════════════════════════════════════════════════

@register_job("due_date_scanner", every=DAY)
def scan_due_dates(app) -> dict[str, Any]:
    """Publish due_date_approaching / card_overdue events and notify card members.

    Each card is handled at most once per day: Card.due_alerted_on is stamped
    before its event is published, so a re-triggered scan neither notifies
    nor fires the same rules again.
    """
    from taskboard.services.events import DomainEvent, publish
    from taskboard.services.notification import NotificationService

    today = datetime.now(timezone.utc).date()
    horizon = today + timedelta(days=app.config.get("DUE_SOON_DAYS", 1))
    results = {"due_soon": 0, "overdue": 0, "notifications_created": 0, "already_alerted": 0, "errors": 0}

    rows = (
        db.session.query(Card.id, Card.due_date, Card.due_alerted_on, Board.id, Board.tenant_id)
        .join(Board, Card.board_id == Board.id)
        .filter(
            Card.is_archived.is_(False),
            Card.completed_at.is_(None),
            Card.due_date.isnot(None),
            Card.due_date <= horizon,
            Board.is_archived.is_(False),
        )
        .order_by(Card.id)
        .all()
    )

    for card_id, due_date, alerted_on, board_id, tenant_id in rows:
        days = (due_date - today).days
        event_type = "card_overdue" if days < 0 else "due_date_approaching"
        results["overdue" if days < 0 else "due_soon"] += 1
        if alerted_on == today:
            results["already_alerted"] += 1
            continue
        try:
            card = db.session.get(Card, card_id)
            if not _notified_today(card_id):
                results["notifications_created"] += len(NotificationService.notify_card_due(card, days))
            card.due_alerted_on = today
            db.session.commit()
            publish(DomainEvent(
                type=event_type,
                tenant_id=tenant_id,
                board_id=board_id,
                card_id=card_id,
                payload={"days_until_due": days, "due_date": due_date.isoformat()},
            ))
        except Exception:
            db.session.rollback()
            results["errors"] += 1
            logger.exception("Due date scan failed for card %s", card_id)

    logger.info(
        "Due date scanner: %d due soon, %d overdue, %d already alerted today",
        results["due_soon"], results["overdue"], results["already_alerted"],
    )
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Scheduled Workflows
# ═══════════════════════════════════════════════════════════════════════════

@register_job("scheduled_workflows", every=5 * 60)
def run_scheduled_workflows(app) -> dict[str, Any]:
    """Execute automation rules whose schedule interval has elapsed."""
    from taskboard.services.automation import run_scheduled_rules

    return run_scheduled_rules()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 4: Stale Notification Cleanup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("stale_notification_cleanup", every=DAY)
def cleanup_stale_notifications(app) -> dict[str, Any]:
    """Delete read notifications older than the retention window."""
    from taskboard.services.notification import NotificationService

    days = app.config.get("NOTIFICATION_RETENTION_DAYS", 90)
    deleted = NotificationService.cleanup(retention_days=days)
    return {"deleted": deleted, "retention_days": days}
