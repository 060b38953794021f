"""
Taskboard Platform
Notification Dispatcher.

Central service for creating, fanning out and querying in-app
notifications. Board-wide dispatch resolves the member set when it runs,
so members added after the triggering event are still notified.

Read-side operations are recipient-scoped: another user's notification
looks exactly like a missing one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from taskboard.core.exceptions import NotFoundError, ValidationError
from taskboard.models import db
from taskboard.models.auth import User
from taskboard.models.board import Board, Card
from taskboard.models.notification import NOTIFICATION_TYPES, Notification
from taskboard.services import policy
from taskboard.services.policy import Actor

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    """Result of a multi-recipient dispatch."""

    notifications: list[Notification] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sent": len(self.notifications),
            "notifications": [n.to_dict() for n in self.notifications],
            "failures": self.failures,
        }


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def _validate(user: User | None, user_id, title, ntype, related_card_id, related_board_id):
        if user is None:
            raise NotFoundError("User", user_id)
        if not (title or "").strip():
            raise ValidationError("title is required", details={"title": "required"})
        if ntype not in NOTIFICATION_TYPES:
            raise ValidationError(
                f"type must be one of: {', '.join(sorted(NOTIFICATION_TYPES))}",
                details={"type": ntype},
            )
        if related_card_id is not None:
            card = db.session.get(Card, related_card_id)
            if card is None or card.column.board.tenant_id != user.tenant_id:
                raise ValidationError("related_card_id does not reference an existing card",
                                      details={"related_card_id": related_card_id})
        if related_board_id is not None:
            board = db.session.get(Board, related_board_id)
            if board is None or board.tenant_id != user.tenant_id:
                raise ValidationError("related_board_id does not reference an existing board",
                                      details={"related_board_id": related_board_id})

    @staticmethod
    def notify_user(user_id, title, message="", ntype="info", *,
                    related_card_id=None, related_board_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        user = db.session.get(User, user_id) if user_id is not None else None
        NotificationService._validate(user, user_id, title, ntype, related_card_id, related_board_id)
        notif = Notification(
            user_id=user.id,
            title=title.strip()[:300],
            message=message or "",
            type=ntype,
            related_card_id=related_card_id,
            related_board_id=related_board_id,
        )
        db.session.add(notif)
        db.session.commit()
        logger.debug("Notification %s sent to user %s (%s)", notif.id, user.id, ntype)
        return notif

    @staticmethod
    def notify_board_members(board_id, title, message="", ntype="info", *,
                             related_card_id=None, exclude_user_id=None):
        """
        One notification per current board member (creator included).

        Inactive members are reported as failures; the rest are still sent.

        Returns:
            DispatchOutcome with the created notifications and the failures.
        """
        board = db.session.get(Board, board_id)
        if board is None:
            raise NotFoundError("Board", board_id)
        if not (title or "").strip():
            raise ValidationError("title is required", details={"title": "required"})
        if ntype not in NOTIFICATION_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(sorted(NOTIFICATION_TYPES))}")
        if related_card_id is not None:
            card = db.session.get(Card, related_card_id)
            if card is None or card.board_id != board.id:
                raise ValidationError("related_card_id is not a card of this board",
                                      details={"related_card_id": related_card_id})

        recipient_ids = sorted(set(board.member_ids()) - {exclude_user_id})
        outcome = DispatchOutcome()
        for user_id in recipient_ids:
            user = db.session.get(User, user_id)
            if user is None or not user.is_active:
                outcome.failures.append({"user_id": user_id, "error": "user inactive or missing"})
                continue
            notif = Notification(
                user_id=user_id,
                title=title.strip()[:300],
                message=message or "",
                type=ntype,
                related_card_id=related_card_id,
                related_board_id=board.id,
            )
            db.session.add(notif)
            outcome.notifications.append(notif)
        db.session.commit()

        if outcome.failures:
            logger.warning(
                "Board %s notification: %d sent, %d failed",
                board_id, len(outcome.notifications), len(outcome.failures),
            )
        return outcome

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(actor: Actor, unread_only=False, limit=50, offset=0):
        """
        Retrieve the actor's notifications, newest first.
        """
        q = Notification.query.filter_by(user_id=actor.user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(actor: Actor):
        """Return count of unread notifications."""
        return Notification.query.filter_by(user_id=actor.user_id, is_read=False).count()

    @staticmethod
    def counts(actor: Actor):
        total = Notification.query.filter_by(user_id=actor.user_id).count()
        unread = NotificationService.unread_count(actor)
        return {"total": total, "unread": unread, "read": total - unread}

    @staticmethod
    def get(actor: Actor, notification_id):
        notif = db.session.get(Notification, notification_id)
        if notif is None or not policy.authorize(actor, policy.NOTIFICATION_ACCESS, notif):
            raise NotFoundError("Notification", notification_id)
        return notif

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(actor: Actor, notification_id):
        """Mark a single notification as read. Already-read is a no-op."""
        notif = NotificationService.get(actor, notification_id)
        if notif.mark_read():
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(actor: Actor):
        """Mark all of the actor's notifications as read. Returns how many changed."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=actor.user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count

    @staticmethod
    def delete(actor: Actor, notification_id):
        notif = NotificationService.get(actor, notification_id)
        db.session.delete(notif)
        db.session.commit()

    @staticmethod
    def clear(actor: Actor, read_only=False):
        """Delete the actor's notifications (optionally only read ones). Returns how many."""
        q = Notification.query.filter_by(user_id=actor.user_id)
        if read_only:
            q = q.filter_by(is_read=True)
        count = q.delete(synchronize_session="fetch")
        db.session.commit()
        return count

    # ── Maintenance ───────────────────────────────────────────────────────

    @staticmethod
    def cleanup(retention_days=90):
        """Remove read notifications older than retention_days."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        count = (
            Notification.query
            .filter(Notification.is_read.is_(True), Notification.created_at < cutoff)
            .delete(synchronize_session=False)
        )
        db.session.commit()
        logger.info("Removed %d read notification(s) older than %d days", count, retention_days)
        return count

    # ── Board lifecycle helpers ───────────────────────────────────────────

    @staticmethod
    def notify_card_due(card, days_until_due):
        """Notify a card's members that it is due soon or overdue."""
        if days_until_due < 0:
            title, ntype = f"Overdue: {card.title}"[:300], "warning"
            message = f"'{card.title}' was due on {card.due_date.isoformat()}"
        else:
            title, ntype = f"Due soon: {card.title}"[:300], "due_date"
            message = f"'{card.title}' is due on {card.due_date.isoformat()}"
        sent = []
        for member in card.members:
            if not member.is_active:
                continue
            sent.append(NotificationService.notify_user(
                member.id, title, message, ntype,
                related_card_id=card.id, related_board_id=card.board_id,
            ))
        return sent
