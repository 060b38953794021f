"""
Taskboard Platform
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from taskboard.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "info", "success", "warning", "error",
    "assignment", "due_date", "mention", "system",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. related_card_id / related_board_id
    are plain integers: they are checked at creation time and may dangle
    once the card or board is deleted.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    type = db.Column(db.String(30), default="info")

    related_card_id = db.Column(db.Integer, nullable=True)
    related_board_id = db.Column(db.Integer, nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)

    def mark_read(self):
        """Set the read flag. Returns False when it was already read."""
        if self.is_read:
            return False
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)
        return True

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "related_card_id": self.related_card_id,
            "related_board_id": self.related_board_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
