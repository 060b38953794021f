"""
Taskboard Platform
Outbound webhook subscriptions and their delivery log.

Models:
    - WebhookSubscription: tenant (or single board) endpoint receiving card events
    - WebhookDelivery: one POST attempt with the response that came back

The signing secret is Fernet-encrypted at rest (taskboard.utils.crypto)
and never returned by to_dict().
"""

from datetime import datetime, timezone

from taskboard.models import db
from taskboard.models.base import TenantModel

# Domain events a subscription may listen to; "ping" is sent by the test endpoint only
WEBHOOK_EVENTS = {
    "card_created",
    "card_updated",
    "card_moved",
    "card_completed",
    "card_assigned",
    "card_deleted",
    "card_overdue",
    "due_date_approaching",
    "board_updated",
    "board_member_added",
    "board_member_removed",
}


def _utcnow():
    return datetime.now(timezone.utc)


class WebhookSubscription(TenantModel):
    """Outbound webhook. board_id NULL means every board of the tenant."""

    __tablename__ = "webhook_subscriptions"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(db.Integer, db.ForeignKey("boards.id", ondelete="CASCADE"), nullable=True, index=True)
    name = db.Column(db.String(100), default="")
    url = db.Column(db.String(500), nullable=False)
    secret_encrypted = db.Column(db.Text, nullable=True, comment="HMAC-SHA256 signing secret")
    events = db.Column(db.JSON, default=list)
    headers = db.Column(db.JSON, default=dict)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    failure_count = db.Column(db.Integer, default=0, nullable=False, comment="Consecutive failed deliveries")
    last_delivery_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    deliveries = db.relationship(
        "WebhookDelivery", back_populates="subscription",
        cascade="all, delete-orphan", lazy="dynamic",
    )

    def listens_to(self, event_type, board_id):
        if not self.is_active or event_type not in (self.events or []):
            return False
        return self.board_id is None or self.board_id == board_id

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "board_id": self.board_id,
            "name": self.name,
            "url": self.url,
            "has_secret": bool(self.secret_encrypted),
            "events": self.events or [],
            "headers": self.headers or {},
            "is_active": self.is_active,
            "failure_count": self.failure_count,
            "last_delivery_at": self.last_delivery_at.isoformat() if self.last_delivery_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<WebhookSubscription {self.id} {self.url}>"


class WebhookDelivery(db.Model):
    __tablename__ = "webhook_deliveries"

    id = db.Column(db.Integer, primary_key=True)
    subscription_id = db.Column(
        db.Integer, db.ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    event_type = db.Column(db.String(50), nullable=False)
    payload = db.Column(db.JSON, default=dict)
    signature = db.Column(db.String(100), nullable=True)
    success = db.Column(db.Boolean, default=False, nullable=False)
    response_status = db.Column(db.Integer, nullable=True)
    response_body = db.Column(db.Text, default="")
    error = db.Column(db.Text, nullable=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    subscription = db.relationship("WebhookSubscription", back_populates="deliveries")

    def to_dict(self):
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "event_type": self.event_type,
            "payload": self.payload or {},
            "signature": self.signature,
            "success": self.success,
            "response_status": self.response_status,
            "response_body": self.response_body,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
        }
