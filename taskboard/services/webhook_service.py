"""
Taskboard Platform
Webhook service — subscriptions, event dispatch, delivery log.

Committed domain events are fanned out to every active subscription of the
tenant that listens to the event type (and, for board-scoped
subscriptions, to that board). Each POST is attempted exactly once and
logged as a WebhookDelivery; failed deliveries bump the subscription's
consecutive failure counter, a success resets it.

Management is admin-only (policy.INTEGRATION_MANAGE).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from urllib.parse import urlparse

from flask import current_app

from taskboard.core.exceptions import ExternalUnavailableError, ValidationError
from taskboard.integrations.webhook_gateway import webhook_gateway
from taskboard.models import db
from taskboard.models.integration import WEBHOOK_EVENTS, WebhookDelivery, WebhookSubscription
from taskboard.services import board_service, policy
from taskboard.services.events import DomainEvent
from taskboard.services.policy import Actor
from taskboard.utils.crypto import decrypt_secret, encrypt_secret

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timeout() -> int:
    return current_app.config.get("WEBHOOK_TIMEOUT_SECONDS", 5)


# ═════════════════════════════════════════════════════════════════════════════
# Validation
# ═════════════════════════════════════════════════════════════════════════════


def validate_url(url) -> str:
    url = url.strip() if isinstance(url, str) else ""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("url must be an absolute http(s) URL", details={"url": url})
    return url[:500]


def _validate_events(events) -> list[str]:
    if not isinstance(events, list) or not events:
        raise ValidationError("events must be a non-empty list", details={"events": events})
    invalid = sorted({e for e in events if e not in WEBHOOK_EVENTS}, key=str)
    if invalid:
        raise ValidationError(f"Invalid event types: {invalid}", details={"events": invalid})
    return sorted(set(events))


def _validate_headers(headers) -> dict:
    if headers in (None, ""):
        return {}
    if not isinstance(headers, dict) or not all(
        isinstance(k, str) and isinstance(v, str) for k, v in headers.items()
    ):
        raise ValidationError("headers must be an object of strings")
    reserved = [k for k in headers if k.lower().startswith("x-taskboard-") or k.lower() == "content-type"]
    if reserved:
        raise ValidationError(f"Reserved headers cannot be overridden: {reserved}")
    return headers


# ═════════════════════════════════════════════════════════════════════════════
# Subscriptions
# ═════════════════════════════════════════════════════════════════════════════


def get_subscription_or_404(actor: Actor, subscription_id: int) -> WebhookSubscription:
    sub = WebhookSubscription.get_or_404(actor.tenant_id, subscription_id)
    policy.require(actor, policy.INTEGRATION_MANAGE, sub)
    return sub


def list_subscriptions(actor: Actor, board_id: int | None = None) -> list[dict]:
    policy.require(actor, policy.INTEGRATION_MANAGE)
    q = WebhookSubscription.query_for_tenant(actor.tenant_id)
    if board_id is not None:
        q = q.filter_by(board_id=board_id)
    return [s.to_dict() for s in q.order_by(WebhookSubscription.id).all()]


def create_subscription(actor: Actor, data: dict) -> WebhookSubscription:
    policy.require(actor, policy.INTEGRATION_MANAGE)
    board_id = data.get("board_id")
    if board_id is not None:
        board_id = board_service.get_board_or_404(actor, board_id).id

    secret = data.get("secret") or ""
    sub = WebhookSubscription(
        tenant_id=actor.tenant_id,
        board_id=board_id,
        name=(data.get("name") or "").strip()[:100],
        url=validate_url(data.get("url")),
        secret_encrypted=encrypt_secret(secret) if secret else None,
        events=_validate_events(data.get("events")),
        headers=_validate_headers(data.get("headers")),
        is_active=bool(data.get("is_active", True)),
        created_by=actor.user_id,
    )
    db.session.add(sub)
    db.session.commit()
    logger.info("Webhook %s created for tenant %s url=%s", sub.id, actor.tenant_id, sub.url)
    return sub


def update_subscription(actor: Actor, subscription_id: int, data: dict) -> WebhookSubscription:
    sub = get_subscription_or_404(actor, subscription_id)
    if "url" in data:
        sub.url = validate_url(data["url"])
    if "events" in data:
        sub.events = _validate_events(data["events"])
    if "headers" in data:
        sub.headers = _validate_headers(data["headers"])
    if "name" in data:
        sub.name = (data.get("name") or "").strip()[:100]
    if "board_id" in data:
        board_id = data["board_id"]
        sub.board_id = board_service.get_board_or_404(actor, board_id).id if board_id is not None else None
    if "secret" in data:
        # Empty string clears the secret
        sub.secret_encrypted = encrypt_secret(data["secret"]) if data["secret"] else None
    if "is_active" in data:
        sub.is_active = bool(data["is_active"])
        if sub.is_active:
            sub.failure_count = 0
    db.session.commit()
    return sub


def delete_subscription(actor: Actor, subscription_id: int) -> None:
    sub = get_subscription_or_404(actor, subscription_id)
    db.session.delete(sub)
    db.session.commit()
    logger.info("Webhook %s deleted", subscription_id)


def list_deliveries(actor: Actor, subscription_id: int, limit: int = 50) -> list[dict]:
    sub = get_subscription_or_404(actor, subscription_id)
    rows = sub.deliveries.order_by(WebhookDelivery.id.desc()).limit(limit).all()
    return [d.to_dict() for d in rows]


# ═════════════════════════════════════════════════════════════════════════════
# Delivery
# ═════════════════════════════════════════════════════════════════════════════


def event_payload(event: DomainEvent) -> dict:
    return {
        "event": event.type,
        "tenant_id": event.tenant_id,
        "board_id": event.board_id,
        "card_id": event.card_id,
        "actor_id": event.actor_id,
        "data": event.payload,
        "sent_at": _utcnow().isoformat(),
    }


def deliver(sub: WebhookSubscription, event_type: str, payload: dict) -> WebhookDelivery:
    """POST payload to one subscription and log the attempt. Never retried."""
    secret = decrypt_secret(sub.secret_encrypted) if sub.secret_encrypted else None
    result = webhook_gateway.post(
        sub.url, event_type, payload, secret=secret, headers=sub.headers, timeout=_timeout(),
    )
    delivery = WebhookDelivery(
        subscription_id=sub.id,
        event_type=event_type,
        payload=payload,
        signature=result.signature,
        success=result.ok,
        response_status=result.status_code,
        response_body=result.body,
        error=result.error,
        duration_ms=result.duration_ms,
    )
    sub.last_delivery_at = _utcnow()
    sub.failure_count = 0 if result.ok else (sub.failure_count or 0) + 1
    db.session.add(delivery)
    db.session.commit()
    return delivery


def dispatch(event: DomainEvent) -> list[WebhookDelivery]:
    """Send event to every listening subscription of its tenant."""
    if not current_app.config.get("WEBHOOKS_ENABLED", True):
        return []
    subs = (
        WebhookSubscription.query_for_tenant(event.tenant_id)
        .filter_by(is_active=True)
        .order_by(WebhookSubscription.id)
        .all()
    )
    targets = [s for s in subs if s.listens_to(event.type, event.board_id)]
    if not targets:
        return []
    payload = event_payload(event)
    deliveries = [deliver(sub, event.type, payload) for sub in targets]
    failed = sum(1 for d in deliveries if not d.success)
    if failed:
        logger.warning("Webhook dispatch of %s: %d of %d deliveries failed", event.type, failed, len(deliveries))
    return deliveries


def send_test(actor: Actor, subscription_id: int) -> WebhookDelivery:
    sub = get_subscription_or_404(actor, subscription_id)
    if not sub.is_active:
        raise ValidationError("Webhook is inactive")
    payload = {"event": "ping", "webhook_id": sub.id, "sent_at": _utcnow().isoformat()}
    return deliver(sub, "ping", payload)


def send_for_rule(actor: Actor, config: dict, event: DomainEvent, message: str = "") -> str:
    """Automation ``webhook`` action.

    ``subscription_id`` reuses a stored endpoint (signed, logged); a bare
    ``url`` is posted unsigned and not logged. Any failed POST raises
    ExternalUnavailableError so the execution records the action as failed.
    """
    payload = event_payload(event)
    if message:
        payload["message"] = message

    if config.get("subscription_id") is not None:
        sub = WebhookSubscription.get_or_404(actor.tenant_id, config["subscription_id"])
        if not sub.is_active:
            raise ValidationError(f"Webhook {sub.id} is inactive")
        delivery = deliver(sub, event.type, payload)
        if not delivery.success:
            raise ExternalUnavailableError("webhook", delivery.error or "delivery failed")
        return f"webhook {sub.id} answered {delivery.response_status}"

    url = validate_url(config.get("url"))
    result = webhook_gateway.post(url, event.type, payload, timeout=_timeout())
    if not result.ok:
        raise ExternalUnavailableError("webhook", result.error or "delivery failed")
    return f"webhook {url} answered {result.status_code}"

