"""
Taskboard Platform
Domain events raised by the Entity Store after each committed mutation.

publish() posts the event to listening webhook subscriptions, then hands it
to the automation evaluator synchronously.
Actions executed by a rule raise their own events, which are evaluated
recursively up to AUTOMATION_MAX_CHAIN_DEPTH levels; deeper events are
logged and dropped so two rules cannot ping-pong forever.
"""

from __future__ import annotations

import contextvars
import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)

_chain_depth: contextvars.ContextVar[int] = contextvars.ContextVar("automation_chain_depth", default=0)


@dataclass
class DomainEvent:
    """One logical change: card_created, card_moved, card_completed, ..."""

    type: str
    tenant_id: int
    board_id: int | None = None
    card_id: int | None = None
    actor_id: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


def current_depth() -> int:
    return _chain_depth.get()


def _dispatch_webhooks(event: DomainEvent) -> None:
    from taskboard.models import db
    from taskboard.services import webhook_service

    try:
        webhook_service.dispatch(event)
    except Exception:
        db.session.rollback()
        logger.exception("Webhook dispatch failed for %s card_id=%s", event.type, event.card_id)


def publish(event: DomainEvent | None) -> list:
    """Evaluate automation rules for event. Returns the executions created."""
    if event is None:
        return []
    _dispatch_webhooks(event)
    if not current_app.config.get("AUTOMATION_ENABLED", True):
        return []

    depth = _chain_depth.get()
    max_depth = current_app.config.get("AUTOMATION_MAX_CHAIN_DEPTH", 3)
    if depth >= max_depth:
        logger.warning(
            "Automation chain depth %d reached, dropping event %s card_id=%s",
            depth, event.type, event.card_id,
        )
        return []

    from taskboard.services import automation

    token = _chain_depth.set(depth + 1)
    try:
        return automation.evaluate(event)
    except Exception:
        # The mutation that raised the event is already committed
        from taskboard.models import db

        db.session.rollback()
        logger.exception("Automation evaluation failed for %s card_id=%s", event.type, event.card_id)
        return []
    finally:
        _chain_depth.reset(token)
