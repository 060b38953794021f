"""
Taskboard Platform
Authorization policy — the single allow/deny step run before every mutation.

Services call ``require(actor, action, target)`` instead of scattering role
checks. Rules:

    * tenants are isolated: a target in another tenant is always denied
    * ``admin`` may do anything inside its own tenant
    * directory, user, scheduler and webhook management actions are admin-only
    * notifications are visible to their recipient only
    * board-scoped actions need board membership (or board creatorship)
    * deleting a board needs its creator; comments are edited by their author
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from taskboard.core.exceptions import PermissionDenied
from taskboard.models import db

logger = logging.getLogger(__name__)


# ── Actions ──────────────────────────────────────────────────────────────────

BOARD_CREATE = "board.create"
BOARD_READ = "board.read"
BOARD_UPDATE = "board.update"
BOARD_DELETE = "board.delete"
BOARD_MANAGE_MEMBERS = "board.manage_members"
CARD_WRITE = "card.write"
COMMENT_MODIFY = "comment.modify"
RULE_MANAGE = "rule.manage"
TIME_ENTRY_MODIFY = "time_entry.modify"
NOTIFICATION_ACCESS = "notification.access"
NOTIFICATION_SEND = "notification.send"
DIRECTORY_MANAGE = "directory.manage"
DIRECTORY_SEARCH = "directory.search"
USER_MANAGE = "user.manage"
SCHEDULER_MANAGE = "scheduler.manage"
INTEGRATION_MANAGE = "integration.manage"

ADMIN_ONLY_ACTIONS = {DIRECTORY_MANAGE, DIRECTORY_SEARCH, USER_MANAGE, SCHEDULER_MANAGE, INTEGRATION_MANAGE}


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as seen by the core: who, with which role, in which tenant."""

    user_id: int
    role: str
    tenant_id: int

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(user_id=user.id, role=user.role or "user", tenant_id=user.tenant_id)


# ── Target resolution ────────────────────────────────────────────────────────


def _board_of(target):
    """Return the Board a target belongs to, or None for tenant-level targets."""
    from taskboard.models.board import Board, Card, Column

    if target is None:
        return None
    if isinstance(target, Board):
        return target
    if isinstance(target, Column):
        return target.board
    if isinstance(target, Card):
        return db.session.get(Board, target.board_id)
    card = getattr(target, "card", None)
    if card is not None:
        return db.session.get(Board, card.board_id)
    board_id = getattr(target, "board_id", None)
    if board_id is not None:
        return db.session.get(Board, board_id)
    return None


def _tenant_of(target):
    board = _board_of(target)
    if board is not None:
        return board.tenant_id
    return getattr(target, "tenant_id", None)


def is_board_member(user_id: int, board) -> bool:
    if board is None:
        return False
    if board.created_by == user_id:
        return True
    return any(m.user_id == user_id for m in board.members)


# ── Policy ───────────────────────────────────────────────────────────────────


def authorize(actor: Actor, action: str, target=None) -> bool:
    """Return True if actor may perform action on target."""
    from taskboard.models.board import Comment, TimeEntry
    from taskboard.models.notification import Notification

    if isinstance(target, Notification):
        # Recipient-only, even for admins
        return target.user_id == actor.user_id

    tenant_id = _tenant_of(target)
    if tenant_id is not None and tenant_id != actor.tenant_id:
        return False

    if action in ADMIN_ONLY_ACTIONS:
        return actor.is_admin
    if actor.is_admin:
        return True

    if action == BOARD_CREATE:
        return True

    board = _board_of(target)

    if action == BOARD_DELETE:
        return board is not None and board.created_by == actor.user_id

    if action == COMMENT_MODIFY and isinstance(target, Comment):
        return target.user_id == actor.user_id

    if action == TIME_ENTRY_MODIFY and isinstance(target, TimeEntry):
        return target.user_id == actor.user_id

    if action == RULE_MANAGE and board is None:
        # Tenant-wide rule: owner only
        return getattr(target, "created_by", None) == actor.user_id

    return is_board_member(actor.user_id, board)


def require(actor: Actor, action: str, target=None) -> None:
    """Raise PermissionDenied unless authorize() allows the action."""
    if not authorize(actor, action, target):
        logger.info(
            "Policy denied user_id=%s role=%s action=%s target=%r",
            actor.user_id, actor.role, action, target,
        )
        raise PermissionDenied(actor.user_id, action, repr(target) if target is not None else None)
