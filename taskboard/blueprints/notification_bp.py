"""
Notification Blueprint — the caller's in-app notifications.

Every route is scoped to the authenticated recipient; another user's
notification id answers 404.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from taskboard.blueprints import arg_bool, current_actor, page_args, register_error_handlers
from taskboard.services.notification import NotificationService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """Query params: unread_only, limit, offset."""
    actor = current_actor()
    limit, offset = page_args(default_limit=50, max_limit=200)
    items, total = NotificationService.list_for_user(
        actor, unread_only=arg_bool("unread_only"), limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(actor),
    }), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_actor())}), 200


@notification_bp.route("/notifications/stats", methods=["GET"])
def notification_stats():
    return jsonify(NotificationService.counts(current_actor())), 200


@notification_bp.route("/notifications/<int:nid>", methods=["GET"])
def get_notification(nid):
    return jsonify(NotificationService.get(current_actor(), nid).to_dict()), 200


@notification_bp.route("/notifications/<int:nid>/read", methods=["PATCH", "POST"])
def mark_read(nid):
    return jsonify(NotificationService.mark_read(current_actor(), nid).to_dict()), 200


@notification_bp.route("/notifications/mark-all-read", methods=["POST"])
def mark_all_read():
    return jsonify({"marked_read": NotificationService.mark_all_read(current_actor())}), 200


@notification_bp.route("/notifications/<int:nid>", methods=["DELETE"])
def delete_notification(nid):
    NotificationService.delete(current_actor(), nid)
    return jsonify({"deleted": True, "id": nid}), 200


@notification_bp.route("/notifications", methods=["DELETE"])
def clear_notifications():
    """Query param read_only=true keeps unread notifications."""
    count = NotificationService.clear(current_actor(), read_only=arg_bool("read_only"))
    return jsonify({"deleted": count}), 200


@notification_bp.route("/boards/<int:board_id>/notify", methods=["POST"])
def notify_board(board_id):
    """Send a notification to every active board member except the caller.

    Returns 207 with the delivered subset when some recipients failed.
    """
    from taskboard.services import board_service, policy

    actor = current_actor()
    board = board_service.get_board_or_404(actor, board_id)
    policy.require(actor, policy.NOTIFICATION_SEND, board)
    data = request.get_json(silent=True) or {}
    outcome = NotificationService.notify_board_members(
        board.id,
        data.get("title", ""),
        data.get("message", ""),
        data.get("type", "info"),
        related_card_id=data.get("card_id"),
        exclude_user_id=actor.user_id,
    )
    return jsonify(outcome.to_dict()), 207 if outcome.failures else 201
