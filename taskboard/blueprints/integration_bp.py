"""
Integration Blueprint — outbound webhook subscriptions (admin only).

  GET/POST       /api/v1/webhooks                    ?board_id=
  GET/PUT/DELETE /api/v1/webhooks/<id>
  GET            /api/v1/webhooks/<id>/deliveries    ?limit=
  POST           /api/v1/webhooks/<id>/test
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import current_actor, register_error_handlers
from taskboard.services import webhook_service

integration_bp = Blueprint("integration", __name__, url_prefix="/api/v1/webhooks")
register_error_handlers(integration_bp)


@integration_bp.route("", methods=["GET"])
def list_webhooks():
    items = webhook_service.list_subscriptions(current_actor(), board_id=request.args.get("board_id", type=int))
    return jsonify({"items": items, "total": len(items)}), 200


@integration_bp.route("", methods=["POST"])
def create_webhook():
    """Body: { url, events, name?, board_id?, secret?, headers?, is_active? }"""
    sub = webhook_service.create_subscription(current_actor(), request.get_json(silent=True) or {})
    return jsonify(sub.to_dict()), 201


@integration_bp.route("/<int:webhook_id>", methods=["GET"])
def get_webhook(webhook_id):
    return jsonify(webhook_service.get_subscription_or_404(current_actor(), webhook_id).to_dict()), 200


@integration_bp.route("/<int:webhook_id>", methods=["PUT"])
def update_webhook(webhook_id):
    sub = webhook_service.update_subscription(current_actor(), webhook_id, request.get_json(silent=True) or {})
    return jsonify(sub.to_dict()), 200


@integration_bp.route("/<int:webhook_id>", methods=["DELETE"])
def delete_webhook(webhook_id):
    webhook_service.delete_subscription(current_actor(), webhook_id)
    return jsonify({"deleted": True, "id": webhook_id}), 200


@integration_bp.route("/<int:webhook_id>/deliveries", methods=["GET"])
def list_deliveries(webhook_id):
    limit = min(request.args.get("limit", 50, type=int), 200)
    items = webhook_service.list_deliveries(current_actor(), webhook_id, limit=limit)
    return jsonify({"items": items, "total": len(items)}), 200


@integration_bp.route("/<int:webhook_id>/test", methods=["POST"])
def test_webhook(webhook_id):
    delivery = webhook_service.send_test(current_actor(), webhook_id)
    return jsonify(delivery.to_dict()), 200
