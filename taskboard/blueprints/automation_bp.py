"""
Automation Blueprint — rules, workflows, executions and templates.

  GET/POST       /api/v1/automation/rules           ?board_id=
  GET/PUT/DELETE /api/v1/automation/rules/<id>
  POST           /api/v1/automation/rules/<id>/toggle
  POST           /api/v1/automation/rules/<id>/run   { card_id? }
  GET            /api/v1/automation/rules/<id>/executions
  GET            /api/v1/automation/stats
  GET            /api/v1/automation/templates
  POST           /api/v1/automation/templates/<key>  { board_id?, name? }
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import current_actor, register_error_handlers
from taskboard.services import automation, policy

automation_bp = Blueprint("automation", __name__, url_prefix="/api/v1/automation")
register_error_handlers(automation_bp)


@automation_bp.route("/rules", methods=["GET"])
def list_rules():
    rules = automation.list_rules(current_actor(), board_id=request.args.get("board_id", type=int))
    return jsonify({"items": rules, "total": len(rules)}), 200


@automation_bp.route("/rules", methods=["POST"])
def create_rule():
    """Body: { name, board_id?, kind?, trigger_type, trigger_config?, conditions?, actions, is_active? }"""
    rule = automation.create_rule(current_actor(), request.get_json(silent=True) or {})
    return jsonify(rule.to_dict()), 201


@automation_bp.route("/rules/<int:rule_id>", methods=["GET"])
def get_rule(rule_id):
    actor = current_actor()
    rule = automation.get_rule_or_404(actor, rule_id)
    policy.require(actor, policy.RULE_MANAGE, rule)
    return jsonify(rule.to_dict()), 200


@automation_bp.route("/rules/<int:rule_id>", methods=["PUT"])
def update_rule(rule_id):
    rule = automation.update_rule(current_actor(), rule_id, request.get_json(silent=True) or {})
    return jsonify(rule.to_dict()), 200


@automation_bp.route("/rules/<int:rule_id>", methods=["DELETE"])
def delete_rule(rule_id):
    automation.delete_rule(current_actor(), rule_id)
    return jsonify({"deleted": True, "id": rule_id}), 200


@automation_bp.route("/rules/<int:rule_id>/toggle", methods=["POST"])
def toggle_rule(rule_id):
    return jsonify(automation.toggle_rule(current_actor(), rule_id).to_dict()), 200


@automation_bp.route("/rules/<int:rule_id>/run", methods=["POST"])
def run_rule(rule_id):
    data = request.get_json(silent=True) or {}
    execution = automation.run_rule_manually(current_actor(), rule_id, card_id=data.get("card_id"))
    return jsonify(execution.to_dict()), 200


@automation_bp.route("/rules/<int:rule_id>/executions", methods=["GET"])
def list_executions(rule_id):
    limit = min(request.args.get("limit", 50, type=int), 200)
    items = automation.list_executions(current_actor(), rule_id, limit=limit)
    return jsonify({"items": items, "total": len(items)}), 200


@automation_bp.route("/stats", methods=["GET"])
def stats():
    return jsonify(automation.get_stats(current_actor())), 200


@automation_bp.route("/templates", methods=["GET"])
def list_templates():
    current_actor()
    return jsonify(automation.list_templates()), 200


@automation_bp.route("/templates/<key>", methods=["POST"])
def create_from_template(key):
    data = request.get_json(silent=True) or {}
    rule = automation.create_from_template(current_actor(), key, board_id=data.get("board_id"), name=data.get("name"))
    return jsonify(rule.to_dict()), 201
