"""
Planning Blueprint — board dependencies, milestones, budgets, risks and resources.

  GET/POST   /api/v1/boards/<id>/planning/<feature>
  PUT/DELETE /api/v1/planning/<record_id>
  GET        /api/v1/boards/<id>/planning/budget-summary
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import current_actor, register_error_handlers
from taskboard.services import planning_service

planning_bp = Blueprint("planning", __name__, url_prefix="/api/v1")
register_error_handlers(planning_bp)


@planning_bp.route("/boards/<int:board_id>/planning/budget-summary", methods=["GET"])
def budget_summary(board_id):
    return jsonify(planning_service.budget_summary(current_actor(), board_id)), 200


@planning_bp.route("/boards/<int:board_id>/planning", methods=["GET"])
@planning_bp.route("/boards/<int:board_id>/planning/<feature>", methods=["GET"])
def list_records(board_id, feature=None):
    items = planning_service.list_records(current_actor(), board_id, feature)
    return jsonify({"items": items, "total": len(items)}), 200


@planning_bp.route("/boards/<int:board_id>/planning/<feature>", methods=["POST"])
def create_record(board_id, feature):
    record = planning_service.create_record(current_actor(), board_id, feature, request.get_json(silent=True) or {})
    return jsonify(record), 201


@planning_bp.route("/planning/<int:record_id>", methods=["PUT"])
def update_record(record_id):
    return jsonify(planning_service.update_record(current_actor(), record_id, request.get_json(silent=True) or {})), 200


@planning_bp.route("/planning/<int:record_id>", methods=["DELETE"])
def delete_record(record_id):
    planning_service.delete_record(current_actor(), record_id)
    return jsonify({"deleted": True, "id": record_id}), 200
