"""
Time Tracking Blueprint.

  GET/POST /api/v1/cards/<id>/time-entries   list / log a finished entry
  DELETE   /api/v1/time-entries/<id>
  POST     /api/v1/cards/<id>/timer/start
  POST     /api/v1/timer/stop
  GET      /api/v1/timer                     the caller's running timer, if any
  GET      /api/v1/boards/<id>/time-report   ?from=&to=&group_by=day|week|month
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import current_actor, register_error_handlers
from taskboard.services import time_tracking

time_bp = Blueprint("time", __name__, url_prefix="/api/v1")
register_error_handlers(time_bp)


@time_bp.route("/cards/<int:card_id>/time-entries", methods=["GET"])
def list_entries(card_id):
    entries = time_tracking.list_entries(current_actor(), card_id)
    return jsonify({"items": entries, "total": len(entries)}), 200


@time_bp.route("/cards/<int:card_id>/time-entries", methods=["POST"])
def log_time(card_id):
    result = time_tracking.log_time(current_actor(), card_id, request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 201


@time_bp.route("/time-entries/<int:entry_id>", methods=["DELETE"])
def delete_entry(entry_id):
    result = time_tracking.delete_entry(current_actor(), entry_id)
    return jsonify({"deleted": True, **result.to_dict()}), 200


@time_bp.route("/cards/<int:card_id>/timer/start", methods=["POST"])
def start_timer(card_id):
    data = request.get_json(silent=True) or {}
    result = time_tracking.start_timer(current_actor(), card_id, data.get("description", ""))
    return jsonify(result.to_dict()), 201


@time_bp.route("/timer/stop", methods=["POST"])
def stop_timer():
    return jsonify(time_tracking.stop_timer(current_actor()).to_dict()), 200


@time_bp.route("/timer", methods=["GET"])
def get_timer():
    entry = time_tracking.running_timer(current_actor().user_id)
    return jsonify({"running": entry.to_dict() if entry else None}), 200


@time_bp.route("/boards/<int:board_id>/time-report", methods=["GET"])
def time_report(board_id):
    report = time_tracking.board_report(
        current_actor(), board_id,
        date_from=request.args.get("from"),
        date_to=request.args.get("to"),
        group_by=request.args.get("group_by", "day"),
    )
    return jsonify(report), 200
