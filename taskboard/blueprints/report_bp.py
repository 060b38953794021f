"""
Report Blueprint — board statistics.

  GET /api/v1/boards/<id>/statistics   ?as_of=YYYY-MM-DD
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import current_actor, register_error_handlers
from taskboard.services import board_service, report_service

report_bp = Blueprint("report", __name__, url_prefix="/api/v1")
register_error_handlers(report_bp)


@report_bp.route("/boards/<int:board_id>/statistics", methods=["GET"])
def board_statistics(board_id):
    as_of = board_service.parse_date(request.args.get("as_of"), "as_of")
    return jsonify(report_service.board_statistics(current_actor(), board_id, today=as_of)), 200
