"""
Board Blueprint — boards, members, columns, labels and board activity.

Endpoint groups:
  Boards     GET/POST /api/v1/boards, GET/PUT/DELETE /api/v1/boards/<id>
  Members    GET/POST /api/v1/boards/<id>/members, DELETE /api/v1/boards/<id>/members/<user_id>
  Columns    POST /api/v1/boards/<id>/columns, PUT/DELETE /api/v1/columns/<id>,
             POST /api/v1/columns/<id>/move
  Labels     GET/POST /api/v1/labels
  Activity   GET /api/v1/boards/<id>/activity

Service layer owns all business logic and commits.
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import arg_bool, current_actor, register_error_handlers
from taskboard.services import board_service
from taskboard.utils.errors import must_be_integer, required

boards_bp = Blueprint("boards", __name__, url_prefix="/api/v1")
register_error_handlers(boards_bp)


def _int_field(data, key):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


# ═════════════════════════════════════════════════════════════════════════
# Boards
# ═════════════════════════════════════════════════════════════════════════


@boards_bp.route("/boards", methods=["GET"])
def list_boards():
    boards = board_service.list_boards(
        current_actor(),
        include_archived=arg_bool("include_archived"),
        starred_only=arg_bool("starred"),
    )
    return jsonify({"items": boards, "total": len(boards)}), 200


@boards_bp.route("/boards", methods=["POST"])
def create_board():
    """Body: { title, description?, background?, template?, member_ids? }"""
    result = board_service.create_board(current_actor(), request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 201


@boards_bp.route("/boards/<int:board_id>", methods=["GET"])
def get_board(board_id):
    board = board_service.get_board(current_actor(), board_id, include_children=arg_bool("include_children", True))
    return jsonify(board), 200


@boards_bp.route("/boards/<int:board_id>", methods=["PUT"])
def update_board(board_id):
    result = board_service.update_board(current_actor(), board_id, request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 200


@boards_bp.route("/boards/<int:board_id>", methods=["DELETE"])
def delete_board(board_id):
    result = board_service.delete_board(current_actor(), board_id)
    return jsonify({"deleted": True, **result.entity}), 200


# ═════════════════════════════════════════════════════════════════════════
# Members
# ═════════════════════════════════════════════════════════════════════════


@boards_bp.route("/boards/<int:board_id>/members", methods=["GET"])
def list_members(board_id):
    return jsonify(board_service.list_board_members(current_actor(), board_id)), 200


@boards_bp.route("/boards/<int:board_id>/members", methods=["POST"])
def add_member(board_id):
    data = request.get_json(silent=True) or {}
    user_id = _int_field(data, "user_id")
    if user_id is None:
        return required("user_id")
    result = board_service.add_board_member(current_actor(), board_id, user_id, data.get("role", "member"))
    return jsonify(result.to_dict()), 201


@boards_bp.route("/boards/<int:board_id>/members/<int:user_id>", methods=["DELETE"])
def remove_member(board_id, user_id):
    result = board_service.remove_board_member(current_actor(), board_id, user_id)
    return jsonify(result.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Columns
# ═════════════════════════════════════════════════════════════════════════


@boards_bp.route("/boards/<int:board_id>/columns", methods=["POST"])
def create_column(board_id):
    """Body: { title, color?, is_done?, wip_limit?, position? }"""
    result = board_service.create_column(current_actor(), board_id, request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 201


@boards_bp.route("/columns/<int:column_id>", methods=["PUT"])
def update_column(column_id):
    result = board_service.update_column(current_actor(), column_id, request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 200


@boards_bp.route("/columns/<int:column_id>/move", methods=["POST"])
def move_column(column_id):
    """Body: { position } — zero-based target index."""
    data = request.get_json(silent=True) or {}
    position = _int_field(data, "position")
    if position is None:
        return must_be_integer("position")
    result = board_service.move_column(current_actor(), column_id, position)
    return jsonify(result.to_dict()), 200


@boards_bp.route("/columns/<int:column_id>", methods=["DELETE"])
def delete_column(column_id):
    result = board_service.delete_column(current_actor(), column_id)
    return jsonify({"deleted": True, **result.to_dict()}), 200


# ═════════════════════════════════════════════════════════════════════════
# Board cards & activity
# ═════════════════════════════════════════════════════════════════════════


@boards_bp.route("/boards/<int:board_id>/cards", methods=["GET"])
def list_cards(board_id):
    """Query params: q, priority, column_id, label_id, member_id, due_before,
    due_after, include_archived, completed."""
    args = request.args
    filters = {
        "q": args.get("q"),
        "priority": args.get("priority"),
        "column_id": args.get("column_id", type=int),
        "label_id": args.get("label_id", type=int),
        "member_id": args.get("member_id", type=int),
        "due_before": args.get("due_before"),
        "due_after": args.get("due_after"),
        "include_archived": arg_bool("include_archived"),
        "completed": arg_bool("completed") if "completed" in args else None,
    }
    cards = board_service.list_cards(current_actor(), board_id, filters)
    return jsonify({"items": cards, "total": len(cards)}), 200


@boards_bp.route("/boards/<int:board_id>/activity", methods=["GET"])
def board_activity(board_id):
    items = board_service.get_board_activity(
        current_actor(), board_id,
        include_cards=arg_bool("include_cards", True),
        limit=min(request.args.get("limit", 100, type=int), 500),
    )
    return jsonify({"items": items, "total": len(items)}), 200


# ═════════════════════════════════════════════════════════════════════════
# Labels
# ═════════════════════════════════════════════════════════════════════════


@boards_bp.route("/labels", methods=["GET"])
def list_labels():
    return jsonify(board_service.list_labels(current_actor())), 200


@boards_bp.route("/labels", methods=["POST"])
def create_label():
    return jsonify(board_service.create_label(current_actor(), request.get_json(silent=True) or {})), 201
