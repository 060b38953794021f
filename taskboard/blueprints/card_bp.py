"""
Card Blueprint — cards and everything a card owns.

  POST   /api/v1/columns/<id>/cards           create card
  GET    /api/v1/cards/<id>                   card with children + activity
  PUT    /api/v1/cards/<id>                   update fields (incl. recurrence)
  DELETE /api/v1/cards/<id>
  POST   /api/v1/cards/<id>/move              { column_id?, position? }
  POST   /api/v1/cards/<id>/archive           { archived? }
  POST   /api/v1/cards/<id>/labels            { label_id }
  DELETE /api/v1/cards/<id>/labels/<label_id>
  POST   /api/v1/cards/<id>/members           { user_id }
  DELETE /api/v1/cards/<id>/members/<user_id>
  POST   /api/v1/cards/<id>/subtasks          PUT/DELETE /api/v1/subtasks/<id>
  POST   /api/v1/cards/<id>/comments          DELETE /api/v1/comments/<id>
  POST   /api/v1/cards/<id>/attachments       DELETE /api/v1/attachments/<id>
  GET    /api/v1/cards/<id>/activity
  GET    /api/v1/cards/<id>/recurrence        upcoming occurrence preview
  POST   /api/v1/cards/<id>/recurrence/run    materialize due occurrences now
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import current_actor, register_error_handlers
from taskboard.services import board_service, recurrence
from taskboard.utils.errors import must_be_integer

cards_bp = Blueprint("cards", __name__, url_prefix="/api/v1")
register_error_handlers(cards_bp)


def _required_int(data, key):
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None, must_be_integer(key)
    return value, None


# ═════════════════════════════════════════════════════════════════════════
# Cards
# ═════════════════════════════════════════════════════════════════════════


@cards_bp.route("/columns/<int:column_id>/cards", methods=["POST"])
def create_card(column_id):
    """Body: { title, description?, priority?, due_date?, start_date?, estimated_hours?,
    label_ids?, member_ids?, subtasks?, recurrence?, position? }"""
    result = board_service.create_card(current_actor(), column_id, request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 201


@cards_bp.route("/cards/<int:card_id>", methods=["GET"])
def get_card(card_id):
    return jsonify(board_service.get_card(current_actor(), card_id)), 200


@cards_bp.route("/cards/<int:card_id>", methods=["PUT"])
def update_card(card_id):
    result = board_service.update_card(current_actor(), card_id, request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 200


@cards_bp.route("/cards/<int:card_id>", methods=["DELETE"])
def delete_card(card_id):
    result = board_service.delete_card(current_actor(), card_id)
    return jsonify({"deleted": True, **result.to_dict()}), 200


@cards_bp.route("/cards/<int:card_id>/move", methods=["POST"])
def move_card(card_id):
    data = request.get_json(silent=True) or {}
    column_id = data.get("column_id")
    position = data.get("position")
    for key, value in (("column_id", column_id), ("position", position)):
        if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
            return must_be_integer(key)
    result = board_service.move_card(current_actor(), card_id, column_id=column_id, index=position)
    return jsonify(result.to_dict()), 200


@cards_bp.route("/cards/<int:card_id>/archive", methods=["POST"])
def archive_card(card_id):
    data = request.get_json(silent=True) or {}
    result = board_service.archive_card(current_actor(), card_id, bool(data.get("archived", True)))
    return jsonify(result.to_dict()), 200


# ── Labels & members ─────────────────────────────────────────────────────


@cards_bp.route("/cards/<int:card_id>/labels", methods=["POST"])
def add_label(card_id):
    label_id, err = _required_int(request.get_json(silent=True) or {}, "label_id")
    if err:
        return err
    return jsonify(board_service.add_label(current_actor(), card_id, label_id).to_dict()), 200


@cards_bp.route("/cards/<int:card_id>/labels/<int:label_id>", methods=["DELETE"])
def remove_label(card_id, label_id):
    return jsonify(board_service.remove_label(current_actor(), card_id, label_id).to_dict()), 200


@cards_bp.route("/cards/<int:card_id>/members", methods=["POST"])
def assign_member(card_id):
    user_id, err = _required_int(request.get_json(silent=True) or {}, "user_id")
    if err:
        return err
    return jsonify(board_service.assign_member(current_actor(), card_id, user_id).to_dict()), 200


@cards_bp.route("/cards/<int:card_id>/members/<int:user_id>", methods=["DELETE"])
def unassign_member(card_id, user_id):
    return jsonify(board_service.unassign_member(current_actor(), card_id, user_id).to_dict()), 200


# ── Subtasks ─────────────────────────────────────────────────────────────


@cards_bp.route("/cards/<int:card_id>/subtasks", methods=["POST"])
def add_subtask(card_id):
    data = request.get_json(silent=True) or {}
    result = board_service.add_subtask(current_actor(), card_id, data.get("title"), data.get("position"))
    return jsonify(result.to_dict()), 201


@cards_bp.route("/subtasks/<int:subtask_id>", methods=["PUT"])
def update_subtask(subtask_id):
    result = board_service.update_subtask(current_actor(), subtask_id, request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 200


@cards_bp.route("/subtasks/<int:subtask_id>", methods=["DELETE"])
def delete_subtask(subtask_id):
    result = board_service.delete_subtask(current_actor(), subtask_id)
    return jsonify({"deleted": True, **result.to_dict()}), 200


# ── Comments & attachments ───────────────────────────────────────────────


@cards_bp.route("/cards/<int:card_id>/comments", methods=["POST"])
def add_comment(card_id):
    data = request.get_json(silent=True) or {}
    return jsonify(board_service.add_comment(current_actor(), card_id, data.get("content")).to_dict()), 201


@cards_bp.route("/comments/<int:comment_id>", methods=["DELETE"])
def delete_comment(comment_id):
    result = board_service.delete_comment(current_actor(), comment_id)
    return jsonify({"deleted": True, **result.to_dict()}), 200


@cards_bp.route("/cards/<int:card_id>/attachments", methods=["POST"])
def add_attachment(card_id):
    """Body: { file_name, url, content_type?, size_bytes? } — the file itself lives in object storage."""
    result = board_service.add_attachment(current_actor(), card_id, request.get_json(silent=True) or {})
    return jsonify(result.to_dict()), 201


@cards_bp.route("/attachments/<int:attachment_id>", methods=["DELETE"])
def delete_attachment(attachment_id):
    result = board_service.delete_attachment(current_actor(), attachment_id)
    return jsonify({"deleted": True, **result.to_dict()}), 200


# ── Activity & recurrence ────────────────────────────────────────────────


@cards_bp.route("/cards/<int:card_id>/activity", methods=["GET"])
def card_activity(card_id):
    items = board_service.get_card_activity(current_actor(), card_id)
    return jsonify({"items": items, "total": len(items)}), 200


@cards_bp.route("/cards/<int:card_id>/recurrence", methods=["GET"])
def recurrence_preview(card_id):
    count = request.args.get("count", 5, type=int)
    return jsonify(recurrence.preview(current_actor(), card_id, count)), 200


@cards_bp.route("/cards/<int:card_id>/recurrence/run", methods=["POST"])
def recurrence_run(card_id):
    created = recurrence.materialize_for_card(current_actor(), card_id)
    return jsonify({"created": created, "count": len(created)}), 200
