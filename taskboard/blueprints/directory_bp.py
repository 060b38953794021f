"""
Directory Blueprint — tenant Active Directory / LDAP integration (admin only).

  GET/PUT/DELETE /api/v1/directory/config
  POST           /api/v1/directory/test
  GET            /api/v1/directory/search?q=   200, or 207 when some base DNs failed
  POST           /api/v1/directory/import      { username }
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import current_actor, register_error_handlers
from taskboard.services import directory_service

directory_bp = Blueprint("directory", __name__, url_prefix="/api/v1/directory")
register_error_handlers(directory_bp)


@directory_bp.route("/config", methods=["GET"])
def get_config():
    return jsonify({"config": directory_service.get_config(current_actor())}), 200


@directory_bp.route("/config", methods=["PUT"])
def save_config():
    """Body: { server_url, domain, base_dns, bind_username, bind_password?, use_ssl?, is_enabled? }

    Omitting bind_password keeps the stored one.
    """
    config = directory_service.save_config(current_actor(), request.get_json(silent=True) or {})
    return jsonify(config), 200


@directory_bp.route("/config", methods=["DELETE"])
def delete_config():
    directory_service.delete_config(current_actor())
    return jsonify({"deleted": True}), 200


@directory_bp.route("/test", methods=["POST"])
def test_connection():
    result = directory_service.test_connection(current_actor())
    return jsonify(result), 200


@directory_bp.route("/search", methods=["GET"])
def search():
    outcome = directory_service.search(current_actor(), request.args.get("q", ""))
    return jsonify(outcome.to_dict()), 207 if outcome.partial else 200


@directory_bp.route("/import", methods=["POST"])
def import_user():
    data = request.get_json(silent=True) or {}
    user, created = directory_service.import_user(current_actor(), data.get("username", ""))
    return jsonify({"user": user, "created": created}), 201 if created else 200
