"""
Auth Blueprint — registration, login and user administration.

  POST /api/v1/auth/register         — create account (and tenant on first use) → JWT
  POST /api/v1/auth/login            — email + password, or directory username + password → JWT
  GET  /api/v1/auth/me               — current user profile
  POST /api/v1/auth/change-password  — local accounts only
  GET  /api/v1/users                 — tenant user directory
  GET  /api/v1/users/<id>
  PUT  /api/v1/users/<id>            — role / active flag / profile (admin)
"""

from flask import Blueprint, jsonify, request

from taskboard.blueprints import arg_bool, current_actor, current_user, register_error_handlers
from taskboard.services import user_service
from taskboard.services.jwt_service import token_response
from taskboard.utils.errors import E, api_error

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1")
register_error_handlers(auth_bp)


# ═══════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/auth/register", methods=["POST"])
def register():
    """
    Body: { "tenant": "...", "email": "...", "username": "...", "password": "...",
            "full_name"?: "...", "tenant_name"?: "..." }
    """
    data = request.get_json(silent=True) or {}
    user = user_service.register(
        tenant_slug=data.get("tenant", ""),
        email=data.get("email", ""),
        username=data.get("username", ""),
        password=data.get("password", ""),
        full_name=data.get("full_name"),
        tenant_name=data.get("tenant_name"),
    )
    return jsonify(token_response(user)), 201


@auth_bp.route("/auth/login", methods=["POST"])
def login():
    """
    Body: { "tenant": "...", "email": "...", "password": "..." }
       or { "tenant": "...", "username": "...", "password": "...", "provider": "directory" }
    """
    data = request.get_json(silent=True) or {}
    tenant = data.get("tenant", "")
    password = data.get("password", "")

    if data.get("provider") == "directory":
        username = (data.get("username") or "").strip()
        if not username or not password:
            return api_error(E.VALIDATION_REQUIRED, "Username and password are required")
        user = user_service.authenticate_directory_user(tenant, username, password)
    else:
        email = (data.get("email") or "").strip().lower()
        if not email or not password:
            return api_error(E.VALIDATION_REQUIRED, "Email and password are required")
        user = user_service.authenticate_user(tenant, email, password)

    return jsonify(token_response(user)), 200


@auth_bp.route("/auth/me", methods=["GET"])
def me():
    return jsonify(current_user().to_dict()), 200


@auth_bp.route("/auth/change-password", methods=["POST"])
def change_password():
    data = request.get_json(silent=True) or {}
    user_service.change_password(current_actor(), data.get("current_password", ""), data.get("new_password", ""))
    return jsonify({"message": "Password changed"}), 200


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/users", methods=["GET"])
def list_users():
    users = user_service.list_users(
        current_actor(),
        q=request.args.get("q"),
        include_inactive=arg_bool("include_inactive", True),
    )
    return jsonify({"items": users, "total": len(users)}), 200


@auth_bp.route("/users/<int:user_id>", methods=["GET"])
def get_user(user_id):
    return jsonify(user_service.get_user(current_actor(), user_id).to_dict()), 200


@auth_bp.route("/users/<int:user_id>", methods=["PUT"])
def update_user(user_id):
    data = request.get_json(silent=True) or {}
    return jsonify(user_service.update_user(current_actor(), user_id, data).to_dict()), 200
