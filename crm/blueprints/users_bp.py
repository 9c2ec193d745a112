"""
Users Blueprint — CRM user profiles, their assignments, and tenant roles.

Endpoints:
    GET/POST        /api/v1/users
    GET             /api/v1/users/me
    GET/PUT/DELETE  /api/v1/users/<id>
    POST            /api/v1/users/<id>/organizations
    POST            /api/v1/users/<id>/roles
    DELETE          /api/v1/users/<id>/roles/<assignment_id>

    GET/POST        /api/v1/roles
"""

from flask import Blueprint, g, jsonify, request

from crm.blueprints import json_body, page_body, page_params
from crm.middleware.permission_required import require_permission, track_activity
from crm.services import user_service

users_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")
roles_bp = Blueprint("roles", __name__, url_prefix="/api/v1/roles")


# ═══════════════════════════════════════════════════════════════
# Users
# ═══════════════════════════════════════════════════════════════


@users_bp.route("/me", methods=["GET"])
def me():
    """Resolved tenant, own profile, effective permissions, credit balance."""
    return jsonify(g.consumer.user_context(g.jwt_user_id, g.jwt_permissions)), 200


@users_bp.route("", methods=["GET"])
@require_permission("crm.users.read")
def list_users():
    skip, limit = page_params()
    items, total = user_service.list_users(
        g.tenant_id,
        skip=skip,
        limit=limit,
        is_active=request.args.get("isActive"),
        department=request.args.get("department"),
        search=request.args.get("search") or request.args.get("q"),
    )
    return jsonify(page_body(items, total, skip, limit)), 200


@users_bp.route("", methods=["POST"])
@track_activity("create", "user", severity="medium")
@require_permission("crm.users.create")
def create_user():
    user = user_service.create_user(g.tenant_id, json_body(), g.jwt_user_id)
    return jsonify(user), 201


@users_bp.route("/<profile_id>", methods=["GET"])
@require_permission("crm.users.read")
def get_user(profile_id):
    return jsonify(user_service.get_user(g.tenant_id, profile_id)), 200


@users_bp.route("/<profile_id>", methods=["PUT", "PATCH"])
@track_activity("update", "user", severity="medium")
@require_permission("crm.users.update")
def update_user(profile_id):
    user = user_service.update_user(g.tenant_id, profile_id, json_body(), g.jwt_user_id)
    return jsonify(user), 200


@users_bp.route("/<profile_id>", methods=["DELETE"])
@track_activity("delete", "user", severity="high")
@require_permission("crm.users.delete")
def delete_user(profile_id):
    user_service.delete_user(g.tenant_id, profile_id, g.jwt_user_id)
    return jsonify({"message": "User deleted", "id": str(profile_id)}), 200


# ── Assignments ──────────────────────────────────────────────────────────


@users_bp.route("/<profile_id>/organizations", methods=["POST"])
@track_activity("update", "user_organization", severity="medium")
@require_permission("crm.users.update")
def assign_organization(profile_id):
    assignment = user_service.assign_organization(g.tenant_id, profile_id, json_body(), g.jwt_user_id)
    return jsonify(assignment), 201


@users_bp.route("/<profile_id>/roles", methods=["POST"])
@track_activity("update", "user_role", severity="high")
@require_permission("crm.users.update")
def assign_role(profile_id):
    assignment = user_service.assign_role(g.tenant_id, profile_id, json_body(), g.jwt_user_id)
    return jsonify(assignment), 201


@users_bp.route("/<profile_id>/roles/<assignment_id>", methods=["DELETE"])
@track_activity("delete", "user_role", severity="high")
@require_permission("crm.users.update")
def revoke_role(profile_id, assignment_id):
    assignment = user_service.revoke_role(g.tenant_id, profile_id, assignment_id, g.jwt_user_id)
    return jsonify(assignment), 200


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════


@roles_bp.route("", methods=["GET"])
@require_permission("crm.roles.read")
def list_roles():
    return jsonify({"items": user_service.list_roles(g.tenant_id)}), 200


@roles_bp.route("", methods=["POST"])
@track_activity("create", "role", severity="high")
@require_permission("crm.roles.create")
def create_role():
    return jsonify(user_service.create_role(g.tenant_id, json_body())), 201
