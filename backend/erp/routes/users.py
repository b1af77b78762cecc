# Overview: Flask API routes for user accounts, their permission grants and activity log.

"""
User management routes.

SECURITY: All routes require authentication.
- Listing and creating users require users:read / users:write.
- A user may read and edit their own account, permissions and activity
  without a grant. Editing someone else needs users:write.
- Role, active flag and permission grants can only be changed by admins.
- A password change revokes the user's other sessions.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..extensions import db
from ..models import User
from ..models.auth import PERMISSION_ACTIONS
from ..services import activity_service, auth_service, permission_service, session_service
from ..services.activity_service import add_user_activity
from ..services.auth_service import PasswordValidationError

users_bp = Blueprint("users", __name__, url_prefix="/api/users")


def _forbidden():
    return jsonify({"error": "Permission denied"}), 403


def _self_or_permitted(user_id: int, action: str) -> bool:
    current = g.current_user
    if current.id == user_id:
        return True
    return permission_service.user_has_permission(current, "users", action)


def _get_user(user_id: int) -> User | None:
    return db.session.get(User, user_id)


@users_bp.get("")
@require_auth
@require_permission("users", "read")
def list_users_route():
    """
    Query params:
    - include_inactive: bool (default true)
    """
    include_inactive = request.args.get("include_inactive", "true").lower() == "true"
    query = db.session.query(User)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    users = query.order_by(User.username.asc()).all()
    return jsonify({"users": [u.to_dict() for u in users], "count": len(users)})


@users_bp.post("")
@require_auth
@require_permission("users", "write")
def create_user_route():
    """
    Request body:
    - username: str (required)
    - password: str (required)
    - name, email: str (optional)
    - role: admin | manager | staff (optional, admins only when not staff)
    """
    data = request.get_json(silent=True) or {}
    username = data.get("username")
    password = data.get("password")
    role = data.get("role") or "staff"

    if not all([username, password]):
        return jsonify({"error": "username and password required"}), 400
    if not all(isinstance(v, str) for v in (username, password, role)):
        return jsonify({"error": "username, password and role must be strings"}), 400
    if role != "staff" and not g.current_user.is_admin:
        return _forbidden()

    try:
        user = auth_service.create_user(
            username, password, name=data.get("name"), email=data.get("email"), role=role
        )
    except (PasswordValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500

    add_user_activity(g.current_user.id, "create", f"user {user.username}", "User registered")
    return jsonify({"user": user.to_dict()}), 201


@users_bp.get("/<int:user_id>")
@require_auth
def get_user_route(user_id: int):
    if not _self_or_permitted(user_id, "read"):
        return _forbidden()
    user = _get_user(user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404
    return jsonify({"user": user.to_dict()})


@users_bp.put("/<int:user_id>")
@require_auth
def update_user_route(user_id: int):
    """
    Request body (all optional): name, email, password, role, is_active.

    role and is_active are admin-only; other callers get 403 for them.
    """
    if not _self_or_permitted(user_id, "write"):
        return _forbidden()
    user = _get_user(user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404
    if user.is_admin and user.id != g.current_user.id and not g.current_user.is_admin:
        return _forbidden()

    data = request.get_json(silent=True) or {}
    allowed = auth_service.USER_ADMIN_FIELDS if g.current_user.is_admin else auth_service.USER_SELF_FIELDS
    for key in data:
        if key in auth_service.USER_ADMIN_FIELDS and key not in allowed:
            return _forbidden()
        if key not in allowed:
            return jsonify({"error": f"Field not allowed: {key}", "field": key}), 400
    if "is_active" in data and not isinstance(data["is_active"], bool):
        return jsonify({"error": "is_active must be a boolean", "field": "is_active"}), 400
    for key in ("name", "email", "password", "role"):
        if data.get(key) is not None and not isinstance(data[key], str):
            return jsonify({"error": f"{key} must be a string", "field": key}), 400

    try:
        password_changed = auth_service.update_user(user, data)
    except (PasswordValidationError, ValueError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500

    revoked = 0
    if password_changed:
        keep = g.session_token if user.id == g.current_user.id else None
        revoked = session_service.revoke_all_user_sessions(user.id, reason="Password changed", keep_token=keep)

    changed = sorted(k for k in data if k != "password") + (["password"] if password_changed else [])
    add_user_activity(g.current_user.id, "update", f"user {user.username}", {"fields": changed})
    return jsonify({"user": user.to_dict(), "sessions_revoked": revoked}), 200


@users_bp.get("/<int:user_id>/permissions")
@require_auth
def list_user_permissions_route(user_id: int):
    if not _self_or_permitted(user_id, "read"):
        return _forbidden()
    if _get_user(user_id) is None:
        return jsonify({"error": "User not found"}), 404
    return jsonify([p.to_dict() for p in permission_service.get_user_permissions(user_id)])


@users_bp.post("/<int:user_id>/permissions")
@require_auth
def set_user_permission_route(user_id: int):
    """
    Replace the user's grant on one resource (admins only).

    Request body:
    {"resource": "vouchers", "can_read": true, "can_write": true, "can_delete": false, "can_export": false}
    Omitted flags are false.
    """
    if not g.current_user.is_admin:
        return _forbidden()
    user = _get_user(user_id)
    if user is None:
        return jsonify({"error": "User not found"}), 404

    data = request.get_json(silent=True) or {}
    resource = data.get("resource")
    if resource not in permission_service.RESOURCES:
        return jsonify({"error": f"resource must be one of: {', '.join(permission_service.RESOURCES)}", "field": "resource"}), 400

    actions = []
    for action in PERMISSION_ACTIONS:
        flag = data.get(f"can_{action}", False)
        if not isinstance(flag, bool):
            return jsonify({"error": f"can_{action} must be a boolean", "field": f"can_{action}"}), 400
        if flag:
            actions.append(action)

    row = permission_service.set_user_permission(user_id, resource, actions)
    add_user_activity(
        g.current_user.id, "update", f"user {user.username}", {"resource": resource, "actions": actions}
    )
    return jsonify(row.to_dict()), 201


@users_bp.get("/<int:user_id>/activities")
@require_auth
def list_user_activities_route(user_id: int):
    """Query params: limit (default 100)."""
    if not _self_or_permitted(user_id, "read"):
        return _forbidden()
    if _get_user(user_id) is None:
        return jsonify({"error": "User not found"}), 404
    limit = request.args.get("limit", default=100, type=int)
    if limit is None or limit < 1:
        return jsonify({"error": "limit must be a positive integer", "field": "limit"}), 400
    activities = activity_service.list_user_activities(user_id=user_id, limit=min(limit, 1000))
    return jsonify([a.to_dict() for a in activities])
