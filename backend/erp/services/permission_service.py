# Overview: Per-user resource permissions (read/write/delete/export).

"""
Permission Checking

DESIGN PRINCIPLES:
- Fail closed: no permission row for a resource means no access
- Admins bypass per-resource rows
- Denials are logged; grants are not
"""

import logging

from ..extensions import db
from ..models import User, UserPermission
from ..models.auth import PERMISSION_ACTIONS

logger = logging.getLogger(__name__)


RESOURCES = (
    "items",
    "partners",
    "inventory",
    "transactions",
    "sales",
    "purchases",
    "vouchers",
    "accounts",
    "payments",
    "tax_invoices",
    "users",
)

# Rows stored under an alias also grant the resource it maps to.
RESOURCE_ALIASES = {
    "sales": "transactions",
    "purchases": "transactions",
}


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


def _granting_resources(resource: str) -> set[str]:
    names = {resource}
    names.update(alias for alias, target in RESOURCE_ALIASES.items() if target == resource)
    return names


def user_has_permission(user: User, resource: str, action: str) -> bool:
    if action not in PERMISSION_ACTIONS:
        raise ValueError(f"Unknown action: {action}")
    if user is None or not user.is_active:
        return False
    if user.is_admin:
        return True

    rows = db.session.query(UserPermission).filter(
        UserPermission.user_id == user.id,
        UserPermission.resource.in_(_granting_resources(resource)),
    ).all()
    return any(row.allows(action) for row in rows)


def require_permission(user: User, resource: str, action: str) -> None:
    """Raise PermissionDeniedError unless the user may perform action on resource."""
    if not user_has_permission(user, resource, action):
        logger.warning(
            "Permission denied: user=%s resource=%s action=%s",
            getattr(user, "id", None), resource, action,
        )
        raise PermissionDeniedError(f"No {action} permission for {resource}")


def get_user_permissions(user_id: int) -> list[UserPermission]:
    return (
        db.session.query(UserPermission)
        .filter_by(user_id=user_id)
        .order_by(UserPermission.resource.asc())
        .all()
    )


def set_user_permission(user_id: int, resource: str, actions) -> UserPermission:
    """
    Replace the user's grant on one resource with exactly `actions`.

    Returns the stored row.
    """
    if resource not in RESOURCES:
        raise ValueError(f"Unknown resource: {resource}")
    actions = set(actions)
    unknown = actions - set(PERMISSION_ACTIONS)
    if unknown:
        raise ValueError(f"Unknown action(s): {', '.join(sorted(unknown))}")

    row = db.session.query(UserPermission).filter_by(user_id=user_id, resource=resource).first()
    if row is None:
        row = UserPermission(user_id=user_id, resource=resource)
        db.session.add(row)
    for action in PERMISSION_ACTIONS:
        setattr(row, f"can_{action}", action in actions)
    db.session.commit()
    return row
