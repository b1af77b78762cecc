# Overview: Flask API routes for items and categories; parses input and returns JSON responses.

"""
Item catalog routes.

SECURITY: All routes require authentication.
- Read operations require items:read
- Write operations require items:write
- Delete requires items:delete
"""

from flask import Blueprint, request, g, current_app

from ..decorators import require_auth, require_permission
from ..models import Item
from ..services import catalog_service
from ..services.activity_service import add_user_activity
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_item,
    ValidationError,
    ConflictError,
)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields=set(catalog_service.ITEM_MUTABLE_FIELDS),
    required_on_create={"code", "name"},
)

items_bp = Blueprint("items", __name__, url_prefix="/api/items")


@items_bp.get("")
@require_auth
@require_permission("items", "read")
def list_items_route():
    """
    Query params:
    - active: "true" to hide inactive items
    - search: substring of code or name
    """
    active_only = request.args.get("active", "false").lower() == "true"
    items = catalog_service.list_items(active_only=active_only, search=request.args.get("search"))
    return {"items": [i.to_dict() for i in items], "count": len(items)}


@items_bp.get("/<int:item_id>")
@require_auth
@require_permission("items", "read")
def get_item_route(item_id: int):
    item = catalog_service.get_item(item_id)
    if item is None:
        return {"error": "Item not found"}, 404
    return item.to_dict()


@items_bp.post("")
@require_auth
@require_permission("items", "write")
def create_item_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=False)
        enforce_rules_item(patch)
        item = catalog_service.create_item(patch=patch, user_id=g.current_user.id)
    except ValidationError as e:
        return e.to_dict(), 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to create item")
        return {"error": "Internal server error"}, 500

    add_user_activity(g.current_user.id, "create", f"item {item.code}", payload)
    return item.to_dict(), 201


@items_bp.put("/<int:item_id>")
@require_auth
@require_permission("items", "write")
def update_item_route(item_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=True)
        enforce_rules_item(patch)
        item = catalog_service.update_item(item_id=item_id, patch=patch)
    except ValidationError as e:
        return e.to_dict(), 400
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update item")
        return {"error": "Internal server error"}, 500

    if item is None:
        return {"error": "Item not found"}, 404

    add_user_activity(g.current_user.id, "update", f"item {item.code}", payload)
    return item.to_dict()


@items_bp.delete("/<int:item_id>")
@require_auth
@require_permission("items", "delete")
def delete_item_route(item_id: int):
    """Items with transaction lines or stock history answer 409; deactivate those instead."""
    try:
        item = catalog_service.delete_item(item_id)
    except ConflictError as e:
        return {"error": str(e)}, 409

    if item is None:
        return {"error": "Item not found"}, 404

    add_user_activity(g.current_user.id, "delete", f"item {item.code}", {"item_id": item_id})
    return "", 204


@items_bp.get("/categories")
@require_auth
@require_permission("items", "read")
def list_categories_route():
    return {"items": [c.to_dict() for c in catalog_service.list_categories()]}


@items_bp.post("/categories")
@require_auth
@require_permission("items", "write")
def create_category_route():
    payload = request.get_json(silent=True) or {}
    parent_id = payload.get("parent_id")
    if parent_id is not None and (isinstance(parent_id, bool) or not isinstance(parent_id, int)):
        return {"error": "parent_id must be an integer", "field": "parent_id"}, 400

    try:
        category = catalog_service.create_category(name=payload.get("name"), parent_id=parent_id)
    except ValidationError as e:
        return e.to_dict(), 400

    return category.to_dict(), 201
