# Overview: Flask API routes for stock levels, manual counts and inventory history.

"""
Inventory routes.

SECURITY: All routes require authentication.
- Read operations require inventory:read
- Manual adjustments require inventory:write
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..services import inventory_service
from ..services.activity_service import add_user_activity
from ..services.errors import LedgerError
from ..validation import enforce_rules_inventory_adjust, ValidationError

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("")
@require_auth
@require_permission("inventory", "read")
def inventory_overview_route():
    """Every item with its on-hand quantity and low-stock flag."""
    return jsonify(inventory_service.get_inventory_overview())


@inventory_bp.get("/alerts/low")
@require_auth
@require_permission("inventory", "read")
def low_stock_route():
    return jsonify(inventory_service.get_low_stock_items())


@inventory_bp.get("/<int:item_id>")
@require_auth
@require_permission("inventory", "read")
def stock_detail_route(item_id: int):
    try:
        return jsonify(inventory_service.get_stock_detail(item_id))
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.get("/<int:item_id>/history")
@require_auth
@require_permission("inventory", "read")
def history_route(item_id: int):
    """History entries, newest first."""
    try:
        history = inventory_service.get_item_history(item_id)
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify([h.to_dict() for h in history])


@inventory_bp.post("/<int:item_id>/adjust")
@require_auth
@require_permission("inventory", "write")
def adjust_route(item_id: int):
    """
    Manual stock count.

    Request body:
    {
        "quantity": 42,     // counted on-hand quantity, >= 0
        "notes": "..."      // optional
    }

    Returns:
        {item, stock, history}; history is the entry this count produced,
        or the latest existing entry when the count matched.
    """
    payload = request.get_json(silent=True)

    try:
        quantity, notes = enforce_rules_inventory_adjust(payload if payload is not None else {})
        item, stock, entry = inventory_service.set_counted_quantity(
            item_id,
            quantity,
            notes=notes,
            user_id=g.current_user.id,
        )
        if entry is None:
            latest = inventory_service.get_history(item_id, limit=1)
            entry = latest[0] if latest else None
        body = {
            "item": item.to_dict(),
            "stock": stock,
            "history": entry.to_dict() if entry else None,
        }
    except ValidationError as e:
        return jsonify(e.to_dict()), 400
    except LedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to adjust inventory")
        return jsonify({"error": "Internal server error"}), 500

    add_user_activity(
        g.current_user.id,
        "adjust",
        f"item {body['item']['code']}",
        {"quantity": quantity, "notes": notes},
    )
    return jsonify(body), 200
