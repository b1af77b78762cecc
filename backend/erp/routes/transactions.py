# Overview: Flask API routes for sale/purchase transactions; parses input and returns JSON responses.

"""
Transaction routes.

SECURITY: All routes require authentication and a grant on "transactions"
(rows for "sales" or "purchases" also count).

Storage failures are written with their stack trace to the db error log
(ERROR_LOG_PATH) in addition to the application log.
"""

import logging

from flask import Blueprint, request, jsonify, g, current_app

from .. import DB_ERROR_LOGGER
from ..decorators import require_auth, require_permission
from ..models.transactions import TRANSACTION_STATUSES, TRANSACTION_TYPES
from ..services import transaction_service
from ..services.activity_service import add_user_activity
from ..services.errors import LedgerError
from ..validation import ValidationError, ConflictError

transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")

db_error_log = logging.getLogger(DB_ERROR_LOGGER)


def _storage_failure(route: str):
    db_error_log.exception("[%s] DB ERROR:", route)
    current_app.logger.exception("Transaction route failed: %s", route)
    return jsonify({"error": "Internal server error"}), 500


def _business_error(e):
    if isinstance(e, ValidationError):
        return jsonify(e.to_dict()), 400
    if isinstance(e, ConflictError):
        return jsonify({"error": str(e)}), 409
    return jsonify(e.to_dict()), e.status_code


@transactions_bp.get("")
@require_auth
@require_permission("transactions", "read")
def list_transactions_route():
    """
    Query params:
    - type: sale | purchase
    - status: pending | completed | partial | canceled | unpaid
    """
    type_ = request.args.get("type") or None
    status = request.args.get("status") or None
    if type_ and type_ not in TRANSACTION_TYPES:
        return jsonify({"error": f"type must be one of: {', '.join(TRANSACTION_TYPES)}", "field": "type"}), 400
    if status and status not in TRANSACTION_STATUSES:
        return jsonify({"error": f"status must be one of: {', '.join(TRANSACTION_STATUSES)}", "field": "status"}), 400

    try:
        return jsonify(transaction_service.list_transactions(type_, status))
    except Exception:
        return _storage_failure("GET /api/transactions")


@transactions_bp.get("/<int:transaction_id>")
@require_auth
@require_permission("transactions", "read")
def get_transaction_route(transaction_id: int):
    try:
        return jsonify(transaction_service.get_transaction_detail(transaction_id))
    except LedgerError as e:
        return _business_error(e)
    except Exception:
        return _storage_failure("GET /api/transactions/:id")


@transactions_bp.get("/<int:transaction_id>/items")
@require_auth
@require_permission("transactions", "read")
def get_transaction_items_route(transaction_id: int):
    try:
        if transaction_service.get_transaction(transaction_id) is None:
            return jsonify({"error": "Transaction not found"}), 404
        return jsonify([line.to_dict() for line in transaction_service.get_transaction_items(transaction_id)])
    except Exception:
        return _storage_failure("GET /api/transactions/:id/items")


@transactions_bp.post("")
@require_auth
@require_permission("transactions", "write")
def create_transaction_route():
    """
    Request body:
    {
        "transaction": {"type": "sale", "partner_id": 1, "date": "2024-03-15", ...},
        "items": [{"item_id": 1, "quantity": 4, "unit_price": 1000}, ...]
    }
    """
    payload = request.get_json(silent=True) or {}
    header = payload.get("transaction")
    if not isinstance(header, dict):
        return jsonify({"error": "transaction is required", "field": "transaction"}), 400

    try:
        transaction = transaction_service.create_transaction(header, payload.get("items"), user_id=g.current_user.id)
        body = transaction.to_dict()
        body["items"] = [line.to_dict() for line in transaction_service.get_transaction_items(transaction.id)]
    except (ValidationError, ConflictError, LedgerError) as e:
        return _business_error(e)
    except Exception:
        return _storage_failure("POST /api/transactions")

    add_user_activity(g.current_user.id, "create", f"transaction {body['code']}", f"{body['type']} registered")
    return jsonify(body), 201


@transactions_bp.put("/<int:transaction_id>")
@require_auth
@require_permission("transactions", "write")
def update_transaction_route(transaction_id: int):
    """
    Request body: transaction fields plus "items" (the full replacement set).
    A {"transaction": {...}, "items": [...]} body is accepted as well.
    """
    payload = request.get_json(silent=True) or {}
    if "items" not in payload:
        return jsonify({"error": "items is required", "field": "items"}), 400

    if isinstance(payload.get("transaction"), dict):
        header = payload["transaction"]
    else:
        header = {k: v for k, v in payload.items() if k != "items"}

    try:
        transaction = transaction_service.update_transaction(
            transaction_id, header, payload["items"], user_id=g.current_user.id
        )
        body = transaction.to_dict()
        body["items"] = [line.to_dict() for line in transaction_service.get_transaction_items(transaction_id)]
    except (ValidationError, ConflictError, LedgerError) as e:
        return _business_error(e)
    except Exception:
        return _storage_failure("PUT /api/transactions/:id")

    add_user_activity(g.current_user.id, "update", f"transaction {body['code']}", f"{body['type']} updated")
    return jsonify(body), 200


@transactions_bp.delete("/<int:transaction_id>")
@require_auth
@require_permission("transactions", "delete")
def delete_transaction_route(transaction_id: int):
    try:
        deleted = transaction_service.delete_transaction(transaction_id, user_id=g.current_user.id)
    except LedgerError as e:
        return _business_error(e)
    except Exception:
        return _storage_failure("DELETE /api/transactions/:id")

    if not deleted:
        return jsonify({"error": "Transaction not found"}), 404

    add_user_activity(g.current_user.id, "delete", f"transaction {transaction_id}", {"id": transaction_id})
    return "", 204
