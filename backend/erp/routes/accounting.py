# Overview: Flask API routes for vouchers, the chart of accounts, payments and tax invoices.

"""
Accounting routes.

SECURITY: All routes require authentication.
- /vouchers   -> "vouchers" grants
- /accounts   -> "accounts" grants
- /payments   -> "payments" grants
- /tax-invoices -> "tax_invoices" grants
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_permission
from ..models import Account, Payment, TaxInvoice
from ..models.accounting import TAX_INVOICE_TYPES, VOUCHER_STATUSES, VOUCHER_TYPES
from ..services import account_service, payment_service, tax_invoice_service, voucher_service
from ..services.account_service import AccountInUseError
from ..services.activity_service import add_user_activity
from ..services.errors import LedgerError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_account,
    enforce_rules_payment,
    enforce_rules_tax_invoice,
    ValidationError,
    ConflictError,
)

ACCOUNT_POLICY = ModelValidationPolicy(
    writable_fields=set(account_service.ACCOUNT_MUTABLE_FIELDS),
    required_on_create={"code", "name", "type"},
)

PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "reference", "transaction_id", "voucher_id", "partner_id",
        "date", "amount", "method", "status", "description",
    },
    required_on_create={"partner_id", "date", "amount", "method", "status"},
)

TAX_INVOICE_POLICY = ModelValidationPolicy(
    writable_fields={
        "transaction_id", "partner_id", "date", "type",
        "net_amount", "tax_amount", "total_amount", "status",
    },
    required_on_create={"partner_id", "date", "type", "net_amount", "tax_amount"},
)

accounting_bp = Blueprint("accounting", __name__, url_prefix="/api/accounting")


def _error_response(e):
    if isinstance(e, ValidationError):
        return jsonify(e.to_dict()), 400
    if isinstance(e, ConflictError):
        return jsonify({"error": str(e)}), 409
    return jsonify(e.to_dict()), e.status_code


# =============================================================================
# Vouchers
# =============================================================================

@accounting_bp.get("/vouchers")
@require_auth
@require_permission("vouchers", "read")
def list_vouchers_route():
    """Vouchers with their lines (account names joined) and partner name."""
    type_ = request.args.get("type") or None
    status = request.args.get("status") or None
    if type_ and type_ not in VOUCHER_TYPES:
        return jsonify({"error": f"type must be one of: {', '.join(VOUCHER_TYPES)}", "field": "type"}), 400
    if status and status not in VOUCHER_STATUSES:
        return jsonify({"error": f"status must be one of: {', '.join(VOUCHER_STATUSES)}", "field": "status"}), 400
    return jsonify(voucher_service.list_vouchers(type_, status))


@accounting_bp.get("/vouchers/<int:voucher_id>")
@require_auth
@require_permission("vouchers", "read")
def get_voucher_route(voucher_id: int):
    try:
        return jsonify(voucher_service.get_voucher_detail(voucher_id))
    except LedgerError as e:
        return _error_response(e)


@accounting_bp.post("/vouchers")
@require_auth
@require_permission("vouchers", "write")
def create_voucher_route():
    """
    Request body:
    {
        "voucher": {"date": "2024-03-15", "type": "income", "amount": 1000, ...},
        "items": [{"account_id": 1, "amount": 1000}, {"account_id": 8, "amount": -1000}]
    }
    """
    payload = request.get_json(silent=True) or {}
    header = payload.get("voucher")
    if not isinstance(header, dict):
        return jsonify({"error": "voucher is required", "field": "voucher"}), 400

    try:
        voucher = voucher_service.create_voucher(header, payload.get("items"), user_id=g.current_user.id)
        body = voucher_service.serialize_voucher(voucher)
    except (ValidationError, LedgerError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create voucher")
        return jsonify({"error": "Internal server error"}), 500

    add_user_activity(g.current_user.id, "create", f"voucher {body['code']}", "Voucher registered")
    return jsonify(body), 201


@accounting_bp.put("/vouchers/<int:voucher_id>")
@require_auth
@require_permission("vouchers", "write")
def update_voucher_route(voucher_id: int):
    """Voucher fields, plus an optional "items" array replacing every line."""
    payload = request.get_json(silent=True) or {}
    if isinstance(payload.get("voucher"), dict):
        header = payload["voucher"]
    else:
        header = {k: v for k, v in payload.items() if k != "items"}

    try:
        voucher = voucher_service.update_voucher(
            voucher_id, header, payload.get("items"), user_id=g.current_user.id
        )
        body = voucher_service.serialize_voucher(voucher)
    except (ValidationError, LedgerError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update voucher")
        return jsonify({"error": "Internal server error"}), 500

    add_user_activity(g.current_user.id, "update", f"voucher {body['code']}", "Voucher updated")
    return jsonify(body), 200


@accounting_bp.put("/vouchers/<int:voucher_id>/status")
@require_auth
@require_permission("vouchers", "write")
def update_voucher_status_route(voucher_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        voucher = voucher_service.update_status(voucher_id, payload.get("status"), user_id=g.current_user.id)
        body = voucher.to_dict()
    except (ValidationError, LedgerError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change voucher status")
        return jsonify({"error": "Internal server error"}), 500

    add_user_activity(g.current_user.id, "update", f"voucher {body['code']}", f"Status changed to {body['status']}")
    return jsonify(body), 200


@accounting_bp.delete("/vouchers/<int:voucher_id>")
@require_auth
@require_permission("vouchers", "delete")
def delete_voucher_route(voucher_id: int):
    try:
        code = voucher_service.delete_voucher(voucher_id, user_id=g.current_user.id)
    except Exception:
        current_app.logger.exception("Failed to delete voucher")
        return jsonify({"error": "Internal server error"}), 500

    if code is None:
        return jsonify({"error": "Voucher not found"}), 404

    add_user_activity(g.current_user.id, "delete", f"voucher {code}", {"id": voucher_id})
    return "", 204


# =============================================================================
# Accounts
# =============================================================================

@accounting_bp.get("/accounts")
@require_auth
@require_permission("accounts", "read")
def list_accounts_route():
    active_only = request.args.get("active", "false").lower() == "true"
    return jsonify([a.to_dict() for a in account_service.list_accounts(active_only=active_only)])


@accounting_bp.get("/accounts/<int:account_id>")
@require_auth
@require_permission("accounts", "read")
def get_account_route(account_id: int):
    account = account_service.get_account(account_id)
    if account is None:
        return jsonify({"error": "Account not found"}), 404
    return jsonify(account.to_dict())


@accounting_bp.post("/accounts")
@require_auth
@require_permission("accounts", "write")
def create_account_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Account, payload=payload, policy=ACCOUNT_POLICY, partial=False)
        enforce_rules_account(patch)
        account = account_service.create_account(patch=patch)
    except (ValidationError, ConflictError) as e:
        return _error_response(e)

    add_user_activity(g.current_user.id, "create", f"account {account.name}", payload)
    return jsonify(account.to_dict()), 201


@accounting_bp.put("/accounts/<int:account_id>")
@require_auth
@require_permission("accounts", "write")
def update_account_route(account_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Account, payload=payload, policy=ACCOUNT_POLICY, partial=True)
        enforce_rules_account(patch)
        account = account_service.update_account(account_id=account_id, patch=patch)
    except (ValidationError, ConflictError) as e:
        return _error_response(e)

    if account is None:
        return jsonify({"error": "Account not found"}), 404

    add_user_activity(g.current_user.id, "update", f"account {account.name}", payload)
    return jsonify(account.to_dict()), 200


@accounting_bp.delete("/accounts/<int:account_id>")
@require_auth
@require_permission("accounts", "delete")
def delete_account_route(account_id: int):
    try:
        account = account_service.delete_account(account_id)
    except AccountInUseError as e:
        return jsonify({"error": str(e)}), 409

    if account is None:
        return jsonify({"error": "Account not found"}), 404

    add_user_activity(g.current_user.id, "delete", f"account {account.name}", {"id": account_id})
    return "", 204


# =============================================================================
# Payments
# =============================================================================

@accounting_bp.get("/payments")
@require_auth
@require_permission("payments", "read")
def list_payments_route():
    partner_id = request.args.get("partner_id", type=int)
    return jsonify(payment_service.list_payments(partner_id=partner_id))


@accounting_bp.get("/payments/<int:payment_id>")
@require_auth
@require_permission("payments", "read")
def get_payment_route(payment_id: int):
    try:
        return jsonify(payment_service.get_payment_detail(payment_id))
    except LedgerError as e:
        return _error_response(e)


@accounting_bp.post("/payments")
@require_auth
@require_permission("payments", "write")
def create_payment_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Payment, payload=payload, policy=PAYMENT_POLICY, partial=False)
        enforce_rules_payment(patch)
        payment = payment_service.create_payment(patch=patch, user_id=g.current_user.id)
        body = {**payment.to_dict(), "partner_name": payment.partner.name}
    except (ValidationError, LedgerError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create payment")
        return jsonify({"error": "Internal server error"}), 500

    add_user_activity(g.current_user.id, "create", f"payment {body['code']}", "Payment registered")
    return jsonify(body), 201


@accounting_bp.put("/payments/<int:payment_id>")
@require_auth
@require_permission("payments", "write")
def update_payment_route(payment_id: int):
    """Any payment field; partner/transaction/voucher links are re-checked together."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Payment, payload=payload, policy=PAYMENT_POLICY, partial=True)
        enforce_rules_payment(patch)
        payment = payment_service.update_payment(payment_id, patch=patch)
        body = {**payment.to_dict(), "partner_name": payment.partner.name}
    except (ValidationError, LedgerError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update payment")
        return jsonify({"error": "Internal server error"}), 500

    add_user_activity(g.current_user.id, "update", f"payment {body['code']}", "Payment updated")
    return jsonify(body), 200


@accounting_bp.put("/payments/<int:payment_id>/status")
@require_auth
@require_permission("payments", "write")
def update_payment_status_route(payment_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        payment = payment_service.update_payment_status(payment_id, payload.get("status"))
    except (ValidationError, LedgerError) as e:
        return _error_response(e)

    add_user_activity(g.current_user.id, "update", f"payment {payment.code}", f"Status changed to {payment.status}")
    return jsonify(payment.to_dict()), 200


@accounting_bp.delete("/payments/<int:payment_id>")
@require_auth
@require_permission("payments", "delete")
def delete_payment_route(payment_id: int):
    code = payment_service.delete_payment(payment_id)
    if code is None:
        return jsonify({"error": "Payment not found"}), 404

    add_user_activity(g.current_user.id, "delete", f"payment {code}", {"id": payment_id})
    return "", 204


# =============================================================================
# Tax invoices
# =============================================================================

@accounting_bp.get("/tax-invoices")
@require_auth
@require_permission("tax_invoices", "read")
def list_tax_invoices_route():
    """Query params: type = issue | receive."""
    type_ = request.args.get("type") or None
    if type_ and type_ not in TAX_INVOICE_TYPES:
        return jsonify({"error": f"type must be one of: {', '.join(TAX_INVOICE_TYPES)}", "field": "type"}), 400
    return jsonify(tax_invoice_service.list_tax_invoices(type_))


@accounting_bp.get("/tax-invoices/<int:invoice_id>")
@require_auth
@require_permission("tax_invoices", "read")
def get_tax_invoice_route(invoice_id: int):
    try:
        return jsonify(tax_invoice_service.get_tax_invoice_detail(invoice_id))
    except LedgerError as e:
        return _error_response(e)


@accounting_bp.post("/tax-invoices")
@require_auth
@require_permission("tax_invoices", "write")
def create_tax_invoice_route():
    """
    Request body:
    {"partner_id": 1, "date": "2024-03-15", "type": "issue",
     "net_amount": 10000, "tax_amount": 1000, "transaction_id": 7}
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=TaxInvoice, payload=payload, policy=TAX_INVOICE_POLICY, partial=False)
        enforce_rules_tax_invoice(patch)
        invoice = tax_invoice_service.create_tax_invoice(patch=patch, user_id=g.current_user.id)
        body = {**invoice.to_dict(), "partner_name": invoice.partner.name}
    except (ValidationError, LedgerError) as e:
        return _error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create tax invoice")
        return jsonify({"error": "Internal server error"}), 500

    add_user_activity(g.current_user.id, "create", f"tax invoice {body['code']}", "Tax invoice registered")
    return jsonify(body), 201


@accounting_bp.route("/tax-invoices/<int:invoice_id>/status", methods=["PUT", "PATCH"])
@require_auth
@require_permission("tax_invoices", "write")
def update_tax_invoice_status_route(invoice_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        invoice = tax_invoice_service.update_status(invoice_id, payload.get("status"))
    except (ValidationError, LedgerError) as e:
        return _error_response(e)

    add_user_activity(g.current_user.id, "update", f"tax invoice {invoice.code}", f"Status changed to {invoice.status}")
    return jsonify(invoice.to_dict()), 200


@accounting_bp.delete("/tax-invoices/<int:invoice_id>")
@require_auth
@require_permission("tax_invoices", "delete")
def delete_tax_invoice_route(invoice_id: int):
    code = tax_invoice_service.delete_tax_invoice(invoice_id)
    if code is None:
        return jsonify({"error": "Tax invoice not found"}), 404

    add_user_activity(g.current_user.id, "delete", f"tax invoice {code}", {"id": invoice_id})
    return "", 204
