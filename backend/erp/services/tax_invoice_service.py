# Overview: Tax invoices issued to customers and received from suppliers.

"""
Tax Invoice Service

An invoice always names its partner. When it covers a transaction, that
transaction must belong to the same partner, and its type decides the
invoice type: a sale is issued ("issue"), a purchase is received ("receive").

Amounts: total_amount = net_amount + tax_amount. A missing total is computed.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Item, Partner, TaxInvoice, Transaction, TransactionItem
from ..models.accounting import TAX_INVOICE_STATUSES
from ..validation import ValidationError
from .concurrency import run_atomic
from .document_service import next_tax_invoice_code
from .errors import InvalidReferenceError, NotFoundError

logger = logging.getLogger(__name__)

INVOICE_TYPE_FOR_TRANSACTION = {"sale": "issue", "purchase": "receive"}


def _check_amounts(patch: dict) -> None:
    expected = patch["net_amount"] + patch["tax_amount"]
    if patch.get("total_amount") is None:
        patch["total_amount"] = expected
    elif patch["total_amount"] != expected:
        raise ValidationError(
            f"total_amount must equal net_amount + tax_amount ({expected})",
            field="total_amount",
        )


def _check_references(patch: dict) -> None:
    partner_id = patch["partner_id"]
    if db.session.get(Partner, partner_id) is None:
        raise InvalidReferenceError("Partner not found", details={"partner_id": partner_id})

    transaction_id = patch.get("transaction_id")
    if transaction_id is None:
        return

    transaction = db.session.get(Transaction, transaction_id)
    if transaction is None:
        raise InvalidReferenceError("Transaction not found", details={"transaction_id": transaction_id})
    if transaction.partner_id != partner_id:
        raise InvalidReferenceError(
            "Transaction belongs to a different partner",
            details={"transaction_id": transaction_id, "partner_id": partner_id},
        )
    expected_type = INVOICE_TYPE_FOR_TRANSACTION.get(transaction.type)
    if patch["type"] != expected_type:
        raise InvalidReferenceError(
            "Tax invoice type does not match the transaction type",
            details={"transaction_type": transaction.type, "invoice_type": patch["type"]},
        )


def create_tax_invoice(*, patch: dict, user_id: int | None = None) -> TaxInvoice:
    """Create an invoice from a validated patch. The code is always allocated here."""
    patch = dict(patch)
    _check_amounts(patch)
    patch.setdefault("status", "issued")

    def _op() -> TaxInvoice:
        _check_references(patch)
        code = next_tax_invoice_code(patch["type"], patch["date"])
        invoice = TaxInvoice(**{**patch, "code": code}, created_by=user_id)
        db.session.add(invoice)
        db.session.flush()
        return invoice

    invoice = run_atomic(_op)
    logger.info("Recorded tax invoice %s total=%s", invoice.code, invoice.total_amount)
    return invoice


def update_status(invoice_id: int, status) -> TaxInvoice:
    if status not in TAX_INVOICE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(TAX_INVOICE_STATUSES)}", field="status")
    invoice = get_tax_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError("Tax invoice not found", details={"tax_invoice_id": invoice_id})
    invoice.status = status
    db.session.commit()
    return invoice


def delete_tax_invoice(invoice_id: int) -> str | None:
    """Returns the deleted code, or None if absent."""
    invoice = get_tax_invoice(invoice_id)
    if invoice is None:
        return None
    code = invoice.code
    db.session.delete(invoice)
    db.session.commit()
    return code


def get_tax_invoice(invoice_id: int) -> TaxInvoice | None:
    return db.session.get(TaxInvoice, invoice_id)


def list_tax_invoices(type_: str | None = None) -> list[dict]:
    """Invoices newest-first with partner name and linked transaction code."""
    query = db.session.query(TaxInvoice)
    if type_:
        query = query.filter(TaxInvoice.type == type_)
    invoices = query.order_by(TaxInvoice.date.desc(), TaxInvoice.id.desc()).all()
    return [
        {
            **invoice.to_dict(),
            "partner_name": invoice.partner.name if invoice.partner else None,
            "transaction_code": invoice.transaction.code if invoice.transaction else None,
        }
        for invoice in invoices
    ]


def get_tax_invoice_detail(invoice_id: int) -> dict:
    """Invoice with its partner, linked transaction and that transaction's lines."""
    invoice = get_tax_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError("Tax invoice not found", details={"tax_invoice_id": invoice_id})

    items = []
    if invoice.transaction_id is not None:
        rows = (
            db.session.query(TransactionItem, Item.code, Item.name)
            .outerjoin(Item, Item.id == TransactionItem.item_id)
            .filter(TransactionItem.transaction_id == invoice.transaction_id)
            .order_by(TransactionItem.id.asc())
            .all()
        )
        items = [{**line.to_dict(), "item_code": code, "item_name": name} for line, code, name in rows]

    return {
        **invoice.to_dict(),
        "partner": invoice.partner.to_dict() if invoice.partner else None,
        "transaction": invoice.transaction.to_dict() if invoice.transaction else None,
        "items": items,
    }
