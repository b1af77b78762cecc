# Overview: Money received from or paid to partners.

"""
Payment Service

A payment always names its partner. When it also points at a transaction or
a voucher, that document must exist and belong to the same partner (a voucher
without a partner matches any).
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Partner, Payment, Transaction, Voucher
from ..models.accounting import PAYMENT_STATUSES
from ..validation import ValidationError
from .concurrency import lock_for_update, run_atomic
from .document_service import next_document_number
from .errors import InvalidReferenceError, NotFoundError

logger = logging.getLogger(__name__)


def _check_references(patch: dict) -> None:
    partner_id = patch["partner_id"]
    if db.session.get(Partner, partner_id) is None:
        raise InvalidReferenceError("Partner not found", details={"partner_id": partner_id})

    transaction_id = patch.get("transaction_id")
    if transaction_id is not None:
        transaction = db.session.get(Transaction, transaction_id)
        if transaction is None:
            raise InvalidReferenceError("Transaction not found", details={"transaction_id": transaction_id})
        if transaction.partner_id != partner_id:
            raise InvalidReferenceError(
                "Transaction belongs to a different partner",
                details={"transaction_id": transaction_id, "partner_id": partner_id},
            )

    voucher_id = patch.get("voucher_id")
    if voucher_id is not None:
        voucher = db.session.get(Voucher, voucher_id)
        if voucher is None:
            raise InvalidReferenceError("Voucher not found", details={"voucher_id": voucher_id})
        if voucher.partner_id is not None and voucher.partner_id != partner_id:
            raise InvalidReferenceError(
                "Voucher belongs to a different partner",
                details={"voucher_id": voucher_id, "partner_id": partner_id},
            )


def create_payment(*, patch: dict, user_id: int | None = None) -> Payment:
    """Create a payment from a validated patch; code is allocated when omitted."""
    def _op() -> Payment:
        _check_references(patch)
        code = patch.get("code") or next_document_number(document_type="PAYMENT", prefix="PM")
        payment = Payment(**{**patch, "code": code}, created_by=user_id)
        db.session.add(payment)
        db.session.flush()
        return payment

    payment = run_atomic(_op)
    logger.info("Recorded payment %s amount=%s", payment.code, payment.amount)
    return payment


def update_payment(payment_id: int, *, patch: dict) -> Payment:
    """
    Apply a validated partial patch. References are re-checked against the
    merged result, so changing only the partner still has to fit the linked
    transaction and voucher.
    """
    def _op() -> Payment:
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if payment is None:
            raise NotFoundError("Payment not found", details={"payment_id": payment_id})

        merged = {
            "partner_id": payment.partner_id,
            "transaction_id": payment.transaction_id,
            "voucher_id": payment.voucher_id,
        }
        merged.update({k: v for k, v in patch.items() if k in merged})
        _check_references(merged)

        for key, value in patch.items():
            if key == "code" and not value:
                continue
            setattr(payment, key, value)
        db.session.flush()
        return payment

    payment = run_atomic(_op)
    logger.info("Updated payment %s", payment.code)
    return payment


def update_payment_status(payment_id: int, status) -> Payment:
    if status not in PAYMENT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PAYMENT_STATUSES)}", field="status")
    payment = get_payment(payment_id)
    if payment is None:
        raise NotFoundError("Payment not found", details={"payment_id": payment_id})
    payment.status = status
    db.session.commit()
    return payment


def delete_payment(payment_id: int) -> str | None:
    """Returns the deleted code, or None if absent."""
    payment = get_payment(payment_id)
    if payment is None:
        return None
    code = payment.code
    db.session.delete(payment)
    db.session.commit()
    return code


def get_payment(payment_id: int) -> Payment | None:
    return db.session.get(Payment, payment_id)


def list_payments(*, partner_id: int | None = None) -> list[dict]:
    """Payments newest-first with partner name and linked document codes."""
    query = db.session.query(Payment)
    if partner_id is not None:
        query = query.filter(Payment.partner_id == partner_id)
    payments = query.order_by(Payment.date.desc(), Payment.id.desc()).all()
    return [
        {
            **p.to_dict(),
            "partner_name": p.partner.name if p.partner else None,
            "transaction_code": p.transaction.code if p.transaction else None,
            "voucher_code": p.voucher.code if p.voucher else None,
        }
        for p in payments
    ]


def get_payment_detail(payment_id: int) -> dict:
    payment = get_payment(payment_id)
    if payment is None:
        raise NotFoundError("Payment not found", details={"payment_id": payment_id})
    return {
        **payment.to_dict(),
        "partner": payment.partner.to_dict() if payment.partner else None,
        "transaction": payment.transaction.to_dict() if payment.transaction else None,
        "voucher": payment.voucher.to_dict() if payment.voucher else None,
    }
