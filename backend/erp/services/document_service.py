# Overview: Document code allocation for transactions, vouchers and tax invoices.

from __future__ import annotations

import re
from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence, TaxInvoice, Voucher


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


TRANSACTION_PREFIXES = {"sale": "S", "purchase": "P"}

VOUCHER_PREFIXES = {"income": "I", "expense": "E", "transfer": "T"}

TAX_INVOICE_PREFIXES = {"issue": "I", "receive": "R"}


def next_document_number(*, document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Allocate the next number for a document type and render it as PREFIX-000001.

    Must run inside the caller's run_atomic() scope: the counter increment
    commits or rolls back together with the document that consumes it.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        # First document of this type; a concurrent creator may win the insert.
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            db.session.flush()
            current = (
                db.session.query(DocumentSequence.next_number)
                .filter_by(document_type=document_type)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{next_num:0{pad}d}"


def next_transaction_code(transaction_type: str) -> str:
    prefix = TRANSACTION_PREFIXES[transaction_type]
    return next_document_number(document_type=f"TRANSACTION_{transaction_type.upper()}", prefix=prefix)


def _next_daily_code(column, stem: str) -> str:
    """Continue from the highest STEM-NNN code already stored in `column`."""
    codes = db.session.query(column).filter(column.like(f"{stem}%")).all()

    highest = 0
    pattern = re.compile(rf"^{re.escape(stem)}(\d+)$")
    for (code,) in codes:
        match = pattern.match(code)
        if match:
            highest = max(highest, int(match.group(1)))

    return f"{stem}{highest + 1:03d}"


def next_voucher_code(voucher_type: str, voucher_date: date) -> str:
    """
    Voucher codes look like VI240315-001: type letter, yymmdd, daily sequence.

    The sequence continues from the highest code already issued for the same
    type and day. Must run inside run_atomic() so the read and the insert that
    follows see the same snapshot.
    """
    letter = VOUCHER_PREFIXES.get(voucher_type)
    if letter is None:
        raise DocumentSequenceError(f"unknown voucher type: {voucher_type}")
    return _next_daily_code(Voucher.code, f"V{letter}{voucher_date.strftime('%y%m%d')}-")


def next_tax_invoice_code(invoice_type: str, invoice_date: date) -> str:
    """TI240315-001 for issued invoices, TR240315-001 for received ones."""
    letter = TAX_INVOICE_PREFIXES.get(invoice_type)
    if letter is None:
        raise DocumentSequenceError(f"unknown tax invoice type: {invoice_type}")
    return _next_daily_code(TaxInvoice.code, f"T{letter}{invoice_date.strftime('%y%m%d')}-")
