# Overview: Double-entry voucher posting, status changes and reads.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Account, Partner, Voucher, VoucherItem
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_voucher,
    enforce_rules_voucher_item,
    validate_line_list,
    validate_payload,
)
from .concurrency import lock_for_update, run_atomic
from .document_service import next_voucher_code
from .errors import (
    AmountMismatchError,
    InvalidReferenceError,
    InvalidTransitionError,
    NotFoundError,
    UnbalancedVoucherError,
)

logger = logging.getLogger(__name__)

VOUCHER_POLICY = ModelValidationPolicy(
    writable_fields={"date", "type", "partner_id", "amount", "status", "description"},
    required_on_create={"date", "type", "amount"},
)

VOUCHER_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"account_id", "amount", "description"},
    required_on_create={"account_id", "amount"},
)

# Targets accepted by update_status; "approved" is stored as "confirmed".
STATUS_TARGETS = ("draft", "confirmed", "approved", "canceled")

_CONFIRMED = ("confirmed", "approved")


def parse_header(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=Voucher, payload=payload, policy=VOUCHER_POLICY, partial=partial)
    enforce_rules_voucher(patch)
    return patch


def parse_lines(raw) -> list[dict]:
    lines = []
    for index, line in enumerate(validate_line_list(raw)):
        try:
            patch = validate_payload(model=VoucherItem, payload=line, policy=VOUCHER_ITEM_POLICY, partial=False)
            enforce_rules_voucher_item(patch)
        except ValidationError as exc:
            raise ValidationError(f"items[{index}]: {exc}", field=f"items[{index}].{exc.field or ''}".rstrip(".")) from exc
        lines.append(patch)
    return lines


def balance_totals(lines: list[dict]) -> tuple[int, int]:
    """(debit_total, credit_total): positive amounts, and absolute negative amounts."""
    debit = sum(line["amount"] for line in lines if line["amount"] > 0)
    credit = sum(-line["amount"] for line in lines if line["amount"] < 0)
    return debit, credit


def _check_lines(lines: list[dict]) -> None:
    account_ids = {line["account_id"] for line in lines}
    found = {row[0] for row in db.session.query(Account.id).filter(Account.id.in_(account_ids)).all()}
    for line in lines:
        if line["account_id"] not in found:
            raise InvalidReferenceError(
                f"Account not found: {line['account_id']}",
                details={"account_id": line["account_id"]},
            )
        if line["amount"] == 0:
            raise InvalidReferenceError(
                "Voucher line amount must not be zero",
                details={"account_id": line["account_id"]},
            )


def _require_partner(partner_id) -> None:
    if partner_id is not None and db.session.get(Partner, partner_id) is None:
        raise InvalidReferenceError("Partner not found", details={"partner_id": partner_id})


def _insert_lines(voucher_id: int, lines: list[dict]) -> None:
    for line in lines:
        db.session.add(VoucherItem(voucher_id=voucher_id, **line))
    db.session.flush()


def _locked_voucher(voucher_id: int) -> Voucher:
    voucher = lock_for_update(db.session.query(Voucher).filter_by(id=voucher_id)).first()
    if voucher is None:
        raise NotFoundError("Voucher not found", details={"voucher_id": voucher_id})
    return voucher


def create_voucher(header: dict, items, *, user_id: int | None = None) -> Voucher:
    """
    Post a balanced voucher.

    Debit total must equal credit total, and both must equal the declared
    amount. The code is allocated from the voucher's type and date.
    """
    patch = parse_header(header, partial=False)
    lines = parse_lines(items)
    if not lines:
        raise ValidationError("Voucher requires at least one item", field="items")

    status = patch.pop("status", None) or "draft"
    if status == "approved":
        status = "confirmed"

    def _op() -> Voucher:
        _require_partner(patch.get("partner_id"))
        _check_lines(lines)

        debit, credit = balance_totals(lines)
        if debit != credit:
            raise UnbalancedVoucherError(debit, credit)
        if debit != patch["amount"]:
            raise AmountMismatchError(patch["amount"], debit)

        voucher = Voucher(
            **patch,
            status=status,
            code=next_voucher_code(patch["type"], patch["date"]),
            created_by=user_id,
        )
        db.session.add(voucher)
        db.session.flush()

        _insert_lines(voucher.id, lines)
        return voucher

    voucher = run_atomic(_op)
    logger.info("Posted voucher %s amount=%s", voucher.code, voucher.amount)
    return voucher


def update_voucher(voucher_id: int, header: dict, items=None, *, user_id: int | None = None) -> Voucher:
    """
    Replace header fields and, when items are given, the whole line set.

    Balance is only enforced at creation; an edit is stored as given apart
    from reference checks on the new lines.
    """
    patch = parse_header(header, partial=True)
    patch.pop("status", None)
    lines = parse_lines(items) if items is not None else None

    def _op() -> Voucher:
        voucher = _locked_voucher(voucher_id)
        if "partner_id" in patch:
            _require_partner(patch["partner_id"])

        for key, value in patch.items():
            setattr(voucher, key, value)

        if lines is not None:
            _check_lines(lines)
            db.session.query(VoucherItem).filter_by(voucher_id=voucher_id).delete(synchronize_session=False)
            _insert_lines(voucher_id, lines)
        return voucher

    voucher = run_atomic(_op)
    logger.info("Updated voucher %s", voucher.code)
    return voucher


def update_status(voucher_id: int, status, *, user_id: int | None = None) -> Voucher:
    """
    Status machine: draft/pending -> confirmed -> canceled.

    Confirmed vouchers may only be canceled; canceled is terminal.
    """
    if status not in STATUS_TARGETS:
        raise ValidationError(f"status must be one of: {', '.join(STATUS_TARGETS)}", field="status")
    target = "confirmed" if status == "approved" else status

    def _op() -> Voucher:
        voucher = _locked_voucher(voucher_id)
        current = voucher.status
        if current in _CONFIRMED and target != "canceled":
            raise InvalidTransitionError(current, target, "A confirmed voucher can only be canceled")
        if current == "canceled":
            raise InvalidTransitionError(current, target, "A canceled voucher cannot change status")
        voucher.status = target
        return voucher

    voucher = run_atomic(_op)
    logger.info("Voucher %s status -> %s", voucher.code, voucher.status)
    return voucher


def delete_voucher(voucher_id: int, *, user_id: int | None = None) -> str | None:
    """Delete the lines then the voucher. Returns the deleted code, or None if absent."""
    def _op() -> str | None:
        voucher = lock_for_update(db.session.query(Voucher).filter_by(id=voucher_id)).first()
        if voucher is None:
            return None
        code = voucher.code
        db.session.query(VoucherItem).filter_by(voucher_id=voucher_id).delete(synchronize_session=False)
        db.session.delete(voucher)
        db.session.flush()
        return code

    code = run_atomic(_op)
    if code is not None:
        logger.info("Deleted voucher %s", code)
    return code


# =============================================================================
# Reads
# =============================================================================

def get_voucher(voucher_id: int) -> Voucher | None:
    return db.session.get(Voucher, voucher_id)


def get_voucher_items(voucher_id: int) -> list[dict]:
    """Lines with the account name joined in."""
    rows = (
        db.session.query(VoucherItem, Account.name)
        .outerjoin(Account, Account.id == VoucherItem.account_id)
        .filter(VoucherItem.voucher_id == voucher_id)
        .order_by(VoucherItem.id.asc())
        .all()
    )
    return [{**line.to_dict(), "account_name": account_name} for line, account_name in rows]


def serialize_voucher(voucher: Voucher) -> dict:
    body = voucher.to_dict()
    body["items"] = get_voucher_items(voucher.id)
    return body


def get_voucher_detail(voucher_id: int) -> dict:
    voucher = get_voucher(voucher_id)
    if voucher is None:
        raise NotFoundError("Voucher not found", details={"voucher_id": voucher_id})
    body = serialize_voucher(voucher)
    body["partner"] = voucher.partner.to_dict() if voucher.partner else None
    return body


def list_vouchers(type_: str | None = None, status: str | None = None) -> list[dict]:
    query = db.session.query(Voucher, Partner.name).outerjoin(Partner, Partner.id == Voucher.partner_id)
    if type_:
        query = query.filter(Voucher.type == type_)
    if status:
        query = query.filter(Voucher.status == status)
    rows = query.order_by(Voucher.date.desc(), Voucher.id.desc()).all()
    return [{**serialize_voucher(voucher), "partner_name": partner_name} for voucher, partner_name in rows]
