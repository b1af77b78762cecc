# Overview: Sale/purchase posting; keeps line items, on-hand stock and inventory history in step.

"""
Transaction Poster

WHY: A sale is only real once its stock has left the shelf. Creating, editing
or deleting a sale therefore writes the document, its lines, the inventory
record and the history row in a single run_atomic() scope.

Rules:
- Stock pre-checks run inside the same scope as the writes, before any write.
- Quantities are summed per item, so an item listed on two lines is checked
  against its combined quantity.
- Purchases never move inventory. Stock receipts go through manual counts.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Item, Partner, Transaction, TransactionItem
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    ValidationError,
    enforce_rules_transaction,
    enforce_rules_transaction_item,
    validate_line_list,
    validate_payload,
)
from . import inventory_service
from .concurrency import lock_for_update, run_atomic
from .document_service import next_transaction_code
from .errors import InsufficientStockError, InvalidReferenceError, NotFoundError

logger = logging.getLogger(__name__)

NOTE_SALE_POSTED = "Sale posted"
NOTE_SALE_UPDATED = "Sale updated"
NOTE_SALE_CANCELED = "Sale canceled"

TRANSACTION_POLICY = ModelValidationPolicy(
    writable_fields={"code", "type", "partner_id", "date", "status", "total_amount", "tax_amount", "notes"},
    required_on_create={"type", "partner_id", "date"},
)

TRANSACTION_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"item_id", "quantity", "unit_price", "amount", "tax_amount", "tax_rate_bps", "description"},
    required_on_create={"item_id", "quantity", "unit_price"},
)


# =============================================================================
# Payload parsing
# =============================================================================

def parse_header(payload: dict, *, partial: bool) -> dict:
    patch = validate_payload(model=Transaction, payload=payload, policy=TRANSACTION_POLICY, partial=partial)
    enforce_rules_transaction(patch)
    return patch


def parse_lines(raw) -> list[dict]:
    lines = []
    for index, line in enumerate(validate_line_list(raw)):
        try:
            patch = validate_payload(model=TransactionItem, payload=line, policy=TRANSACTION_ITEM_POLICY, partial=False)
            enforce_rules_transaction_item(patch)
        except ValidationError as exc:
            raise ValidationError(f"items[{index}]: {exc}", field=f"items[{index}].{exc.field or ''}".rstrip(".")) from exc

        expected = patch["quantity"] * patch["unit_price"]
        if patch.get("amount") is None:
            patch["amount"] = expected
        elif patch["amount"] != expected:
            raise ValidationError(
                f"items[{index}]: amount must equal quantity * unit_price ({expected})",
                field=f"items[{index}].amount",
            )
        if patch.get("tax_amount") is None:
            patch["tax_amount"] = 0
        lines.append(patch)
    return lines


def _quantities_by_item(lines) -> dict[int, int]:
    totals: dict[int, int] = {}
    for line in lines:
        item_id = line["item_id"] if isinstance(line, dict) else line.item_id
        quantity = line["quantity"] if isinstance(line, dict) else line.quantity
        totals[item_id] = totals.get(item_id, 0) + quantity
    return totals


# =============================================================================
# Reference checks (inside the atomic scope)
# =============================================================================

def _require_partner(partner_id: int) -> None:
    if db.session.get(Partner, partner_id) is None:
        raise InvalidReferenceError("Partner not found", details={"partner_id": partner_id})


def _require_items(lines: list[dict]) -> None:
    ids = {line["item_id"] for line in lines}
    if not ids:
        return
    found = {row[0] for row in db.session.query(Item.id).filter(Item.id.in_(ids)).all()}
    missing = sorted(ids - found)
    if missing:
        raise InvalidReferenceError("Item not found", details={"item_ids": missing})


def _require_unique_code(code: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Transaction.id).filter(Transaction.code == code)
    if exclude_id is not None:
        query = query.filter(Transaction.id != exclude_id)
    if query.first() is not None:
        raise ConflictError(f"Transaction code already exists: {code}")


def _code_taken(code: str) -> bool:
    return db.session.query(Transaction.id).filter(Transaction.code == code).first() is not None


def _next_free_code(transaction_type: str) -> str:
    """Skip sequence numbers a client already used as an explicit code."""
    code = next_transaction_code(transaction_type)
    while _code_taken(code):
        code = next_transaction_code(transaction_type)
    return code


def _check_outgoing(requested: dict[int, int]) -> None:
    """Fail if any positive outgoing quantity exceeds current on-hand stock."""
    for item_id, quantity in requested.items():
        if quantity <= 0:
            continue
        on_hand = inventory_service.get_quantity(item_id, lock=True)
        if quantity > on_hand:
            raise InsufficientStockError(item_id, on_hand, quantity)


def _insert_lines(transaction_id: int, lines: list[dict]) -> None:
    for line in lines:
        db.session.add(TransactionItem(transaction_id=transaction_id, **line))
    db.session.flush()


def _totals(lines: list[dict]) -> tuple[int, int]:
    return (
        sum(line["amount"] for line in lines),
        sum(line.get("tax_amount") or 0 for line in lines),
    )


# =============================================================================
# Create / update / delete
# =============================================================================

def create_transaction(header: dict, items, *, user_id: int | None = None) -> Transaction:
    """
    Post a sale or purchase with its lines.

    Sales are checked against on-hand stock first and then decrement it,
    one history row per item.
    """
    patch = parse_header(header, partial=False)
    lines = parse_lines(items)
    total, tax = _totals(lines)
    patch.setdefault("total_amount", total)
    patch.setdefault("tax_amount", tax)
    patch.setdefault("status", "pending")

    def _op() -> Transaction:
        _require_partner(patch["partner_id"])
        _require_items(lines)

        outgoing = _quantities_by_item(lines) if patch["type"] == "sale" else {}
        _check_outgoing(outgoing)

        code = patch.get("code")
        if code:
            _require_unique_code(code)
        else:
            code = _next_free_code(patch["type"])

        transaction = Transaction(**{**patch, "code": code}, created_by=user_id)
        db.session.add(transaction)
        db.session.flush()

        _insert_lines(transaction.id, lines)

        for item_id, quantity in outgoing.items():
            inventory_service.adjust(
                item_id,
                -quantity,
                "sale",
                transaction_id=transaction.id,
                note=NOTE_SALE_POSTED,
                user_id=user_id,
            )
        return transaction

    transaction = run_atomic(_op)
    logger.info("Posted %s %s with %d line(s)", transaction.type, transaction.code, len(lines))
    return transaction


def update_transaction(transaction_id: int, header: dict, items, *, user_id: int | None = None) -> Transaction:
    """
    Replace header fields and the whole line set.

    Stock moves by the per-item difference between what the old document had
    already taken out and what the new one takes out. Only sales take stock out,
    so changing a sale into a purchase returns its quantities.

    Type changes count the old purchase lines as zero outgoing stock. This
    departs from the older rule of diffing raw line quantities whenever the new
    type is "sale": there, a purchase turned into a sale with unchanged lines
    moved nothing, and a sale turned into a purchase returned nothing.
    """
    patch = parse_header(header, partial=True)
    lines = parse_lines(items)

    def _op() -> Transaction:
        transaction = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id)
        ).first()
        if transaction is None:
            raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})

        old_lines = db.session.query(TransactionItem).filter_by(transaction_id=transaction_id).all()
        old_type = transaction.type
        new_type = patch.get("type", old_type)

        if "partner_id" in patch:
            _require_partner(patch["partner_id"])
        _require_items(lines)
        if patch.get("code") and patch["code"] != transaction.code:
            _require_unique_code(patch["code"], exclude_id=transaction_id)

        old_out = _quantities_by_item(old_lines) if old_type == "sale" else {}
        new_out = _quantities_by_item(lines) if new_type == "sale" else {}
        diffs = {
            item_id: new_out.get(item_id, 0) - old_out.get(item_id, 0)
            for item_id in sorted(set(old_out) | set(new_out))
        }
        _check_outgoing(diffs)

        for key, value in patch.items():
            if key == "code" and not value:
                continue
            setattr(transaction, key, value)
        if "total_amount" not in patch or "tax_amount" not in patch:
            total, tax = _totals(lines)
            if "total_amount" not in patch:
                transaction.total_amount = total
            if "tax_amount" not in patch:
                transaction.tax_amount = tax

        db.session.query(TransactionItem).filter_by(transaction_id=transaction_id).delete(synchronize_session=False)
        _insert_lines(transaction_id, lines)

        for item_id, diff in diffs.items():
            if diff == 0:
                continue
            if new_type == "sale":
                history_type, note = "sale", NOTE_SALE_UPDATED
            else:
                history_type, note = "sale_cancel", NOTE_SALE_CANCELED
            inventory_service.adjust(
                item_id,
                -diff,
                history_type,
                transaction_id=transaction_id,
                note=note,
                user_id=user_id,
            )
        return transaction

    transaction = run_atomic(_op)
    logger.info("Updated transaction %s (%s)", transaction.code, transaction.type)
    return transaction


def delete_transaction(transaction_id: int, *, user_id: int | None = None) -> bool:
    """
    Remove a transaction and its lines. A deleted sale returns its stock.

    Returns False when there was nothing to delete.
    """
    def _op() -> tuple[str, str] | None:
        transaction = lock_for_update(
            db.session.query(Transaction).filter_by(id=transaction_id)
        ).first()
        if transaction is None:
            return None

        lines = db.session.query(TransactionItem).filter_by(transaction_id=transaction_id).all()
        restore = _quantities_by_item(lines) if transaction.type == "sale" else {}

        db.session.query(TransactionItem).filter_by(transaction_id=transaction_id).delete(synchronize_session=False)
        db.session.delete(transaction)
        db.session.flush()

        for item_id, quantity in restore.items():
            inventory_service.adjust(
                item_id,
                quantity,
                "sale_cancel",
                transaction_id=transaction_id,
                note=NOTE_SALE_CANCELED,
                user_id=user_id,
            )
        return transaction.code, transaction.type

    deleted = run_atomic(_op)
    if deleted is None:
        return False
    logger.info("Deleted transaction %s (%s)", *deleted)
    return True


# =============================================================================
# Reads
# =============================================================================

def get_transaction(transaction_id: int) -> Transaction | None:
    return db.session.get(Transaction, transaction_id)


def get_transaction_items(transaction_id: int) -> list[TransactionItem]:
    return (
        db.session.query(TransactionItem)
        .filter_by(transaction_id=transaction_id)
        .order_by(TransactionItem.id.asc())
        .all()
    )


def list_transactions(type_: str | None = None, status: str | None = None) -> list[dict]:
    """Transactions newest-first with the partner name joined in."""
    query = db.session.query(Transaction, Partner.name).outerjoin(Partner, Partner.id == Transaction.partner_id)
    if type_:
        query = query.filter(Transaction.type == type_)
    if status:
        query = query.filter(Transaction.status == status)
    rows = query.order_by(Transaction.date.desc(), Transaction.id.desc()).all()
    return [{**transaction.to_dict(), "partner_name": partner_name} for transaction, partner_name in rows]


def get_transaction_detail(transaction_id: int) -> dict:
    transaction = get_transaction(transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction not found", details={"transaction_id": transaction_id})
    body = transaction.to_dict()
    body["partner_name"] = transaction.partner.name if transaction.partner else None
    body["items"] = [line.to_dict() for line in get_transaction_items(transaction_id)]
    return body
