# Overview: Inventory ledger; current on-hand quantity plus its append-only history.

# backend/erp/services/inventory_service.py

from __future__ import annotations

import logging

from ..extensions import db
from ..models import InventoryHistoryEntry, InventoryRecord, Item
from ..models.inventory import HISTORY_TYPES
from erp.time_utils import to_utc_z, utcnow
from .concurrency import lock_for_update, run_atomic
from .errors import NotFoundError
"""
Inventory Ledger Invariants (authoritative)

Storage model:
- One InventoryRecord per item holds the mutable on-hand quantity; absent means 0.
- Every change appends an InventoryHistoryEntry with before/after/change.
- quantity == SUM(change) over the item's history; history is never updated or deleted.

Atomicity:
- adjust() never commits. It must run inside the caller's run_atomic() scope together
  with the document writes that triggered it (sale posting, sale edit, sale delete,
  manual count), so a failure anywhere leaves both the record and the history untouched.

Floor:
- adjust() has no non-negative floor. Sale postings pre-check stock themselves
  (transaction_service); manual counts are validated as non-negative at the API edge.
"""

logger = logging.getLogger(__name__)

NOTE_ADJUSTMENT = "Manual stock adjustment"


def _get_record(item_id: int, *, lock: bool = False) -> InventoryRecord | None:
    query = db.session.query(InventoryRecord).filter_by(item_id=item_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_quantity(item_id: int, *, lock: bool = False) -> int:
    """Current on-hand quantity; 0 when the item has never moved."""
    record = _get_record(item_id, lock=lock)
    return record.quantity if record else 0


def get_quantities(item_ids) -> dict[int, int]:
    ids = list(set(item_ids))
    if not ids:
        return {}
    rows = db.session.query(InventoryRecord.item_id, InventoryRecord.quantity).filter(
        InventoryRecord.item_id.in_(ids)
    ).all()
    found = {item_id: quantity for item_id, quantity in rows}
    return {item_id: found.get(item_id, 0) for item_id in ids}


def adjust(
    item_id: int,
    delta: int,
    transaction_type: str,
    *,
    transaction_id: int | None = None,
    note: str | None = None,
    user_id: int | None = None,
) -> InventoryHistoryEntry:
    """
    Read-modify-write the on-hand quantity and append the matching history row.

    Must be called inside run_atomic(); flushes but never commits.
    """
    if transaction_type not in HISTORY_TYPES:
        raise ValueError(f"unknown inventory transaction type: {transaction_type}")

    record = _get_record(item_id, lock=True)
    before = record.quantity if record else 0
    after = before + delta

    if record is None:
        record = InventoryRecord(item_id=item_id, quantity=after)
        db.session.add(record)
    else:
        record.quantity = after
        record.updated_at = utcnow()

    entry = InventoryHistoryEntry(
        item_id=item_id,
        transaction_type=transaction_type,
        transaction_id=transaction_id,
        quantity_before=before,
        quantity_after=after,
        change=delta,
        notes=note,
        created_at=utcnow(),
        created_by=user_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def get_history(item_id: int | None = None, *, limit: int | None = None) -> list[InventoryHistoryEntry]:
    """History newest-first, for one item or all items."""
    query = db.session.query(InventoryHistoryEntry)
    if item_id is not None:
        query = query.filter_by(item_id=item_id)
    query = query.order_by(
        InventoryHistoryEntry.created_at.desc(),
        InventoryHistoryEntry.id.desc(),
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def _require_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError("Item not found", details={"item_id": item_id})
    return item


def set_counted_quantity(
    item_id: int,
    quantity: int,
    *,
    notes: str | None = None,
    user_id: int | None = None,
) -> tuple[Item, int, InventoryHistoryEntry | None]:
    """
    Manual stock count: move on-hand to `quantity` through the ledger.

    The difference is recorded as an 'adjustment' history entry. A count equal
    to the current quantity records nothing.
    """
    def _op():
        item = _require_item(item_id)
        current = get_quantity(item_id, lock=True)
        delta = quantity - current

        entry = None
        if delta != 0:
            entry = adjust(
                item_id,
                delta,
                "adjustment",
                note=notes or NOTE_ADJUSTMENT,
                user_id=user_id,
            )
        return item, current + delta, entry

    item, quantity_after, entry = run_atomic(_op)
    if entry is not None:
        logger.info("Inventory count for item %s: %s -> %s", item_id, entry.quantity_before, entry.quantity_after)
    return item, quantity_after, entry


def _is_low(item: Item, quantity: int) -> bool:
    return quantity < (item.min_stock_level or 0)


def get_inventory_overview() -> list[dict]:
    items = db.session.query(Item).order_by(Item.code.asc()).all()
    quantities = get_quantities(i.id for i in items)
    return [
        {
            "item_id": item.id,
            "item_code": item.code,
            "item_name": item.name,
            "quantity": quantities.get(item.id, 0),
            "unit": item.unit,
            "min_stock_level": item.min_stock_level,
            "is_low": _is_low(item, quantities.get(item.id, 0)),
        }
        for item in items
    ]


def get_stock_detail(item_id: int) -> dict:
    item = _require_item(item_id)
    record = _get_record(item_id)
    quantity = record.quantity if record else 0
    return {
        "item": item.to_dict(),
        "stock": quantity,
        "is_low": _is_low(item, quantity),
        "last_updated": to_utc_z(record.updated_at) if record else None,
        "history": [h.to_dict() for h in get_history(item_id)],
    }


def get_item_history(item_id: int) -> list[InventoryHistoryEntry]:
    _require_item(item_id)
    return get_history(item_id)


def get_low_stock_items() -> list[dict]:
    """Items with a minimum level set whose on-hand quantity is below it."""
    items = db.session.query(Item).filter(Item.min_stock_level > 0).order_by(Item.code.asc()).all()
    quantities = get_quantities(i.id for i in items)

    alerts = []
    for item in items:
        quantity = quantities.get(item.id, 0)
        if quantity < item.min_stock_level:
            alerts.append({
                "item_id": item.id,
                "item_code": item.code,
                "item_name": item.name,
                "quantity": quantity,
                "min_stock_level": item.min_stock_level,
                "unit": item.unit,
                "shortage": item.min_stock_level - quantity,
            })
    return alerts
