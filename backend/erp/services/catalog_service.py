# backend/erp/services/catalog_service.py
"""
Catalog Service: items, partners and categories.

Routes validate payloads into patch dicts (validation.validate_payload);
these functions apply them. The ledger only reads catalog rows.
"""
from __future__ import annotations

import logging

from ..extensions import db
from ..models import (
    Category,
    InventoryHistoryEntry,
    InventoryRecord,
    Item,
    Partner,
    Payment,
    TaxInvoice,
    Transaction,
    TransactionItem,
    Voucher,
)
from ..validation import ConflictError, ValidationError

logger = logging.getLogger(__name__)

ITEM_MUTABLE_FIELDS = {
    "code", "name", "description", "category_id", "unit_price", "cost_price",
    "unit", "min_stock_level", "is_active", "notes",
}

PARTNER_MUTABLE_FIELDS = {
    "name", "business_number", "type", "contact_name", "phone", "email",
    "address", "is_active", "credit_limit", "notes",
}


def _apply_patch(obj, patch: dict, allowed: set[str]) -> None:
    for k, v in patch.items():
        if k not in allowed:
            continue
        setattr(obj, k, v)


def _require_category(category_id) -> None:
    if category_id is not None and db.session.get(Category, category_id) is None:
        raise ValidationError("Category not found", field="category_id")


# =============================================================================
# Items
# =============================================================================

def list_items(*, active_only: bool = False, search: str | None = None) -> list[Item]:
    query = db.session.query(Item)
    if active_only:
        query = query.filter(Item.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(Item.code.ilike(like), Item.name.ilike(like)))
    return query.order_by(Item.code.asc(), Item.id.asc()).all()


def get_item(item_id: int) -> Item | None:
    return db.session.get(Item, item_id)


def get_item_by_code(code: str) -> Item | None:
    return db.session.query(Item).filter_by(code=code).first()


def create_item(*, patch: dict, user_id: int | None = None) -> Item:
    if get_item_by_code(patch["code"]) is not None:
        raise ConflictError("Item code already exists.")
    _require_category(patch.get("category_id"))

    item = Item(created_by=user_id)
    _apply_patch(item, patch, ITEM_MUTABLE_FIELDS)
    db.session.add(item)
    db.session.commit()
    logger.info("Created item %s", item.code)
    return item


def update_item(*, item_id: int, patch: dict) -> Item | None:
    """Returns None if the item does not exist."""
    item = get_item(item_id)
    if item is None:
        return None

    if "code" in patch and patch["code"] != item.code:
        existing = db.session.query(Item).filter(Item.code == patch["code"], Item.id != item.id).first()
        if existing:
            raise ConflictError("Item code already exists.")
    if "category_id" in patch:
        _require_category(patch["category_id"])

    _apply_patch(item, patch, ITEM_MUTABLE_FIELDS)
    db.session.commit()
    return item


def delete_item(item_id: int) -> Item | None:
    """
    Delete an item that never moved. Returns the deleted row, or None if absent.

    Raises ConflictError while transaction lines or inventory history reference
    it; such items are deactivated instead.
    """
    item = get_item(item_id)
    if item is None:
        return None
    used = (
        db.session.query(TransactionItem.id).filter_by(item_id=item_id).first()
        or db.session.query(InventoryHistoryEntry.id).filter_by(item_id=item_id).first()
    )
    if used is not None:
        raise ConflictError(f"Item {item.code} has transactions or stock history; deactivate it instead")

    logger.info("Deleting item %s", item.code)
    db.session.query(InventoryRecord).filter_by(item_id=item_id).delete(synchronize_session=False)
    db.session.delete(item)
    db.session.commit()
    return item


# =============================================================================
# Partners
# =============================================================================

def list_partners(*, type_: str | None = None) -> list[Partner]:
    query = db.session.query(Partner)
    if type_:
        # "both" partners appear under customer and supplier filters
        query = query.filter(Partner.type.in_({type_, "both"}))
    return query.order_by(Partner.name.asc(), Partner.id.asc()).all()


def get_partner(partner_id: int) -> Partner | None:
    return db.session.get(Partner, partner_id)


def create_partner(*, patch: dict, user_id: int | None = None) -> Partner:
    partner = Partner(created_by=user_id)
    _apply_patch(partner, patch, PARTNER_MUTABLE_FIELDS)
    db.session.add(partner)
    db.session.commit()
    logger.info("Created partner %s", partner.name)
    return partner


def update_partner(*, partner_id: int, patch: dict) -> Partner | None:
    """Returns None if the partner does not exist."""
    partner = get_partner(partner_id)
    if partner is None:
        return None
    _apply_patch(partner, patch, PARTNER_MUTABLE_FIELDS)
    db.session.commit()
    return partner


def delete_partner(partner_id: int) -> Partner | None:
    """
    Delete a partner no document references. Returns the deleted row, or None.

    Raises ConflictError while transactions, vouchers, payments or tax invoices
    point at it.
    """
    partner = get_partner(partner_id)
    if partner is None:
        return None
    for model in (Transaction, Voucher, Payment, TaxInvoice):
        if db.session.query(model.id).filter_by(partner_id=partner_id).first() is not None:
            raise ConflictError(f"Partner {partner.name} is referenced by {model.__tablename__}")

    logger.info("Deleting partner %s", partner.name)
    db.session.delete(partner)
    db.session.commit()
    return partner


# =============================================================================
# Categories
# =============================================================================

def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.level.asc(), Category.name.asc()).all()


def create_category(*, name: str, parent_id: int | None = None) -> Category:
    """Level is derived from the parent; at most three levels deep."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", field="name")

    level = 1
    if parent_id is not None:
        parent = db.session.get(Category, parent_id)
        if parent is None:
            raise ValidationError("Parent category not found", field="parent_id")
        level = parent.level + 1
        if level > 3:
            raise ValidationError("Categories are limited to three levels", field="parent_id")

    category = Category(name=name, parent_id=parent_id, level=level)
    db.session.add(category)
    db.session.commit()
    return category
