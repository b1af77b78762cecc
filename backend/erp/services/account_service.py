# Overview: Chart of accounts maintenance.

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Account, VoucherItem
from ..validation import ConflictError

logger = logging.getLogger(__name__)

ACCOUNT_MUTABLE_FIELDS = {"code", "name", "type", "is_active"}

# Seeded by `flask accounts seed` and `flask system init`.
DEFAULT_ACCOUNTS = (
    ("101", "Cash", "asset"),
    ("102", "Bank deposits", "asset"),
    ("108", "Accounts receivable", "asset"),
    ("146", "Merchandise", "asset"),
    ("251", "Accounts payable", "liability"),
    ("255", "VAT withheld", "liability"),
    ("331", "Capital", "equity"),
    ("401", "Sales", "revenue"),
    ("451", "Cost of goods sold", "expense"),
    ("811", "Salaries", "expense"),
    ("819", "Rent", "expense"),
)


class AccountInUseError(Exception):
    """Raised when deleting an account that voucher lines still reference."""
    pass


def list_accounts(*, active_only: bool = False) -> list[Account]:
    query = db.session.query(Account)
    if active_only:
        query = query.filter(Account.is_active.is_(True))
    return query.order_by(Account.code.asc()).all()


def get_account(account_id: int) -> Account | None:
    return db.session.get(Account, account_id)


def _require_unique_code(code: str, *, exclude_id: int | None = None) -> None:
    query = db.session.query(Account.id).filter(Account.code == code)
    if exclude_id is not None:
        query = query.filter(Account.id != exclude_id)
    if query.first() is not None:
        raise ConflictError("Account code already exists.")


def create_account(*, patch: dict) -> Account:
    _require_unique_code(patch["code"])
    account = Account()
    for k, v in patch.items():
        if k in ACCOUNT_MUTABLE_FIELDS:
            setattr(account, k, v)
    db.session.add(account)
    db.session.commit()
    return account


def update_account(*, account_id: int, patch: dict) -> Account | None:
    account = get_account(account_id)
    if account is None:
        return None
    if "code" in patch and patch["code"] != account.code:
        _require_unique_code(patch["code"], exclude_id=account_id)
    for k, v in patch.items():
        if k in ACCOUNT_MUTABLE_FIELDS:
            setattr(account, k, v)
    db.session.commit()
    return account


def delete_account(account_id: int) -> Account | None:
    """
    Delete an unused account. Returns the deleted row, or None if absent.

    Raises AccountInUseError while any voucher line references it.
    """
    account = get_account(account_id)
    if account is None:
        return None
    in_use = db.session.query(VoucherItem.id).filter_by(account_id=account_id).first()
    if in_use is not None:
        raise AccountInUseError(f"Account {account.code} is referenced by voucher items")
    db.session.delete(account)
    db.session.commit()
    return account


def seed_default_accounts() -> int:
    """Insert missing default accounts. Returns how many were added."""
    existing = {code for (code,) in db.session.query(Account.code).all()}
    added = 0
    for code, name, type_ in DEFAULT_ACCOUNTS:
        if code in existing:
            continue
        db.session.add(Account(code=code, name=name, type=type_, is_active=True))
        added += 1
    db.session.commit()
    if added:
        logger.info("Seeded %d default account(s)", added)
    return added
