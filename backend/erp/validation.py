from __future__ import annotations
from datetime import date, datetime
from erp.time_utils import parse_iso_date, parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .models.accounting import (
    ACCOUNT_TYPES,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    TAX_INVOICE_STATUSES,
    TAX_INVOICE_TYPES,
    VOUCHER_STATUSES,
    VOUCHER_TYPES,
)
from .models.catalog import PARTNER_TYPES
from .models.transactions import TRANSACTION_STATUSES, TRANSACTION_TYPES


# 9,999,999,999 in the smallest currency unit; keeps sums well inside 64-bit columns
MAX_AMOUNT = 9_999_999_999

MAX_QUANTITY = 1_000_000

# 100% in basis points
MAX_TAX_RATE_BPS = 10_000


class ValidationError(ValueError):
    """400-level input problem. `field` names the offending key when there is one."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        body = {"error": str(self)}
        if self.field:
            body["field"] = self.field
        return body


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate code)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer", field=col.key)
            if 'e' in stripped.lower():
                raise ValidationError(
                    f"{col.key} must be a plain integer (scientific notation not allowed)", field=col.key
                )
            if '.' in stripped:
                raise ValidationError(f"{col.key} must be an integer (no decimals)", field=col.key)
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer", field=col.key)
        if isinstance(value, float):
            raise ValidationError(f"{col.key} must be an integer, not a decimal", field=col.key)
        raise ValidationError(f"{col.key} must be an integer", field=col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", field=col.key)
            return dt
        raise ValidationError(f"{col.key} must be a datetime", field=col.key)

    # Business dates (transaction/voucher/payment date)
    if isinstance(coltype, Date):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str):
            try:
                d = parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date", field=col.key)
            if d is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 date", field=col.key)
            return d
        raise ValidationError(f"{col.key} must be a date", field=col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", field=k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", field=k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", field=k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", field=k)

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", field=k)

        patch[k] = val

    return patch


def validate_line_list(raw, *, key: str = "items") -> list:
    """Line-item arrays must be JSON arrays of objects."""
    if raw is None:
        raise ValidationError(f"{key} is required", field=key)
    if not isinstance(raw, list):
        raise ValidationError(f"{key} must be an array", field=key)
    for i, line in enumerate(raw):
        if not isinstance(line, dict):
            raise ValidationError(f"{key}[{i}] must be an object", field=f"{key}[{i}]")
    return raw


def _check_choice(patch: dict, field: str, choices) -> None:
    if field in patch and patch[field] is not None and patch[field] not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}", field=field)


def _check_range(patch: dict, field: str, *, low: int, high: int) -> None:
    if field in patch and patch[field] is not None:
        value = patch[field]
        if value < low or value > high:
            raise ValidationError(f"{field} must be between {low} and {high}", field=field)


def enforce_rules_transaction(patch: dict) -> None:
    _check_choice(patch, "type", TRANSACTION_TYPES)
    _check_choice(patch, "status", TRANSACTION_STATUSES)
    _check_range(patch, "total_amount", low=0, high=MAX_AMOUNT)
    _check_range(patch, "tax_amount", low=0, high=MAX_AMOUNT)


def enforce_rules_transaction_item(patch: dict) -> None:
    if "quantity" in patch and (patch["quantity"] is None or patch["quantity"] <= 0):
        raise ValidationError("quantity must be > 0", field="quantity")
    _check_range(patch, "quantity", low=1, high=MAX_QUANTITY)
    _check_range(patch, "unit_price", low=0, high=MAX_AMOUNT)
    _check_range(patch, "tax_amount", low=0, high=MAX_AMOUNT)
    _check_range(patch, "tax_rate_bps", low=0, high=MAX_TAX_RATE_BPS)


def enforce_rules_voucher(patch: dict) -> None:
    _check_choice(patch, "type", VOUCHER_TYPES)
    _check_choice(patch, "status", VOUCHER_STATUSES)
    _check_range(patch, "amount", low=0, high=MAX_AMOUNT)


def enforce_rules_voucher_item(patch: dict) -> None:
    # Sign carries debit/credit; zero lines are rejected by the voucher poster.
    _check_range(patch, "amount", low=-MAX_AMOUNT, high=MAX_AMOUNT)


def enforce_rules_item(patch: dict) -> None:
    _check_range(patch, "unit_price", low=0, high=MAX_AMOUNT)
    _check_range(patch, "cost_price", low=0, high=MAX_AMOUNT)
    _check_range(patch, "min_stock_level", low=0, high=MAX_QUANTITY)


def enforce_rules_partner(patch: dict) -> None:
    _check_choice(patch, "type", PARTNER_TYPES)
    _check_range(patch, "credit_limit", low=0, high=MAX_AMOUNT)


def enforce_rules_account(patch: dict) -> None:
    _check_choice(patch, "type", ACCOUNT_TYPES)


def enforce_rules_payment(patch: dict) -> None:
    _check_choice(patch, "method", PAYMENT_METHODS)
    _check_choice(patch, "status", PAYMENT_STATUSES)
    if "amount" in patch and (patch["amount"] is None or patch["amount"] <= 0):
        raise ValidationError("amount must be > 0", field="amount")
    _check_range(patch, "amount", low=1, high=MAX_AMOUNT)


def enforce_rules_tax_invoice(patch: dict) -> None:
    _check_choice(patch, "type", TAX_INVOICE_TYPES)
    _check_choice(patch, "status", TAX_INVOICE_STATUSES)
    for field in ("net_amount", "tax_amount", "total_amount"):
        _check_range(patch, field, low=0, high=MAX_AMOUNT)


def enforce_rules_inventory_adjust(payload: dict) -> tuple[int, str | None]:
    """
    Manual stock count: {"quantity": <counted on-hand>, "notes": "..."}.

    Returns (quantity, notes).
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    allowed = {"quantity", "notes"}
    for k in payload:
        if k not in allowed:
            raise ValidationError(f"Field not allowed: {k}", field=k)
    quantity = payload.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer", field="quantity")
    if quantity < 0 or quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity must be between 0 and {MAX_QUANTITY}", field="quantity")
    notes = payload.get("notes")
    if notes is not None:
        notes = str(notes).strip()[:255] or None
    return quantity, notes
