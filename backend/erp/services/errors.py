# Overview: Business-rule exceptions raised by the posting services and mapped to HTTP by the routes.

"""
All of these are raised before any write happens (or abort the atomic scope
that is open when they are raised), so nothing partial is ever committed.
"""


class LedgerError(Exception):
    """Base class; `details` is rendered next to the message in API responses."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "details": self.details}


class NotFoundError(LedgerError):
    status_code = 404


class InsufficientStockError(LedgerError):
    """A sale would drive on-hand quantity below zero."""

    def __init__(self, item_id: int, current_quantity: int, requested_quantity: int):
        super().__init__(
            f"Insufficient stock for item {item_id} "
            f"(on hand: {current_quantity}, requested: {requested_quantity})",
            details={
                "item_id": item_id,
                "current_quantity": current_quantity,
                "requested_quantity": requested_quantity,
            },
        )
        self.item_id = item_id
        self.current_quantity = current_quantity
        self.requested_quantity = requested_quantity


class UnbalancedVoucherError(LedgerError):
    def __init__(self, debit_total: int, credit_total: int):
        super().__init__(
            "Debit and credit totals do not match",
            details={"debit_total": debit_total, "credit_total": credit_total},
        )


class AmountMismatchError(LedgerError):
    def __init__(self, voucher_amount: int, debit_total: int):
        super().__init__(
            "Voucher amount does not match the debit total",
            details={"voucher_amount": voucher_amount, "debit_total": debit_total},
        )


class InvalidTransitionError(LedgerError):
    def __init__(self, current_status: str, requested_status: str, reason: str):
        super().__init__(
            reason,
            details={"current_status": current_status, "requested_status": requested_status},
        )


class InvalidReferenceError(LedgerError):
    """A line or header points at an account/item/partner/document that does not exist."""
