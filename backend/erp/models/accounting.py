from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_iso_date, to_utc_z


ACCOUNT_TYPES = ("asset", "liability", "equity", "revenue", "expense")

VOUCHER_TYPES = ("income", "expense", "transfer")

# Storage vocabulary. Status changes go through voucher_service.update_status,
# which only accepts draft/confirmed/canceled (approved is read as confirmed).
VOUCHER_STATUSES = ("draft", "pending", "confirmed", "approved", "rejected", "canceled")

PAYMENT_METHODS = ("cash", "bank", "card")

PAYMENT_STATUSES = ("planned", "completed")

# issue: we issued it for a sale; receive: a supplier issued it for a purchase
TAX_INVOICE_TYPES = ("issue", "receive")

TAX_INVOICE_STATUSES = ("issued", "canceled")


class Account(db.Model):
    """Chart-of-accounts entry referenced by voucher lines."""
    __tablename__ = "accounts"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(16), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Account id={self.id} code={self.code!r} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "type": self.type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Voucher(db.Model):
    """
    Double-entry accounting record.

    At creation the positive line amounts (debit) equal the absolute negative
    line amounts (credit), and both equal `amount`.
    """
    __tablename__ = "vouchers"
    __table_args__ = (
        db.Index("ix_vouchers_type_status", "type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    date = db.Column(db.Date, nullable=False)
    type = db.Column(db.String(16), nullable=False)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=True, index=True)
    amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="draft")
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    partner = db.relationship("Partner", backref=db.backref("vouchers", lazy=True))

    def __repr__(self) -> str:
        return f"<Voucher id={self.id} code={self.code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "date": to_iso_date(self.date),
            "type": self.type,
            "partner_id": self.partner_id,
            "amount": self.amount,
            "status": self.status,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
        }


class VoucherItem(db.Model):
    """Voucher line. Positive amount = debit, negative amount = credit."""
    __tablename__ = "voucher_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id"), nullable=False, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)
    amount = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=True)

    account = db.relationship("Account")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "voucher_id": self.voucher_id,
            "account_id": self.account_id,
            "amount": self.amount,
            "description": self.description,
        }


class Payment(db.Model):
    """Money received from or paid to a partner, optionally tied to a transaction or voucher."""
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False)
    reference = db.Column(db.String(120), nullable=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    voucher_id = db.Column(db.Integer, db.ForeignKey("vouchers.id"), nullable=True, index=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    amount = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    partner = db.relationship("Partner")
    transaction = db.relationship("Transaction")
    voucher = db.relationship("Voucher")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "reference": self.reference,
            "transaction_id": self.transaction_id,
            "voucher_id": self.voucher_id,
            "partner_id": self.partner_id,
            "date": to_iso_date(self.date),
            "amount": self.amount,
            "method": self.method,
            "status": self.status,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
        }


class TaxInvoice(db.Model):
    """
    Tax invoice issued to a customer or received from a supplier.

    When linked to a transaction, the partner matches the transaction's and
    the type follows it (sale -> issue, purchase -> receive).
    """
    __tablename__ = "tax_invoices"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False, unique=True, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True, index=True)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    type = db.Column(db.String(16), nullable=False)
    net_amount = db.Column(db.Integer, nullable=False)
    tax_amount = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="issued")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    partner = db.relationship("Partner")
    transaction = db.relationship("Transaction")

    def __repr__(self) -> str:
        return f"<TaxInvoice id={self.id} code={self.code!r} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "transaction_id": self.transaction_id,
            "partner_id": self.partner_id,
            "date": to_iso_date(self.date),
            "type": self.type,
            "net_amount": self.net_amount,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
        }
