from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_iso_date, to_utc_z


TRANSACTION_TYPES = ("sale", "purchase")

TRANSACTION_STATUSES = ("pending", "completed", "partial", "canceled", "unpaid")


class Transaction(db.Model):
    """
    Sale or purchase document (not a database transaction).

    Owns its TransactionItem rows exclusively: every update replaces the whole
    set, and delete removes the items before the header.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_type_status", "type", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)
    type = db.Column(db.String(16), nullable=False)
    partner_id = db.Column(db.Integer, db.ForeignKey("partners.id"), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="pending")
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    tax_amount = db.Column(db.Integer, nullable=True, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    partner = db.relationship("Partner", backref=db.backref("transactions", lazy=True))

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} code={self.code!r} type={self.type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "partner_id": self.partner_id,
            "date": to_iso_date(self.date),
            "status": self.status,
            "total_amount": self.total_amount,
            "tax_amount": self.tax_amount,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
        }


class TransactionItem(db.Model):
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Integer, nullable=False)

    # quantity * unit_price
    amount = db.Column(db.Integer, nullable=False)

    tax_amount = db.Column(db.Integer, nullable=True, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=True)
    description = db.Column(db.String(255), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "amount": self.amount,
            "tax_amount": self.tax_amount,
            "tax_rate_bps": self.tax_rate_bps,
            "description": self.description,
        }


class DocumentSequence(db.Model):
    """
    Per document type counter for generated codes (S-000001, P-000001).

    WHY: Codes are unique; allocating them from a locked counter row avoids
    two concurrent postings choosing the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
