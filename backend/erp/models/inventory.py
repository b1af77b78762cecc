from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_utc_z, utcnow


HISTORY_TYPES = ("purchase", "sale", "sale_cancel", "adjustment")


class InventoryRecord(db.Model):
    """
    Current on-hand quantity for one item.

    Invariant: quantity equals the sum of InventoryHistoryEntry.change for the
    item. Rows are created lazily on the first adjustment and never deleted.
    An absent row reads as zero.

    version_id guards read-modify-write on databases without SELECT ... FOR UPDATE
    semantics; a stale write raises StaleDataError and the unit of work is retried.
    """
    __tablename__ = "inventory"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, unique=True, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    item = db.relationship("Item", backref=db.backref("inventory_record", uselist=False, lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<InventoryRecord item_id={self.item_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryHistoryEntry(db.Model):
    """
    Append-only audit of quantity changes.

    quantity_after == quantity_before + change, and quantity_after is the
    InventoryRecord quantity right after the write that produced the entry.
    No updates, no deletes.
    """
    __tablename__ = "inventory_history"
    __table_args__ = (
        db.Index("ix_invhist_item_created", "item_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False)

    # Not a foreign key: the source transaction may be deleted while its history stays.
    transaction_id = db.Column(db.Integer, nullable=True, index=True)

    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    change = db.Column(db.Integer, nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<InventoryHistoryEntry item_id={self.item_id} type={self.transaction_type} "
            f"{self.quantity_before}->{self.quantity_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "transaction_type": self.transaction_type,
            "transaction_id": self.transaction_id,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "change": self.change,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "created_by": self.created_by,
        }
