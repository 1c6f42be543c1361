from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


TYPE_STOCK_IN = "STOCK_IN"
TYPE_STOCK_OUT = "STOCK_OUT"
TRANSACTION_TYPES = (TYPE_STOCK_IN, TYPE_STOCK_OUT)

REF_MANUAL = "MANUAL"
REF_SALE = "SALE"
REF_SALE_UPDATE = "SALE_UPDATE"
REF_SALE_DELETE = "SALE_DELETE"
REF_PURCHASE = "PURCHASE"
REF_PURCHASE_REVERSAL = "PURCHASE_REVERSAL"


class StockTransaction(db.Model):
    """
    Append-only stock ledger entry.

    IMMUTABLE: rows are never updated or deleted. Reversals are new rows of
    the opposite type that point at the same originating document.

    quantity is always positive; the direction lives in `type`.
    balance_after is the product's current_stock right after this entry.
    """
    __tablename__ = "stock_transactions"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_stock_tx_quantity_positive"),
        db.Index("ix_stock_tx_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_tx_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=False, default=REF_MANUAL)
    reference_id = db.Column(db.Integer, nullable=True)

    note = db.Column(db.String(255), nullable=True)
    actor_user_id = db.Column(db.Integer, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("stock_transactions", lazy="dynamic"))

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.type == TYPE_STOCK_IN else -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "signed_quantity": self.signed_quantity,
            "balance_after": self.balance_after,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "note": self.note,
            "actor_user_id": self.actor_user_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
