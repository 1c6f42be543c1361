from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FIXED = "FIXED"
DISCOUNT_TYPES = (DISCOUNT_PERCENTAGE, DISCOUNT_FIXED)

COUPON_SOURCE_MANUAL = "MANUAL"
COUPON_SOURCE_LOYALTY = "LOYALTY"

LOYALTY_EARN = "EARN"


class Customer(db.Model):
    """
    Customer master data for loyalty tracking.

    Profile management is external. This service only mutates the
    denormalized loyalty aggregates (loyalty_points, total_purchases) after a
    qualifying sale.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.CheckConstraint("loyalty_points >= 0", name="ck_customers_points_non_negative"),
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=False, default="")
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_purchases = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "loyalty_points": self.loyalty_points,
            "total_purchases": self.total_purchases,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class LoyaltyTransaction(db.Model):
    """
    Append-only ledger of loyalty point events.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "loyalty_transactions"
    __table_args__ = (
        db.Index("ix_loyalty_txns_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, default=LOYALTY_EARN)
    points = db.Column(db.Integer, nullable=False)
    balance_after = db.Column(db.Integer, nullable=False)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    reason = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    customer = db.relationship("Customer", backref=db.backref("loyalty_transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "transaction_type": self.transaction_type,
            "points": self.points,
            "balance_after": self.balance_after,
            "sale_id": self.sale_id,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class Coupon(db.Model):
    """
    Single-use discount coupon owned by a customer.

    discount_value semantics depend on discount_type:
    - PERCENTAGE: whole percent of (subtotal + tax), 1..100
    - FIXED: amount in cents, capped at (subtotal + tax) when applied

    is_used flips false -> true exactly once, guarded by a conditional UPDATE.
    Coupons are never deleted.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_coupons_code"),
        db.Index("ix_coupons_customer_used", "customer_id", "is_used"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(16), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    discount_type = db.Column(db.String(16), nullable=False, default=DISCOUNT_PERCENTAGE)
    discount_value = db.Column(db.Integer, nullable=False)

    expiry_date = db.Column(db.DateTime(timezone=True), nullable=False)

    is_used = db.Column(db.Boolean, nullable=False, default=False)
    # Plain integer: sales already reference coupons, avoid an FK cycle
    used_in_sale_id = db.Column(db.Integer, nullable=True, index=True)
    used_at = db.Column(db.DateTime(timezone=True), nullable=True)

    source = db.Column(db.String(16), nullable=False, default=COUPON_SOURCE_MANUAL)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("coupons", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "customer_id": self.customer_id,
            "customer_name": self.customer.full_name if self.customer else None,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "expiry_date": to_utc_z(self.expiry_date),
            "is_used": self.is_used,
            "used_in_sale_id": self.used_in_sale_id,
            "used_at": to_utc_z(self.used_at) if self.used_at else None,
            "source": self.source,
            "created_at": to_utc_z(self.created_at),
        }
