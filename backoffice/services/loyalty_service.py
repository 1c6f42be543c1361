# Overview: Service-layer operations for loyalty accrual; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..errors import NotFound
from ..extensions import db
from ..models import Coupon, Customer, LoyaltyTransaction, Sale
from ..models.customers import COUPON_SOURCE_LOYALTY, DISCOUNT_PERCENTAGE, LOYALTY_EARN
from ..time_utils import utcnow
from . import coupon_service
from .concurrency import begin_write, lock_for_update, run_with_retry


@dataclass
class LoyaltyResult:
    points: int = 0
    balance: int = 0
    coupons: list[Coupon] = field(default_factory=list)


def points_for(grand_total_cents: int) -> int:
    """Whole points only; the fractional remainder is not carried over."""
    cents_per_point = current_app.config.get("LOYALTY_CENTS_PER_POINT", 10_000)
    return max(grand_total_cents, 0) // cents_per_point


def coupons_crossed(old_points: int, new_points: int) -> int:
    threshold = current_app.config.get("LOYALTY_COUPON_THRESHOLD", 500)
    if threshold <= 0:
        return 0
    return new_points // threshold - old_points // threshold


def credit(customer_id: int | None, sale_grand_total_cents: int, sale_id: int | None = None) -> LoyaltyResult:
    """
    Credit points for a completed sale and mint threshold coupons.

    Points are cumulative; one coupon is minted per threshold multiple
    crossed by this credit. Runs in its own transaction after the sale has
    committed. Errors propagate; the sale flow turns them into warnings.
    """
    if customer_id is None:
        return LoyaltyResult()

    percent = current_app.config.get("LOYALTY_COUPON_PERCENT", 5)
    expiry_days = current_app.config.get("LOYALTY_COUPON_EXPIRY_DAYS", 30)

    def _op():
        begin_write()
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFound("Customer not found", details={"customer_id": customer_id})

        points = points_for(sale_grand_total_cents)
        old_balance = customer.loyalty_points
        new_balance = old_balance + points

        customer.loyalty_points = new_balance
        customer.total_purchases = (customer.total_purchases or 0) + 1

        if points > 0:
            db.session.add(LoyaltyTransaction(
                customer_id=customer.id,
                transaction_type=LOYALTY_EARN,
                points=points,
                balance_after=new_balance,
                sale_id=sale_id,
                reason="Sale" if sale_id is None else f"Sale #{sale_id}",
                occurred_at=utcnow(),
            ))

        if sale_id is not None:
            sale = db.session.get(Sale, sale_id)
            if sale is not None:
                sale.points_earned = points

        coupons = [
            coupon_service.generate(
                customer_id=customer.id,
                discount_type=DISCOUNT_PERCENTAGE,
                discount_value=percent,
                expiry_days=expiry_days,
                source=COUPON_SOURCE_LOYALTY,
                commit=False,
            )
            for _ in range(coupons_crossed(old_balance, new_balance))
        ]

        db.session.commit()
        return LoyaltyResult(points=points, balance=new_balance, coupons=coupons)

    result = run_with_retry(_op)
    for coupon in result.coupons:
        current_app.logger.info(
            "Loyalty coupon %s minted for customer %s at %s points",
            coupon.code, customer_id, result.balance,
        )
    return result


def history(customer_id: int) -> list[LoyaltyTransaction]:
    if db.session.get(Customer, customer_id) is None:
        raise NotFound("Customer not found", details={"customer_id": customer_id})
    return (
        db.session.query(LoyaltyTransaction)
        .filter_by(customer_id=customer_id)
        .order_by(LoyaltyTransaction.occurred_at.desc(), LoyaltyTransaction.id.desc())
        .all()
    )
