# Overview: Service-layer operations for coupons; encapsulates business logic and database work.

from __future__ import annotations

import secrets
import string

from flask import current_app
from sqlalchemy import update

from ..errors import (
    ConflictError,
    CouponAlreadyUsed,
    CouponExpired,
    CouponNotFound,
    InvalidCoupon,
    NotFound,
    ValidationError,
)
from ..extensions import db
from ..models import Coupon, Customer
from ..models.customers import (
    COUPON_SOURCE_LOYALTY,
    COUPON_SOURCE_MANUAL,
    DISCOUNT_FIXED,
    DISCOUNT_PERCENTAGE,
    DISCOUNT_TYPES,
)
from ..money import percent_of
from ..time_utils import as_naive_utc, days_from_now, utcnow
from ..validation import MAX_PRICE_CENTS, normalize_choice, require_positive_int
from .concurrency import lock_for_update, run_with_retry


CODE_PREFIX = "CPN-"
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6

COUPON_SOURCES = (COUPON_SOURCE_MANUAL, COUPON_SOURCE_LOYALTY)


def generate_code() -> str:
    return CODE_PREFIX + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def normalize_code(code) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("coupon_code is required")
    return code.strip().upper()


def _validate_terms(discount_type, discount_value, expiry_days) -> tuple[str, int, int]:
    dtype = normalize_choice(discount_type, DISCOUNT_TYPES, "discount_type")
    if dtype == DISCOUNT_PERCENTAGE:
        value = require_positive_int(discount_value, "discount_value", maximum=100)
    else:
        value = require_positive_int(discount_value, "discount_value", maximum=MAX_PRICE_CENTS)
    days = require_positive_int(expiry_days, "expiry_days")
    return dtype, value, days


def _unique_code() -> str:
    attempts = current_app.config.get("COUPON_CODE_ATTEMPTS", 10)
    for _ in range(attempts):
        code = generate_code()
        if db.session.query(Coupon.id).filter_by(code=code).first() is None:
            return code
    raise ConflictError("Could not allocate a unique coupon code")


def _insert_coupon(*, customer_id: int, dtype: str, value: int, days: int, source: str) -> Coupon:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFound("Customer not found", details={"customer_id": customer_id})

    coupon = Coupon(
        code=_unique_code(),
        customer_id=customer.id,
        discount_type=dtype,
        discount_value=value,
        expiry_date=days_from_now(days),
        is_used=False,
        source=source,
    )
    db.session.add(coupon)
    db.session.flush()
    return coupon


def generate(
    *,
    customer_id: int,
    discount_type: str = DISCOUNT_PERCENTAGE,
    discount_value=5,
    expiry_days=30,
    source: str = COUPON_SOURCE_MANUAL,
    commit: bool = True,
) -> Coupon:
    """
    Mint a coupon for a customer.

    PERCENTAGE values are whole percents (1..100); FIXED values are cents.
    With commit=False the coupon joins the caller's transaction (loyalty
    minting); otherwise it is committed here.
    """
    dtype, value, days = _validate_terms(discount_type, discount_value, expiry_days)
    if source not in COUPON_SOURCES:
        raise ValidationError(f"source must be one of: {', '.join(COUPON_SOURCES)}")

    if not commit:
        return _insert_coupon(customer_id=customer_id, dtype=dtype, value=value, days=days, source=source)

    def _op():
        coupon = _insert_coupon(customer_id=customer_id, dtype=dtype, value=value, days=days, source=source)
        db.session.commit()
        return coupon

    coupon = run_with_retry(_op)
    current_app.logger.info(
        "Coupon %s generated for customer %s (%s %s)",
        coupon.code, coupon.customer_id, coupon.discount_type, coupon.discount_value,
    )
    return coupon


def _check_usable(coupon: Coupon) -> None:
    # Used wins over expired: a redeemed coupon always reports as used.
    if coupon.is_used:
        raise CouponAlreadyUsed("Coupon has already been used", details={"code": coupon.code})
    if as_naive_utc(coupon.expiry_date) < utcnow():
        raise CouponExpired("Coupon has expired", details={"code": coupon.code})


def validate(code) -> Coupon:
    """Read-only check that a coupon exists and can still be redeemed."""
    normalized = normalize_code(code)
    coupon = db.session.query(Coupon).filter_by(code=normalized).first()
    if coupon is None:
        raise CouponNotFound("Coupon not found", details={"code": normalized})
    _check_usable(coupon)
    return coupon


def validate_and_reserve(code, customer_id: int | None = None) -> Coupon:
    """
    Lock a coupon row for the caller's transaction and check it is usable by
    this customer. Does not mark it used; see redeem().
    """
    normalized = normalize_code(code)
    coupon = lock_for_update(db.session.query(Coupon).filter_by(code=normalized)).first()
    if coupon is None:
        raise CouponNotFound("Coupon not found", details={"code": normalized})
    _check_usable(coupon)

    if customer_id is not None and coupon.customer_id is not None and coupon.customer_id != customer_id:
        raise InvalidCoupon(
            "Coupon belongs to a different customer",
            details={"code": normalized},
        )
    return coupon


def compute_discount(coupon: Coupon, gross_cents: int) -> int:
    """Discount against subtotal + tax; never exceeds it."""
    if gross_cents <= 0:
        return 0
    if coupon.discount_type == DISCOUNT_FIXED:
        return min(coupon.discount_value, gross_cents)
    return min(percent_of(gross_cents, coupon.discount_value), gross_cents)


def redeem(coupon_id: int, sale_id: int) -> None:
    """
    Flip is_used false -> true exactly once.

    The conditional UPDATE is the arbiter: of two concurrent redeemers only
    one sees rowcount == 1. Runs inside the caller's transaction.
    """
    stmt = (
        update(Coupon)
        .where(Coupon.id == coupon_id, Coupon.is_used.is_(False))
        .values(is_used=True, used_in_sale_id=sale_id, used_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise CouponAlreadyUsed("Coupon has already been used", details={"coupon_id": coupon_id})

    coupon = db.session.get(Coupon, coupon_id)
    if coupon is not None:
        db.session.expire(coupon)


def list_customer_coupons(customer_id: int, *, include_used: bool = True) -> list[Coupon]:
    if db.session.get(Customer, customer_id) is None:
        raise NotFound("Customer not found", details={"customer_id": customer_id})

    q = db.session.query(Coupon).filter(Coupon.customer_id == customer_id)
    if not include_used:
        q = q.filter(Coupon.is_used.is_(False))
    return q.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()
