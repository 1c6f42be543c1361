# Overview: Service-layer operations for sales; encapsulates business logic and database work.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import or_

from ..errors import InvalidState, NotFound, OutOfStock, ValidationError
from ..extensions import db
from ..models import Customer, Product, Sale, SaleLine
from ..models.inventory import REF_SALE, REF_SALE_DELETE, REF_SALE_UPDATE
from ..models.sales import PAYMENT_METHODS, SALE_COMPLETED, SALE_DELETED
from ..money import tax_for
from ..time_utils import end_of_day_if_date, utcnow
from ..validation import (
    LineInput,
    normalize_choice,
    optional_datetime,
    optional_int,
    parse_line_items,
)
from . import coupon_service, loyalty_service
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_invoice_number
from .pagination import paginate
from .stock_ledger_service import StockDelta, apply_deltas, lock_products
"""
Sale Lifecycle (authoritative)

create_sale():
- One transaction: invoice number, STOCK_OUT entries, snapshot lines and the
  coupon redemption commit together or not at all.
- Loyalty is credited afterwards in its own transaction. A loyalty failure is
  reported as a warning; the sale stands.

update_sale():
- COMPLETED sales only. Stock moves by the net per-product change, tagged
  SALE_UPDATE. Coupon and loyalty effects are not re-run.

delete_sale():
- COMPLETED -> DELETED with compensating STOCK_IN entries (SALE_DELETE).
- Loyalty points and coupon usage are kept.
"""

LOYALTY_WARNING = "Loyalty points could not be credited for this sale"


@dataclass
class SaleResult:
    sale: Sale
    warnings: list[str] = field(default_factory=list)


def _clean_name(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("customer_name must be a string")
    return value.strip() or None


def _load_active_products(product_ids: list[int]) -> dict[int, Product]:
    products = lock_products(sorted(set(product_ids)))

    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise NotFound("Product not found", details={"product_ids": missing})

    inactive = [pid for pid in product_ids if not products[pid].is_active]
    if inactive:
        raise ValidationError("Product is inactive", details={"product_ids": inactive})

    return products


def _raise_if_out_of_stock(needed: dict[int, int], products: dict[int, Product]) -> None:
    offending = [
        {
            "product_id": pid,
            "product_name": products[pid].name,
            "requested": qty,
            "available": products[pid].current_stock,
        }
        for pid, qty in needed.items()
        if qty > products[pid].current_stock
    ]
    if offending:
        raise OutOfStock("Insufficient stock for one or more items", details={"items": offending})


def _totals(lines: list[SaleLine], discount_cents: int) -> dict:
    subtotal = sum(line.line_total_cents for line in lines)
    total_cost = sum(line.cost_price_cents * line.quantity for line in lines)
    tax = tax_for(subtotal)
    discount = min(discount_cents, subtotal + tax)
    grand_total = subtotal + tax - discount
    return {
        "subtotal_cents": subtotal,
        "tax_cents": tax,
        "discount_cents": discount,
        "grand_total_cents": grand_total,
        "total_cost_cents": total_cost,
        # Tax is collected on behalf of the authority, not earned.
        "total_profit_cents": grand_total - tax - total_cost,
    }


def _snapshot_line(item: LineInput, product: Product) -> SaleLine:
    return SaleLine(
        product_id=product.id,
        product_name=product.name,
        quantity=item.quantity,
        unit_price_cents=product.selling_price_cents,
        cost_price_cents=product.cost_price_cents,
        line_total_cents=item.quantity * product.selling_price_cents,
    )


def create_sale(
    *,
    items,
    payment_method,
    customer_id=None,
    customer_name=None,
    coupon_code=None,
    actor_user_id: int | None = None,
) -> SaleResult:
    """
    Record a completed sale.

    Raises:
        ValidationError: malformed items, unknown payment method, no customer
            reference, inactive product
        NotFound: unknown product or customer
        OutOfStock: any line exceeds current stock (all offenders listed)
        InvalidCoupon (and subclasses): coupon cannot be applied
    """
    lines_in = parse_line_items(items)
    method = normalize_choice(payment_method, PAYMENT_METHODS, "payment_method")
    customer_id = optional_int(customer_id, "customer_id")
    name = _clean_name(customer_name)
    if customer_id is None and name is None:
        raise ValidationError("customer_id or customer_name is required")
    code = coupon_service.normalize_code(coupon_code) if coupon_code not in (None, "") else None

    def _op():
        begin_write()

        customer = None
        if customer_id is not None:
            customer = db.session.get(Customer, customer_id)
            if customer is None:
                raise NotFound("Customer not found", details={"customer_id": customer_id})

        products = _load_active_products([item.product_id for item in lines_in])
        _raise_if_out_of_stock({item.product_id: item.quantity for item in lines_in}, products)

        sale_lines = [_snapshot_line(item, products[item.product_id]) for item in lines_in]
        subtotal = sum(line.line_total_cents for line in sale_lines)

        coupon = None
        discount = 0
        if code:
            coupon = coupon_service.validate_and_reserve(code, customer_id=customer_id)
            discount = coupon_service.compute_discount(coupon, subtotal + tax_for(subtotal))
            if customer is None and coupon.customer_id is not None:
                customer = coupon.customer

        sale = Sale(
            invoice_number=next_invoice_number(),
            status=SALE_COMPLETED,
            customer_id=customer.id if customer else None,
            customer_name=name or (customer.full_name if customer else None),
            payment_method=method,
            coupon_id=coupon.id if coupon else None,
            created_by_user_id=actor_user_id,
            **_totals(sale_lines, discount),
        )
        db.session.add(sale)
        db.session.flush()

        apply_deltas(
            [
                StockDelta(
                    product_id=line.product_id,
                    quantity_delta=-line.quantity,
                    note=f"Sale {sale.invoice_number}",
                    actor_user_id=actor_user_id,
                    reference_type=REF_SALE,
                    reference_id=sale.id,
                )
                for line in sale_lines
            ],
            require_active=True,
        )
        sale.lines.extend(sale_lines)

        if coupon is not None:
            coupon_service.redeem(coupon.id, sale.id)

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info(
        "Sale %s recorded: %d line(s), grand total %d cents",
        sale.invoice_number, len(sale.lines), sale.grand_total_cents,
    )

    warnings = []
    if sale.customer_id is not None:
        try:
            loyalty_service.credit(sale.customer_id, sale.grand_total_cents, sale.id)
        except Exception:
            current_app.logger.warning("Loyalty credit failed for sale %s", sale.invoice_number, exc_info=True)
            warnings.append(LOYALTY_WARNING)

    return SaleResult(sale=sale, warnings=warnings)


def _locked_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    if sale.status != SALE_COMPLETED:
        raise InvalidState(
            "Only completed sales can be changed",
            details={"sale_id": sale_id, "status": sale.status},
        )
    return sale


def update_sale(
    sale_id: int,
    *,
    items,
    customer_name=None,
    payment_method=None,
    actor_user_id: int | None = None,
) -> Sale:
    """
    Replace a completed sale's lines.

    Existing products keep the price they were sold at; newly added products
    take the live price. The discount amount is kept, clamped to the new
    subtotal + tax.
    """
    lines_in = parse_line_items(items)
    method = normalize_choice(payment_method, PAYMENT_METHODS, "payment_method") if payment_method is not None else None
    name = _clean_name(customer_name)

    def _op():
        begin_write()
        sale = _locked_sale(sale_id)

        old_lines = {line.product_id: line for line in sale.lines}
        old_qty: dict[int, int] = {}
        for line in sale.lines:
            old_qty[line.product_id] = old_qty.get(line.product_id, 0) + line.quantity
        new_qty = {item.product_id: item.quantity for item in lines_in}

        products = lock_products(sorted(set(old_qty) | set(new_qty)))
        missing = [pid for pid in new_qty if pid not in products]
        if missing:
            raise NotFound("Product not found", details={"product_ids": missing})

        increases = {
            pid: new_qty[pid] - old_qty.get(pid, 0)
            for pid in new_qty
            if new_qty[pid] > old_qty.get(pid, 0)
        }
        inactive = [pid for pid in increases if not products[pid].is_active]
        if inactive:
            raise ValidationError("Product is inactive", details={"product_ids": inactive})
        _raise_if_out_of_stock(increases, products)

        new_lines = []
        for item in lines_in:
            previous = old_lines.get(item.product_id)
            if previous is None:
                new_lines.append(_snapshot_line(item, products[item.product_id]))
                continue
            new_lines.append(SaleLine(
                product_id=previous.product_id,
                product_name=previous.product_name,
                quantity=item.quantity,
                unit_price_cents=previous.unit_price_cents,
                cost_price_cents=previous.cost_price_cents,
                line_total_cents=item.quantity * previous.unit_price_cents,
            ))

        deltas = [
            StockDelta(
                product_id=pid,
                quantity_delta=old_qty.get(pid, 0) - new_qty.get(pid, 0),
                note=f"Sale {sale.invoice_number} updated",
                actor_user_id=actor_user_id,
                reference_type=REF_SALE_UPDATE,
                reference_id=sale.id,
            )
            for pid in sorted(set(old_qty) | set(new_qty))
            if old_qty.get(pid, 0) != new_qty.get(pid, 0)
        ]
        if deltas:
            # Returns to stock are allowed for products deactivated since the sale.
            apply_deltas(deltas, require_active=False)

        sale.lines = new_lines
        for key, value in _totals(new_lines, sale.discount_cents).items():
            setattr(sale, key, value)
        if method is not None:
            sale.payment_method = method
        if name is not None:
            sale.customer_name = name

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s updated", sale.invoice_number)
    return sale


def delete_sale(sale_id: int, *, actor_user_id: int | None = None) -> Sale:
    """Soft delete with stock returned; loyalty points and coupon usage are kept."""

    def _op():
        begin_write()
        sale = _locked_sale(sale_id)

        deltas = [
            StockDelta(
                product_id=line.product_id,
                quantity_delta=line.quantity,
                note=f"Sale {sale.invoice_number} deleted",
                actor_user_id=actor_user_id,
                reference_type=REF_SALE_DELETE,
                reference_id=sale.id,
            )
            for line in sale.lines
        ]
        if deltas:
            apply_deltas(deltas, require_active=False)

        sale.status = SALE_DELETED
        sale.deleted_by_user_id = actor_user_id
        sale.deleted_at = utcnow()

        db.session.commit()
        return sale

    sale = run_with_retry(_op)
    current_app.logger.info("Sale %s deleted; stock returned", sale.invoice_number)
    return sale


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFound("Sale not found", details={"sale_id": sale_id})
    return sale


def list_sales(
    *,
    page: int = 1,
    per_page: int = 20,
    search: str | None = None,
    start: str | None = None,
    end: str | None = None,
    include_deleted: bool = False,
) -> dict:
    start_dt = optional_datetime(start, "start") if start else None
    end_dt = end_of_day_if_date(end, optional_datetime(end, "end")) if end else None

    q = db.session.query(Sale)
    if not include_deleted:
        q = q.filter(Sale.status == SALE_COMPLETED)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Sale.invoice_number.ilike(like), Sale.customer_name.ilike(like)))
    if start_dt:
        q = q.filter(Sale.created_at >= start_dt)
    if end_dt:
        q = q.filter(Sale.created_at <= end_dt)

    q = q.order_by(Sale.created_at.desc(), Sale.id.desc())
    rows, pagination = paginate(q, page, per_page)
    return {"items": [s.to_dict() for s in rows], "pagination": pagination}
