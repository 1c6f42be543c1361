# Overview: Service-layer operations for reporting; encapsulates business logic and database work.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import Product, Purchase, Sale
from ..models.purchases import PURCHASE_COMPLETED
from ..models.sales import SALE_COMPLETED
from ..time_utils import end_of_day_if_date, start_of_day, utcnow
from ..validation import optional_datetime


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    start_dt = optional_datetime(start, "start") if start else None
    end_dt = end_of_day_if_date(end, optional_datetime(end, "end")) if end else None
    return start_dt, end_dt


def _sale_totals(query) -> dict:
    count, revenue, profit, tax = query.with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.grand_total_cents), 0),
        func.coalesce(func.sum(Sale.total_profit_cents), 0),
        func.coalesce(func.sum(Sale.tax_cents), 0),
    ).one()
    return {
        "count": int(count or 0),
        "revenue_cents": int(revenue or 0),
        "profit_cents": int(profit or 0),
        "tax_cents": int(tax or 0),
    }


def sales_summary(*, start: str | None = None, end: str | None = None) -> dict:
    """Completed sales only; deleted sales are excluded from every figure."""
    start_dt, end_dt = _parse_range(start, end)

    base = db.session.query(Sale).filter(Sale.status == SALE_COMPLETED)
    ranged = base
    if start_dt:
        ranged = ranged.filter(Sale.created_at >= start_dt)
    if end_dt:
        ranged = ranged.filter(Sale.created_at <= end_dt)

    totals = _sale_totals(ranged)
    today = _sale_totals(base.filter(Sale.created_at >= start_of_day(utcnow())))

    return {
        "total_sales": totals["count"],
        "total_revenue_cents": totals["revenue_cents"],
        "total_profit_cents": totals["profit_cents"],
        "total_tax_cents": totals["tax_cents"],
        "today_sales": today["count"],
        "today_revenue_cents": today["revenue_cents"],
    }


def purchases_summary(*, start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    q = db.session.query(
        func.count(Purchase.id),
        func.coalesce(func.sum(Purchase.total_amount_cents), 0),
    ).filter(Purchase.status == PURCHASE_COMPLETED)
    if start_dt:
        q = q.filter(Purchase.purchase_date >= start_dt)
    if end_dt:
        q = q.filter(Purchase.purchase_date <= end_dt)

    count, total = q.one()
    return {
        "total_purchases": int(count or 0),
        "total_cost_cents": int(total or 0),
    }


def inventory_summary() -> dict:
    active = db.session.query(Product).filter(Product.is_active.is_(True))

    product_count = active.count()
    low_stock = active.filter(Product.current_stock <= Product.minimum_stock_level).count()
    stock_value = (
        active.with_entities(
            func.coalesce(func.sum(Product.current_stock * Product.cost_price_cents), 0)
        ).scalar()
    )
    units = active.with_entities(func.coalesce(func.sum(Product.current_stock), 0)).scalar()

    return {
        "active_products": product_count,
        "low_stock_products": low_stock,
        "units_on_hand": int(units or 0),
        "stock_value_cents": int(stock_value or 0),
    }
