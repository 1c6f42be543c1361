# Overview: Service-layer operations for supplier purchases; encapsulates business logic and database work.

from __future__ import annotations

from flask import current_app

from ..errors import InsufficientStock, InvalidState, NotFound, ReversalConflict, ValidationError
from ..extensions import db
from ..models import Purchase, PurchaseLine, Supplier
from ..models.inventory import REF_PURCHASE, REF_PURCHASE_REVERSAL
from ..models.purchases import PURCHASE_COMPLETED, PURCHASE_REVERSED
from ..time_utils import end_of_day_if_date, utcnow
from ..validation import optional_datetime, optional_int, parse_line_items, require_positive_int
from .concurrency import begin_write, lock_for_update, run_with_retry
from .document_service import next_purchase_number
from .pagination import paginate
from .stock_ledger_service import StockDelta, apply_deltas, lock_products


def _active_supplier(supplier_id: int) -> Supplier:
    supplier = db.session.get(Supplier, supplier_id)
    if supplier is None:
        raise NotFound("Supplier not found", details={"supplier_id": supplier_id})
    if not supplier.is_active:
        raise ValidationError("Supplier is inactive", details={"supplier_id": supplier_id})
    return supplier


def create_purchase(
    *,
    supplier_id,
    items,
    notes: str | None = None,
    purchase_date=None,
    actor_user_id: int | None = None,
) -> Purchase:
    """
    Receive goods from a supplier.

    Every line becomes a STOCK_IN entry tagged with the purchase and the
    product's cost price is replaced by the purchase cost.
    """
    supplier_id = require_positive_int(supplier_id, "supplier_id")
    lines_in = parse_line_items(items, with_cost=True)
    received_at = optional_datetime(purchase_date, "purchase_date") or utcnow()
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")

    def _op():
        begin_write()
        supplier = _active_supplier(supplier_id)

        product_ids = [item.product_id for item in lines_in]
        products = lock_products(sorted(product_ids))
        missing = [pid for pid in product_ids if pid not in products]
        if missing:
            raise NotFound("Product not found", details={"product_ids": missing})
        inactive = [pid for pid in product_ids if not products[pid].is_active]
        if inactive:
            raise ValidationError("Product is inactive", details={"product_ids": inactive})

        purchase = Purchase(
            purchase_number=next_purchase_number(),
            supplier_id=supplier.id,
            status=PURCHASE_COMPLETED,
            total_amount_cents=sum(item.quantity * item.cost_price_cents for item in lines_in),
            notes=(notes or "").strip() or None,
            purchase_date=received_at,
            created_by_user_id=actor_user_id,
        )
        db.session.add(purchase)
        db.session.flush()

        apply_deltas(
            [
                StockDelta(
                    product_id=item.product_id,
                    quantity_delta=item.quantity,
                    note=f"Purchase {purchase.purchase_number}",
                    actor_user_id=actor_user_id,
                    reference_type=REF_PURCHASE,
                    reference_id=purchase.id,
                )
                for item in lines_in
            ],
            require_active=True,
        )

        for item in lines_in:
            product = products[item.product_id]
            purchase.lines.append(PurchaseLine(
                product_id=product.id,
                product_name=product.name,
                quantity=item.quantity,
                cost_price_cents=item.cost_price_cents,
                line_total_cents=item.quantity * item.cost_price_cents,
            ))
            product.cost_price_cents = item.cost_price_cents

        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    current_app.logger.info(
        "Purchase %s received from supplier %s: %d cents",
        purchase.purchase_number, purchase.supplier_id, purchase.total_amount_cents,
    )
    return purchase


def delete_purchase(purchase_id: int, *, actor_user_id: int | None = None) -> Purchase:
    """
    Reverse a completed purchase with compensating STOCK_OUT entries.

    If any product no longer holds the received quantity, nothing changes and
    ReversalConflict lists the offending items.
    """

    def _op():
        begin_write()
        purchase = lock_for_update(db.session.query(Purchase).filter_by(id=purchase_id)).first()
        if purchase is None:
            raise NotFound("Purchase not found", details={"purchase_id": purchase_id})
        if purchase.status != PURCHASE_COMPLETED:
            raise InvalidState(
                "Purchase has already been reversed",
                details={"purchase_id": purchase_id, "status": purchase.status},
            )

        deltas = [
            StockDelta(
                product_id=line.product_id,
                quantity_delta=-line.quantity,
                note=f"Purchase {purchase.purchase_number} reversed",
                actor_user_id=actor_user_id,
                reference_type=REF_PURCHASE_REVERSAL,
                reference_id=purchase.id,
            )
            for line in purchase.lines
        ]
        try:
            apply_deltas(deltas, require_active=False)
        except InsufficientStock as exc:
            current_app.logger.warning(
                "Reversal of purchase %s blocked: stock already consumed",
                purchase.purchase_number,
            )
            raise ReversalConflict(
                "Purchased stock has already been consumed; purchase cannot be reversed",
                details=exc.details,
            ) from exc

        purchase.status = PURCHASE_REVERSED
        purchase.reversed_by_user_id = actor_user_id
        purchase.reversed_at = utcnow()

        db.session.commit()
        return purchase

    purchase = run_with_retry(_op)
    current_app.logger.info("Purchase %s reversed", purchase.purchase_number)
    return purchase


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.get(Purchase, purchase_id)
    if purchase is None:
        raise NotFound("Purchase not found", details={"purchase_id": purchase_id})
    return purchase


def list_purchases(
    *,
    page: int = 1,
    per_page: int = 20,
    supplier_id=None,
    start: str | None = None,
    end: str | None = None,
    include_reversed: bool = True,
) -> dict:
    supplier_id = optional_int(supplier_id, "supplier_id")
    start_dt = optional_datetime(start, "start") if start else None
    end_dt = end_of_day_if_date(end, optional_datetime(end, "end")) if end else None

    q = db.session.query(Purchase)
    if supplier_id is not None:
        q = q.filter(Purchase.supplier_id == supplier_id)
    if not include_reversed:
        q = q.filter(Purchase.status == PURCHASE_COMPLETED)
    if start_dt:
        q = q.filter(Purchase.purchase_date >= start_dt)
    if end_dt:
        q = q.filter(Purchase.purchase_date <= end_dt)

    q = q.order_by(Purchase.purchase_date.desc(), Purchase.id.desc())
    rows, pagination = paginate(q, page, per_page)
    return {"items": [p.to_dict() for p in rows], "pagination": pagination}
