# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

# backoffice/services/stock_ledger_service.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import case, func

from ..errors import InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import Product, StockTransaction
from ..models.inventory import (
    REF_MANUAL,
    TRANSACTION_TYPES,
    TYPE_STOCK_IN,
    TYPE_STOCK_OUT,
)
from ..time_utils import utcnow
from ..validation import normalize_choice, require_positive_int
from .catalog_service import get_product
from .concurrency import begin_write, lock_for_update, run_with_retry
from .pagination import paginate
"""
Stock Ledger Invariants (authoritative)

Ledger model:
- StockTransaction rows are append-only; nothing updates or deletes them.
- Product.current_stock is the running counter; every change to it is paired
  with exactly one appended StockTransaction carrying balance_after.
- For every product: current_stock == SUM(STOCK_IN) - SUM(STOCK_OUT).

Business invariants:
- current_stock may never go negative.
- A batch of deltas is validated in full against balances read under lock
  before anything is written; one failing delta rejects the whole batch.
- Stock-in has no upper bound.

Concurrency:
- Affected product rows are locked in ascending id order (no deadlock cycles).
- Product.version_id turns a lost race into StaleDataError, which
  run_with_retry() replays from a fresh read.

Transactions:
- apply_deltas() never commits. Sale/purchase flows call it inside their own
  transaction so stock, documents and coupons commit or roll back together.
- stock_in()/stock_out() are standalone manual entries and commit themselves.
"""

@dataclass(frozen=True)
class StockDelta:
    product_id: int
    quantity_delta: int
    note: str | None = None
    actor_user_id: int | None = None
    reference_type: str = REF_MANUAL
    reference_id: int | None = None


@dataclass
class LedgerPosting:
    transactions: list[StockTransaction] = field(default_factory=list)
    balances: dict[int, int] = field(default_factory=dict)


def lock_products(product_ids: list[int]) -> dict[int, Product]:
    query = (
        db.session.query(Product)
        .filter(Product.id.in_(product_ids))
        .order_by(Product.id.asc())
    )
    products = lock_for_update(query).all()
    return {p.id: p for p in products}


def _find_shortfalls(deltas: list[StockDelta], products: dict[int, Product]) -> list[dict]:
    running = {pid: p.current_stock for pid, p in products.items()}
    lowest = dict(running)
    requested: dict[int, int] = {}

    for delta in deltas:
        pid = delta.product_id
        running[pid] += delta.quantity_delta
        lowest[pid] = min(lowest[pid], running[pid])
        if delta.quantity_delta < 0:
            requested[pid] = requested.get(pid, 0) - delta.quantity_delta

    shortfalls = []
    for pid in sorted(lowest):
        if lowest[pid] < 0:
            product = products[pid]
            shortfalls.append({
                "product_id": pid,
                "product_name": product.name,
                "available": product.current_stock,
                "requested": requested.get(pid, 0),
            })
    return shortfalls


def apply_deltas(
    deltas: list[StockDelta],
    *,
    require_active: bool = True,
    occurred_at: datetime | None = None,
) -> LedgerPosting:
    """
    Apply a batch of signed stock changes all-or-nothing.

    Must run inside the caller's transaction (see module notes); flushes but
    does not commit.

    Raises:
        ValidationError: empty batch, zero delta, or inactive product
            (when require_active)
        NotFound: unknown product id
        InsufficientStock: any product would go below zero
    """
    if not deltas:
        raise ValidationError("No stock changes to apply")
    for delta in deltas:
        if isinstance(delta.quantity_delta, bool) or not isinstance(delta.quantity_delta, int):
            raise ValidationError("quantity must be an integer")
        if delta.quantity_delta == 0:
            raise ValidationError("quantity must be non-zero", details={"product_id": delta.product_id})

    product_ids = sorted({d.product_id for d in deltas})
    products = lock_products(product_ids)

    missing = [pid for pid in product_ids if pid not in products]
    if missing:
        raise NotFound("Product not found", details={"product_ids": missing})

    if require_active:
        inactive = [pid for pid in product_ids if not products[pid].is_active]
        if inactive:
            raise ValidationError("Product is inactive", details={"product_ids": inactive})

    shortfalls = _find_shortfalls(deltas, products)
    if shortfalls:
        raise InsufficientStock("Insufficient stock", details={"items": shortfalls})

    when = occurred_at or utcnow()
    posting = LedgerPosting()
    for delta in deltas:
        product = products[delta.product_id]
        product.current_stock = product.current_stock + delta.quantity_delta

        tx = StockTransaction(
            product_id=product.id,
            type=TYPE_STOCK_IN if delta.quantity_delta > 0 else TYPE_STOCK_OUT,
            quantity=abs(delta.quantity_delta),
            balance_after=product.current_stock,
            reference_type=delta.reference_type,
            reference_id=delta.reference_id,
            note=delta.note,
            actor_user_id=delta.actor_user_id,
            occurred_at=when,
        )
        db.session.add(tx)
        posting.transactions.append(tx)
        posting.balances[product.id] = product.current_stock

    db.session.flush()
    return posting


def _manual_entry(*, product_id: int, quantity_delta: int, note: str | None, actor_user_id: int | None):
    def _op():
        begin_write()
        posting = apply_deltas(
            [StockDelta(
                product_id=product_id,
                quantity_delta=quantity_delta,
                note=note,
                actor_user_id=actor_user_id,
                reference_type=REF_MANUAL,
            )],
            require_active=True,
        )
        db.session.commit()
        return posting.transactions[0]

    return run_with_retry(_op)


def stock_in(*, product_id: int, quantity, note: str | None = None, actor_user_id: int | None = None) -> StockTransaction:
    """Manual receipt outside the purchase flow (found stock, corrections)."""
    qty = require_positive_int(quantity, "quantity")
    return _manual_entry(product_id=product_id, quantity_delta=qty, note=note, actor_user_id=actor_user_id)


def stock_out(*, product_id: int, quantity, note: str | None = None, actor_user_id: int | None = None) -> StockTransaction:
    """Manual removal outside the sale flow (damage, shrink, corrections)."""
    qty = require_positive_int(quantity, "quantity")
    return _manual_entry(product_id=product_id, quantity_delta=-qty, note=note, actor_user_id=actor_user_id)


def current_stock(product_id: int) -> int:
    return get_product(product_id).current_stock


def history(product_id: int, page: int = 1, page_size: int = 20) -> dict:
    """Ledger entries for one product, newest first. Read-only."""
    product = get_product(product_id)

    q = db.session.query(StockTransaction).filter_by(product_id=product_id).order_by(
        StockTransaction.occurred_at.desc(),
        StockTransaction.id.desc(),
    )
    rows, pagination = paginate(q, page, page_size, size_key="page_size")

    return {
        "product": {
            "id": product.id,
            "name": product.name,
            "sku": product.sku,
            "current_stock": product.current_stock,
        },
        "items": [tx.to_dict() for tx in rows],
        "pagination": pagination,
    }


def list_transactions(*, page: int = 1, page_size: int = 20, tx_type: str | None = None) -> dict:
    q = db.session.query(StockTransaction)
    if tx_type:
        normalized = normalize_choice(tx_type.replace("-", "_"), TRANSACTION_TYPES, "type")
        q = q.filter(StockTransaction.type == normalized)
    q = q.order_by(StockTransaction.occurred_at.desc(), StockTransaction.id.desc())

    rows, pagination = paginate(q, page, page_size, size_key="page_size")
    return {"items": [tx.to_dict() for tx in rows], "pagination": pagination}


def ledger_balance(product_id: int) -> int:
    signed = case(
        (StockTransaction.type == TYPE_STOCK_IN, StockTransaction.quantity),
        else_=-StockTransaction.quantity,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(StockTransaction.product_id == product_id)
        .scalar()
    )
    return int(total or 0)


def reconcile(product_id: int) -> dict:
    """Compare the stored counter with the ledger sum. Read-only."""
    product = get_product(product_id)
    balance = ledger_balance(product_id)
    return {
        "product_id": product.id,
        "sku": product.sku,
        "current_stock": product.current_stock,
        "ledger_balance": balance,
        "consistent": balance == product.current_stock,
    }


def reconcile_all() -> list[dict]:
    product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id).all()]
    return [reconcile(pid) for pid in product_ids]
