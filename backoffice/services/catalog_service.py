# backoffice/services/catalog_service.py
"""
Product catalog service.

The catalog owns every product field except current_stock, which only the
stock ledger writes. Products are deactivated, never deleted.
"""
from __future__ import annotations

import secrets
import string
import time

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import ConflictError, NotFound, ValidationError
from ..extensions import db
from ..models import Product
from .concurrency import lock_for_update, run_with_retry
from .pagination import paginate

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "name",
    "description",
    "category_id",
    "cost_price_cents",
    "selling_price_cents",
    "minimum_stock_level",
    "is_active",
}

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_sku() -> str:
    """SKU-<base36 millisecond timestamp>-<3 random chars>."""
    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(3))
    return f"SKU-{stamp}-{suffix}"


def get_product(product_id: int, *, require_active: bool = False, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFound("Product not found", details={"product_id": product_id})
    if require_active and not product.is_active:
        raise ValidationError("Product is inactive", details={"product_id": product_id})
    return product


def _ensure_unique_sku(sku: str, *, exclude_id: int | None = None) -> None:
    q = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("A product with this SKU already exists", details={"sku": sku})


def create_product(*, patch: dict) -> Product:
    """
    Create a product from a validated patch dict.

    Blank SKUs are replaced by a generated one. Stock always starts at zero;
    it is only ever raised through the ledger.
    """
    if not patch.get("name"):
        raise ValidationError("name is required")

    def _op():
        sku = (patch.get("sku") or "").strip()
        if sku:
            _ensure_unique_sku(sku)
        else:
            sku = generate_sku()
            while db.session.query(Product.id).filter_by(sku=sku).first() is not None:
                sku = generate_sku()

        product = Product(sku=sku, current_stock=0)
        for key, value in patch.items():
            if key in PRODUCT_MUTABLE_FIELDS and key != "sku":
                setattr(product, key, value)

        db.session.add(product)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ConflictError("A product with this SKU already exists", details={"sku": sku})
        return product

    return run_with_retry(_op)


def update_product(product_id: int, patch: dict) -> Product:
    """Apply a validated patch; current_stock is never writable here."""
    if "current_stock" in patch:
        raise ValidationError("current_stock can only change through stock transactions")

    def _op():
        product = get_product(product_id)

        if "sku" in patch:
            sku = (patch["sku"] or "").strip()
            if not sku:
                raise ValidationError("sku cannot be blank")
            _ensure_unique_sku(sku, exclude_id=product.id)

        for key, value in patch.items():
            if key in PRODUCT_MUTABLE_FIELDS:
                setattr(product, key, value)

        db.session.commit()
        return product

    return run_with_retry(_op)


def deactivate_product(product_id: int) -> Product:
    """Soft delete: keeps ledger history, blocks new sales and purchases."""
    return update_product(product_id, {"is_active": False})


def list_products(
    *,
    page: int = 1,
    per_page: int = 20,
    search: str | None = None,
    low_stock: bool = False,
    active_only: bool = False,
) -> dict:
    q = db.session.query(Product)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Product.name.ilike(like), Product.sku.ilike(like)))
    if low_stock:
        q = q.filter(Product.current_stock <= Product.minimum_stock_level)
    if active_only:
        q = q.filter(Product.is_active.is_(True))

    q = q.order_by(Product.name.asc(), Product.id.asc())
    rows, pagination = paginate(q, page, per_page)
    return {
        "items": [p.to_dict() for p in rows],
        "count": len(rows),
        "pagination": pagination,
    }
