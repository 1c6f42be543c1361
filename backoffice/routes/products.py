# Overview: Flask API routes for catalog operations; parses input and returns JSON responses.

"""
Product catalog routes.

SECURITY: All routes require an authenticated actor.
- Reads are open to every role
- Writes require admin or manager
current_stock is read-only here; stock moves through /api/stock, sales and
purchases.
"""
from flask import Blueprint, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_auth, require_role
from ..models import Product
from ..services import catalog_service, reporting_service
from ..validation import ModelValidationPolicy, enforce_rules_product, require_json_object, validate_payload

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku",
        "name",
        "description",
        "category_id",
        "cost_price_cents",
        "selling_price_cents",
        "minimum_stock_level",
        "is_active",
    },
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _flag(name: str) -> bool:
    return (request.args.get(name) or "").lower() in ("1", "true", "yes")


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - page, per_page (max 100)
    - search: name or SKU substring
    - low_stock: only products at or below their minimum level
    - active_only
    """
    return catalog_service.list_products(
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        search=request.args.get("search"),
        low_stock=_flag("low_stock"),
        active_only=_flag("active_only"),
    )


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_product_route():
    payload = require_json_object(request.get_json(silent=True))
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    created = catalog_service.create_product(patch=patch)
    return created.to_dict(), 201


@products_bp.get("/stats/summary")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def inventory_stats():
    return reporting_service.inventory_summary()


@products_bp.get("/<int:product_id>")
@require_auth
def get_product_route(product_id: int):
    return catalog_service.get_product(product_id).to_dict()


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_product_route(product_id: int):
    payload = require_json_object(request.get_json(silent=True))
    if "current_stock" in payload:
        return {"error": "current_stock can only change through stock transactions"}, 400

    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)

    updated = catalog_service.update_product(product_id, patch)
    return updated.to_dict()


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def delete_product_route(product_id: int):
    """Soft delete; the product stays resolvable from ledger history."""
    product = catalog_service.deactivate_product(product_id)
    return {"ok": True, "product": product.to_dict()}
