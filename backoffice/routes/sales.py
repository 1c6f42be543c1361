# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

"""
Sales routes.

SECURITY:
- Create / read: every role
- Update: admin, manager
- Delete (soft, stock returned): admin
"""
from flask import Blueprint, g, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_auth, require_role
from ..services import reporting_service, sales_service
from ..validation import require_json_object

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
@require_auth
def create_sale_route():
    """
    Body:
    {
      "items": [{"product_id": 1, "quantity": 2}],
      "payment_method": "CASH" | "CARD",
      "customer_id": 7,                 (or "customer_name")
      "coupon_code": "CPN-AB12CD"       (optional)
    }

    Prices are always read from the catalog; client-sent prices are ignored.
    """
    payload = require_json_object(request.get_json(silent=True))

    result = sales_service.create_sale(
        items=payload.get("items"),
        payment_method=payload.get("payment_method"),
        customer_id=payload.get("customer_id"),
        customer_name=payload.get("customer_name"),
        coupon_code=payload.get("coupon_code"),
        actor_user_id=g.actor_id,
    )
    return {"sale": result.sale.to_dict(), "warnings": result.warnings}, 201


@sales_bp.get("")
@require_auth
def list_sales_route():
    return sales_service.list_sales(
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 20, type=int),
        search=request.args.get("search"),
        start=request.args.get("start"),
        end=request.args.get("end"),
        include_deleted=(request.args.get("include_deleted") or "").lower() in ("1", "true", "yes"),
    )


@sales_bp.get("/stats/summary")
@require_auth
def sales_stats_route():
    return reporting_service.sales_summary(
        start=request.args.get("start"),
        end=request.args.get("end"),
    )


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    return sales_service.get_sale(sale_id).to_dict()


@sales_bp.put("/<int:sale_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def update_sale_route(sale_id: int):
    payload = require_json_object(request.get_json(silent=True))

    sale = sales_service.update_sale(
        sale_id,
        items=payload.get("items"),
        customer_name=payload.get("customer_name"),
        payment_method=payload.get("payment_method"),
        actor_user_id=g.actor_id,
    )
    return sale.to_dict()


@sales_bp.delete("/<int:sale_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_sale_route(sale_id: int):
    sale = sales_service.delete_sale(sale_id, actor_user_id=g.actor_id)
    return {"ok": True, "sale": sale.to_dict()}
