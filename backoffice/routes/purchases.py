# Overview: Flask API routes for purchase operations; parses input and returns JSON responses.

"""
Supplier purchase routes.

SECURITY:
- Create / read: admin, manager
- Delete (reversal): admin
"""
from flask import Blueprint, g, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_auth, require_role
from ..services import purchase_service, reporting_service
from ..validation import require_json_object

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.post("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def create_purchase_route():
    """
    Body:
    {
      "supplier_id": 3,
      "items": [{"product_id": 1, "quantity": 10, "cost_price_cents": 450}],
      "notes": "optional",
      "purchase_date": "2024-05-01T10:00:00Z"   (optional, defaults to now)
    }
    """
    payload = require_json_object(request.get_json(silent=True))

    purchase = purchase_service.create_purchase(
        supplier_id=payload.get("supplier_id"),
        items=payload.get("items"),
        notes=payload.get("notes"),
        purchase_date=payload.get("purchase_date"),
        actor_user_id=g.actor_id,
    )
    return purchase.to_dict(), 201


@purchases_bp.get("")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def list_purchases_route():
    return purchase_service.list_purchases(
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 20, type=int),
        supplier_id=request.args.get("supplier_id"),
        start=request.args.get("start"),
        end=request.args.get("end"),
    )


@purchases_bp.get("/stats/summary")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def purchase_stats_route():
    return reporting_service.purchases_summary(
        start=request.args.get("start"),
        end=request.args.get("end"),
    )


@purchases_bp.get("/<int:purchase_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def get_purchase_route(purchase_id: int):
    return purchase_service.get_purchase(purchase_id).to_dict()


@purchases_bp.delete("/<int:purchase_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_purchase_route(purchase_id: int):
    purchase = purchase_service.delete_purchase(purchase_id, actor_user_id=g.actor_id)
    return {"ok": True, "purchase": purchase.to_dict()}
