# Overview: Flask API routes for coupon operations; parses input and returns JSON responses.

"""
Coupon routes.

SECURITY:
- Generate: admin, manager
- Validate / list a customer's coupons and loyalty history: every role
"""
from flask import Blueprint, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_auth, require_role
from ..models.customers import DISCOUNT_PERCENTAGE
from ..services import coupon_service, loyalty_service
from ..validation import require_json_object, require_positive_int

coupons_bp = Blueprint("coupons", __name__, url_prefix="/api/coupons")


@coupons_bp.post("/generate")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def generate_route():
    """
    Body:
    {
      "customer_id": 7,
      "discount_type": "PERCENTAGE" | "FIXED",   (default PERCENTAGE)
      "discount_value": 5,                       (percent, or cents for FIXED)
      "expiry_days": 30
    }
    """
    payload = require_json_object(request.get_json(silent=True))

    coupon = coupon_service.generate(
        customer_id=require_positive_int(payload.get("customer_id"), "customer_id"),
        discount_type=payload.get("discount_type") or DISCOUNT_PERCENTAGE,
        discount_value=payload.get("discount_value", 5),
        expiry_days=payload.get("expiry_days", 30),
    )
    return coupon.to_dict(), 201


@coupons_bp.post("/validate")
@require_auth
def validate_route():
    """Read-only; a valid response does not reserve the coupon."""
    payload = require_json_object(request.get_json(silent=True))
    coupon = coupon_service.validate(payload.get("code"))
    return {"valid": True, "coupon": coupon.to_dict()}


@coupons_bp.get("/customer/<int:customer_id>")
@require_auth
def customer_coupons_route(customer_id: int):
    include_used = (request.args.get("include_used") or "true").lower() not in ("0", "false", "no")
    coupons = coupon_service.list_customer_coupons(customer_id, include_used=include_used)
    return {"items": [c.to_dict() for c in coupons], "count": len(coupons)}


@coupons_bp.get("/customer/<int:customer_id>/loyalty")
@require_auth
def customer_loyalty_route(customer_id: int):
    """Loyalty point ledger for a customer, newest first."""
    entries = loyalty_service.history(customer_id)
    return {"items": [e.to_dict() for e in entries], "count": len(entries)}
