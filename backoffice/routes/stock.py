# Overview: Flask API routes for stock ledger operations; parses input and returns JSON responses.

"""
Stock ledger routes.

Manual stock-in / stock-out entries and read-only ledger views. Every write
records the acting user from X-Actor-Id.

SECURITY: admin and manager only.
"""
from flask import Blueprint, g, request

from ..decorators import ROLE_ADMIN, ROLE_MANAGER, require_auth, require_role
from ..errors import ValidationError
from ..services import stock_ledger_service
from ..validation import require_json_object, require_positive_int

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _entry_payload() -> tuple[int, object, str | None]:
    payload = require_json_object(request.get_json(silent=True))
    product_id = require_positive_int(payload.get("product_id"), "product_id")
    note = payload.get("note")
    if note is not None and not isinstance(note, str):
        raise ValidationError("note must be a string")
    return product_id, payload.get("quantity"), (note or "").strip() or None


def _entry_response(tx):
    return {"transaction": tx.to_dict(), "new_stock": tx.balance_after}, 201


@stock_bp.post("/in")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def stock_in_route():
    """
    Body:
    {
      "product_id": 1,
      "quantity": 10,
      "note": "optional"
    }
    """
    product_id, quantity, note = _entry_payload()
    tx = stock_ledger_service.stock_in(
        product_id=product_id,
        quantity=quantity,
        note=note,
        actor_user_id=g.actor_id,
    )
    return _entry_response(tx)


@stock_bp.post("/out")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def stock_out_route():
    product_id, quantity, note = _entry_payload()
    tx = stock_ledger_service.stock_out(
        product_id=product_id,
        quantity=quantity,
        note=note,
        actor_user_id=g.actor_id,
    )
    return _entry_response(tx)


@stock_bp.get("/history/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def history_route(product_id: int):
    return stock_ledger_service.history(
        product_id,
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 20, type=int),
    )


@stock_bp.get("/transactions")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def transactions_route():
    return stock_ledger_service.list_transactions(
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 20, type=int),
        tx_type=request.args.get("type"),
    )


@stock_bp.get("/reconcile/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_MANAGER)
def reconcile_route(product_id: int):
    return stock_ledger_service.reconcile(product_id)
