from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999
MAX_LINE_QUANTITY = 1_000_000


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] | None = None


@dataclass(frozen=True)
class LineInput:
    """One requested cart/order line after shape validation."""
    product_id: int
    quantity: int
    cost_price_cents: int | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and
    scientific notation, accepts ints and plain digit strings.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def require_positive_int(value: Any, field: str, *, maximum: int | None = None) -> int:
    number = coerce_int(value, field)
    if number <= 0:
        raise ValidationError(f"{field} must be > 0")
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} cannot exceed {maximum}")
    return number


def optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return coerce_int(value, field)


def require_json_object(payload: Any) -> dict:
    """Request body as a dict; an absent body is empty, anything but an object is rejected."""
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def normalize_choice(value: Any, choices: tuple[str, ...], field: str) -> str:
    """Case-insensitive enum match; 'Cash' and 'CASH' both map to 'CASH'."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    normalized = value.strip().upper()
    if normalized not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return normalized


def optional_datetime(value: Any, field: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_line_items(items: Any, *, with_cost: bool = False) -> list[LineInput]:
    """
    Validate a list of {"product_id", "quantity"[, "cost_price_cents"]}.

    Lines for the same product are merged (quantities summed) so stock is
    validated against the total requested, in first-seen order. Merged
    purchase lines must agree on cost.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one item is required")

    merged: dict[int, LineInput] = {}
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")

        product_id = require_positive_int(raw.get("product_id"), f"items[{index}].product_id")
        quantity = require_positive_int(
            raw.get("quantity"), f"items[{index}].quantity", maximum=MAX_LINE_QUANTITY
        )

        cost = None
        if with_cost:
            cost = require_positive_int(
                raw.get("cost_price_cents"),
                f"items[{index}].cost_price_cents",
                maximum=MAX_PRICE_CENTS,
            )

        existing = merged.get(product_id)
        if existing is None:
            merged[product_id] = LineInput(product_id, quantity, cost)
            continue
        if with_cost and existing.cost_price_cents != cost:
            raise ValidationError(
                "Conflicting cost_price_cents for repeated product",
                details={"product_id": product_id},
            )
        merged[product_id] = LineInput(product_id, existing.quantity + quantity, cost)

    return list(merged.values())


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        coltype = col.type
        if isinstance(coltype, Integer):
            val = coerce_int(raw, k)
        elif isinstance(coltype, Boolean):
            if not isinstance(raw, bool):
                raise ValidationError(f"{k} must be a boolean")
            val = raw
        elif isinstance(coltype, DateTime):
            val = optional_datetime(raw, k)
        elif isinstance(coltype, (String, Text)):
            val = str(raw).strip()
            if not col.nullable and val == "":
                raise ValidationError(f"{k} cannot be blank")
            if isinstance(coltype, String) and coltype.length and len(val) > coltype.length:
                raise ValidationError(f"{k} exceeds max length {coltype.length}")
        else:
            val = raw

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Business rules for catalog fields not captured by column metadata."""
    for field in ("cost_price_cents", "selling_price_cents"):
        if field in patch and patch[field] is not None:
            price = patch[field]
            if price < 0:
                raise ValidationError(f"{field} must be >= 0")
            if price > MAX_PRICE_CENTS:
                raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")

    if "minimum_stock_level" in patch and patch["minimum_stock_level"] is not None:
        if patch["minimum_stock_level"] < 0:
            raise ValidationError("minimum_stock_level must be >= 0")
