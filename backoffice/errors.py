# Overview: Domain error taxonomy shared by services and routes.

from __future__ import annotations


class LedgerError(Exception):
    """
    Base class for every business error the engine raises.

    Each subclass carries a stable `code` and the HTTP status the API maps it
    to. `details` holds structured context (offending items, ids) and is
    returned to the caller as-is, so it must never contain storage internals.
    """
    code = "error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(LedgerError):
    """Malformed or empty input; rejected before touching storage."""
    code = "validation_error"
    status_code = 400


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404


class ConflictError(LedgerError):
    """409-level business rule conflict (e.g., duplicate SKU)."""
    code = "conflict"
    status_code = 409


class InvalidState(ConflictError):
    """Operation not allowed for the document's current status."""
    code = "invalid_state"


class InsufficientStock(LedgerError):
    """A stock-out would drive a product's balance below zero."""
    code = "insufficient_stock"
    status_code = 409


class OutOfStock(InsufficientStock):
    """Sale pre-check failure: requested quantity exceeds current stock."""
    code = "out_of_stock"


class InvalidCoupon(LedgerError):
    code = "invalid_coupon"
    status_code = 400


class CouponNotFound(InvalidCoupon):
    code = "coupon_not_found"
    status_code = 404


class CouponExpired(InvalidCoupon):
    code = "coupon_expired"
    status_code = 400


class CouponAlreadyUsed(InvalidCoupon):
    code = "coupon_already_used"
    status_code = 409


class ReversalConflict(LedgerError):
    """Purchase reversal would drive stock negative; purchase left untouched."""
    code = "reversal_conflict"
    status_code = 409


class ConcurrencyConflict(LedgerError):
    """Lost an optimistic-locking race after all retries. Safe to retry."""
    code = "concurrency_conflict"
    status_code = 409
