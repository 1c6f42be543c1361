# Overview: Integer-cent arithmetic helpers shared by sales and coupons.

from __future__ import annotations

from flask import current_app


def round_half_up(numerator: int, denominator: int) -> int:
    """numerator / denominator rounded half away from zero, for non-negative inputs."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    return (2 * numerator + denominator) // (2 * denominator)


def tax_for(subtotal_cents: int, rate_bps: int | None = None) -> int:
    if rate_bps is None:
        rate_bps = current_app.config.get("TAX_RATE_BPS", 1000)
    return round_half_up(subtotal_cents * rate_bps, 10_000)


def percent_of(amount_cents: int, percent: int) -> int:
    return round_half_up(amount_cents * percent, 100)
