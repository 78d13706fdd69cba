"""Group pricing.

Prices are computed in ``Decimal`` and rounded half-up to cents so that, for
example, 18.00 x 1 dog at a 15% discount is exactly 15.30.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

_CENTS = Decimal("0.01")


def _to_cents(value: Decimal) -> float:
    return float(value.quantize(_CENTS, rounding=ROUND_HALF_UP))


def undiscounted_price(base_price: float, dog_count: int) -> float:
    return _to_cents(Decimal(str(base_price)) * dog_count)


def group_price(base_price: float, dog_count: int, discount_rate: float) -> float:
    if not 0.0 <= discount_rate < 1.0:
        raise ValueError("discount_rate must be in [0, 1)")
    factor = Decimal(1) - Decimal(str(discount_rate))
    return _to_cents(Decimal(str(base_price)) * dog_count * factor)


def group_savings(base_price: float, dog_count: int, discount_rate: float) -> float:
    return _to_cents(Decimal(str(base_price)) * dog_count * Decimal(str(discount_rate)))
