from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
HALF = Decimal("0.5")
TOLERANCE = Decimal("0.01")

# Units sold in whole increments; anything else may be sold by the half.
COUNTABLE_UNITS = {"item", "items"}


def to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        d = value
    else:
        if isinstance(value, float):
            # go through repr so 0.1 stays 0.1
            value = repr(value)
        try:
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Not a number: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"Not a number: {value!r}")
    return d


def to_money(value: object) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(currency: str, amount: object) -> str:
    return f"{currency} {to_money(amount):.2f}"


def format_quantity(qty: object) -> str:
    q = to_decimal(qty)
    if q == q.to_integral_value():
        return str(int(q))
    return format(q.normalize(), "f")


def quantity_step(unit: str) -> Decimal:
    return Decimal(1) if (unit or "").strip().lower() in COUNTABLE_UNITS else HALF


def is_valid_quantity(qty: Decimal, unit: str) -> bool:
    if qty <= 0:
        return False
    return qty % quantity_step(unit) == 0
