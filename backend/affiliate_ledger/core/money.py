from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from affiliate_ledger.core.errors import InvalidAmount

CENT = Decimal("0.01")


def money2(v: Decimal) -> Decimal:
    return v.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value, *, field: str = "amount") -> Decimal:
    """Parse a numeric input exactly as given; no rounding."""
    if isinstance(value, bool):
        raise InvalidAmount(f"{field} must be a number", field=field)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmount(f"{field} must be a number", field=field)
    if not amount.is_finite():
        raise InvalidAmount(f"{field} must be finite", field=field)
    return amount


def to_money(value, *, field: str = "amount") -> Decimal:
    return money2(to_decimal(value, field=field))


def calc_commission(order_total: Decimal, commission_pct: Decimal) -> Decimal:
    return money2((Decimal(order_total) * Decimal(commission_pct)) / Decimal("100"))
