from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

def _money(x) -> float:
    """Round to 2dp, half-up, as float."""
    if x is None:
        x = 0
    return float(Decimal(str(x)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))

def to_number(x, default: float | None = None) -> float | None:
    """Coerce user input to float; blanks and junk give `default`."""
    if x is None or isinstance(x, bool):
        return default
    if isinstance(x, str) and not x.strip():
        return default
    try:
        value = float(Decimal(str(x)))
    except (InvalidOperation, ValueError):
        return default
    if value != value:  # NaN
        return default
    return value

def usd_from_bs(amount_bs, exchange_rate) -> float:
    # use string to avoid float binary artifacts
    return float((Decimal(str(amount_bs)) / Decimal(str(exchange_rate))).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
