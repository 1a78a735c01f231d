from decimal import Decimal, ROUND_HALF_UP

ZERO = Decimal("0")

def D(x) -> Decimal:
    if x is None or x == "":
        return ZERO
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))

def round_clp(x) -> int:
    """Round to whole pesos, half away from zero."""
    return int(D(x).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
