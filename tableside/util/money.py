from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
UNIT = Decimal("1")
ZERO = Decimal("0.00")


def q2(x) -> Decimal:
    # go through str to avoid float binary artifacts
    return Decimal(str(x or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def round_unit(x: Decimal) -> Decimal:
    return x.quantize(UNIT, rounding=ROUND_HALF_UP).quantize(CENT)


def money(x) -> float:
    return float(q2(x))
