from decimal import ROUND_HALF_UP, Decimal

CENTS = Decimal("0.01")


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor_units: int) -> Decimal:
    return (Decimal(amount_minor_units) / 100).quantize(CENTS)


def format_brl(amount: Decimal | int) -> str:
    """Formats an amount as Brazilian reais. Integers are taken as minor units."""
    if isinstance(amount, int):
        amount = from_minor_units(amount)
    quantized = amount.quantize(CENTS, rounding=ROUND_HALF_UP)
    sign = "-" if quantized < 0 else ""
    integer_part, _, fraction = f"{abs(quantized):.2f}".partition(".")
    groups = []
    while len(integer_part) > 3:
        groups.insert(0, integer_part[-3:])
        integer_part = integer_part[:-3]
    groups.insert(0, integer_part)
    return f"{sign}R$ {'.'.join(groups)},{fraction}"
