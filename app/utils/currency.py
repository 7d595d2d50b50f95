"""Суммы: перевод мажорных единиц в минорные (kobo, cents)."""
from decimal import ROUND_HALF_UP, Decimal


def to_minor_units(amount: Decimal | int | float | str, factor: int = 100) -> int:
    """Major -> minor units as int, rounded half up (1.50 -> 150)."""
    value = Decimal(str(amount)) * factor
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
