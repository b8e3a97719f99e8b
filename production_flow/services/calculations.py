from decimal import Decimal, ROUND_HALF_UP
from typing import Union

QUANTITY_STEP = Decimal("0.01")
QUANTITY_SCALE = 100

Quantity = Union[Decimal, int, float, str]


def to_quantity(value: Quantity) -> Decimal:
    """Quantities are kept to two decimal places (meters or pieces)."""
    return Decimal(str(value)).quantize(QUANTITY_STEP, rounding=ROUND_HALF_UP)


def to_units(value: Quantity) -> int:
    """Quantity in hundredths, the exact integer form used by balance counters."""
    return int(to_quantity(value) * QUANTITY_SCALE)


def round_half_up(value: Union[Decimal, float, int]) -> int:
    """Round .5 away from zero, as shop-floor reports do."""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
