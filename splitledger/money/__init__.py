"""Minor-unit money arithmetic."""

from splitledger.money.amount import (
    CURRENCY_SYMBOL,
    MAX_MINOR_UNITS,
    MINOR_UNITS_PER_MAJOR,
    Money,
    check_range,
    largest_remainder,
)

__all__ = [
    "CURRENCY_SYMBOL",
    "MAX_MINOR_UNITS",
    "MINOR_UNITS_PER_MAJOR",
    "Money",
    "check_range",
    "largest_remainder",
]
