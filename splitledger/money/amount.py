"""
Minor-Unit Money Value

DESIGN DECISION: Money is an integer count of minor units (paise, cents).
Floating point never touches an amount. Anything that divides - equal
shares, proportional rescaling - goes through `allocate`, which applies
the largest-remainder rule so the parts always add back up to the whole.
"""

from decimal import Decimal, InvalidOperation
from functools import total_ordering
from typing import Sequence, Union

from pydantic import BaseModel, ConfigDict, StrictInt, field_validator

from splitledger.errors import InvalidAmountError, ValidationError


# Signed 64-bit, the width of the BIGINT columns amounts are stored in
MAX_MINOR_UNITS = 2**63 - 1
MINOR_UNITS_PER_MAJOR = 100
CURRENCY_SYMBOL = "₹"


def check_range(minor_units: int) -> int:
    """Fail loudly instead of wrapping when a value leaves the storable range."""
    if minor_units > MAX_MINOR_UNITS or minor_units < -MAX_MINOR_UNITS:
        raise ValidationError(
            f"Amount {minor_units} overflows the supported range "
            f"(±{MAX_MINOR_UNITS} minor units)"
        )
    return minor_units


def largest_remainder(total: int, weights: Sequence[int]) -> list[int]:
    """
    Split `total` proportionally to `weights` so the parts sum to `total`.

    Each part starts at floor(total * w / W). The leftover units go one
    each to the parts with the largest remainder (total * w) mod W; ties
    go to the earlier position.
    """
    if not weights:
        raise ValidationError("Cannot allocate over an empty set of weights")
    if any(w < 0 for w in weights):
        raise ValidationError("Allocation weights must be non-negative")

    weight_sum = sum(weights)
    if weight_sum <= 0:
        raise ValidationError("Allocation weights must have a positive sum")

    parts = []
    remainders = []
    for position, weight in enumerate(weights):
        quotient, remainder = divmod(total * weight, weight_sum)
        parts.append(quotient)
        remainders.append((remainder, position))

    leftover = total - sum(parts)
    # Sorting by (-remainder, position) gives largest remainder first, earliest on ties
    for _, position in sorted(remainders, key=lambda r: (-r[0], r[1]))[:leftover]:
        parts[position] += 1

    return parts


@total_ordering
class Money(BaseModel):
    """An exact amount in minor units."""

    model_config = ConfigDict(frozen=True)

    minor_units: StrictInt

    def __init__(self, minor_units: int = 0, **data):
        super().__init__(minor_units=minor_units, **data)

    @field_validator("minor_units")
    @classmethod
    def validate_range(cls, v: int) -> int:
        return check_range(v)

    @classmethod
    def zero(cls) -> "Money":
        return cls(0)

    @classmethod
    def from_major(cls, value: Union[str, Decimal, int]) -> "Money":
        """
        Parse a major-unit amount such as "90.00".

        More precision than one minor unit is rejected, never rounded.
        """
        try:
            major = Decimal(str(value).strip())
        except InvalidOperation:
            raise InvalidAmountError(f"Not a valid amount: {value!r}")

        if not major.is_finite():
            raise InvalidAmountError(f"Not a valid amount: {value!r}")

        minor = major * MINOR_UNITS_PER_MAJOR
        if minor != minor.to_integral_value():
            raise InvalidAmountError(
                f"Amount {value} has more precision than one minor unit"
            )
        return cls(int(minor))

    def to_major(self) -> Decimal:
        return Decimal(self.minor_units) / MINOR_UNITS_PER_MAJOR

    # -- arithmetic ----------------------------------------------------------

    def __add__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.minor_units + other.minor_units)

    def __sub__(self, other: "Money") -> "Money":
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.minor_units - other.minor_units)

    def __neg__(self) -> "Money":
        return Money(-self.minor_units)

    def __abs__(self) -> "Money":
        return Money(abs(self.minor_units))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.minor_units == other.minor_units

    def __lt__(self, other: "Money") -> bool:
        if not isinstance(other, Money):
            return NotImplemented
        return self.minor_units < other.minor_units

    def __hash__(self) -> int:
        return hash(self.minor_units)

    def __int__(self) -> int:
        return self.minor_units

    @classmethod
    def sum(cls, amounts) -> "Money":
        total = cls.zero()
        for amount in amounts:
            total = total + amount
        return total

    # -- sign ----------------------------------------------------------------

    @property
    def sign(self) -> int:
        return (self.minor_units > 0) - (self.minor_units < 0)

    @property
    def is_positive(self) -> bool:
        return self.minor_units > 0

    @property
    def is_zero(self) -> bool:
        return self.minor_units == 0

    @property
    def is_negative(self) -> bool:
        return self.minor_units < 0

    # -- division ------------------------------------------------------------

    def allocate(self, weights: Sequence[int]) -> list["Money"]:
        """Split this amount proportionally to `weights` (largest remainder)."""
        return [Money(part) for part in largest_remainder(self.minor_units, weights)]

    def scale(self, numerator: int, denominator: int) -> "Money":
        """
        Multiply by numerator/denominator, rounding half away from zero.

        For scaling a set of amounts that must keep their total, use
        `allocate` instead.
        """
        if denominator <= 0:
            raise ValidationError("Scale denominator must be positive")
        quotient, remainder = divmod(abs(self.minor_units) * numerator, denominator)
        if remainder * 2 >= denominator:
            quotient += 1
        return Money(quotient * self.sign)

    # -- display -------------------------------------------------------------

    def format(self, symbol: str = CURRENCY_SYMBOL) -> str:
        sign = "-" if self.is_negative else ""
        return f"{sign}{symbol}{abs(self.to_major()):,.2f}"

    def __str__(self) -> str:
        return self.format()

    def __repr__(self) -> str:
        return f"Money({self.minor_units})"
