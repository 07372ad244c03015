"""
Values -- Immutable, self-validating monetary value object.

Responsibility:
    Provides ``Money``, the single representation of a currency amount in
    the billing core. Amounts are held as an integer number of cents so that
    allocation and running-balance arithmetic never drifts; the public face
    is a ``Decimal`` with exactly two fractional digits.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Imported by every other domain module and by the engines.

Invariants enforced:
    - Amounts are integer cents internally; arithmetic is integer arithmetic.
    - Floats are rejected at construction (never trusted for money).
    - Decimal inputs with more than two fractional digits are rounded
      ROUND_HALF_UP, the one sanctioned rounding mode.

Failure modes:
    - TypeError when constructed from a float or an unsupported type.
    - ValueError when a string is not a valid number.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_cents(value: Decimal | str | int) -> int:
    """
    Convert a decimal amount to integer cents.

    Preconditions:
        - ``value`` is a Decimal, a numeric string, or an int (whole units).
    Postconditions:
        - Returns the amount rounded half-up to the nearest cent.
    Raises:
        TypeError: for floats and other unsupported types.
        ValueError: for strings that are not numbers.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Money cannot be built from {type(value).__name__}: {value!r}")
    if isinstance(value, int):
        return value * 100
    if isinstance(value, str):
        try:
            value = Decimal(value.strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {value!r}") from e
    if not isinstance(value, Decimal):
        raise TypeError(f"Money cannot be built from {type(value).__name__}")
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {value}")
    return int(value.quantize(CENT, rounding=DEFAULT_ROUNDING) * 100)


@dataclass(frozen=True, slots=True, order=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Wraps an integer count of cents. Construct with ``Money.of`` for
        decimal input or ``Money.from_cents`` for integer cents.

    Guarantees:
        - Immutable, hashable and totally ordered by ``cents``.
        - ``amount`` always has exactly two fractional digits.
        - ``sum()`` works over an iterable of Money (``0 + Money``).

    Non-goals:
        - No currency; the billing core is single-currency.
    """

    cents: int

    def __post_init__(self) -> None:
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError(f"cents must be int, got {type(self.cents).__name__}")

    @classmethod
    def of(cls, value: Decimal | str | int) -> Money:
        """Create Money from a decimal amount in whole currency units."""
        return cls(to_cents(value))

    @classmethod
    def from_cents(cls, cents: int) -> Money:
        """Create Money from integer cents."""
        return cls(cents)

    @property
    def amount(self) -> Decimal:
        """The amount as a Decimal with two fractional digits."""
        return (Decimal(self.cents) / 100).quantize(CENT)

    @property
    def is_zero(self) -> bool:
        return self.cents == 0

    @property
    def is_positive(self) -> bool:
        return self.cents > 0

    @property
    def is_negative(self) -> bool:
        return self.cents < 0

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents + other.cents)

    def __radd__(self, other: object) -> Money:
        # Lets sum() start from the int 0.
        if other == 0:
            return self
        if isinstance(other, Money):
            return Money(other.cents + self.cents)
        return NotImplemented

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        return Money(self.cents - other.cents)

    def __neg__(self) -> Money:
        return Money(-self.cents)

    def __abs__(self) -> Money:
        return Money(abs(self.cents))

    def __bool__(self) -> bool:
        return self.cents != 0

    def __str__(self) -> str:
        return str(self.amount)

    def __repr__(self) -> str:
        return f"Money({str(self.amount)!r})"
