"""Money value type: an exact decimal amount bound to a currency code."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_HUNDRED = Decimal("100")
MINOR_UNIT = Decimal("0.01")


class CurrencyMismatchError(ValueError):
    """Raised when two Money values with different currencies are combined."""


def round_half_up(value: Decimal, exponent: Decimal = MINOR_UNIT) -> Decimal:
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


def _to_decimal(amount: Decimal | int | str) -> Decimal:
    # Floats are refused: 0.1 + 0.2 style error has no place in a ledger.
    if isinstance(amount, bool) or isinstance(amount, float):
        raise ValueError(f"Money amount must be exact, got {type(amount).__name__}")
    if isinstance(amount, Decimal):
        value = amount
    else:
        try:
            value = Decimal(amount)
        except (InvalidOperation, TypeError) as exc:
            raise ValueError(f"Invalid money amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValueError(f"Money amount must be finite, got {amount!r}")
    return value


@dataclass(frozen=True, slots=True)
class Money:
    """Immutable amount + ISO-4217 code.

    Arithmetic keeps full decimal precision; the only rounding is in
    :meth:`percentage`, which rounds half-up to the minor unit.  Every binary
    operation requires both operands to share a currency.
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _to_decimal(self.amount))
        if not isinstance(self.currency, str) or not _CURRENCY_RE.match(self.currency):
            raise ValueError(f"Currency must be a 3-letter upper-case code, got {self.currency!r}")

    @classmethod
    def of(cls, amount: Decimal | int | str, currency: str) -> Money:
        return cls(amount=_to_decimal(amount), currency=currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(amount=Decimal("0"), currency=currency)

    def _check_currency(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(
                f"Currency mismatch: {self.currency} vs {other.currency}"
            )

    # -- arithmetic ----------------------------------------------------

    def add(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def subtract(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def multiply(self, factor: int) -> Money:
        if isinstance(factor, bool) or not isinstance(factor, int):
            raise TypeError(f"Money can only be multiplied by an integer, got {type(factor).__name__}")
        return Money(self.amount * factor, self.currency)

    def percentage(self, rate: Decimal) -> Money:
        """``amount * rate / 100`` rounded half-up to two decimal places."""
        return Money(round_half_up(self.amount * _to_decimal(rate) / _HUNDRED), self.currency)

    def rounded(self) -> Money:
        return Money(round_half_up(self.amount), self.currency)

    # -- predicates / ordering ------------------------------------------

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_zero(self) -> bool:
        return self.amount == 0

    def fits_minor_unit(self) -> bool:
        """True when the amount is a whole number of cents (``1.50`` yes, ``1.505`` no)."""
        return self.amount == round_half_up(self.amount)

    def compare_to(self, other: Money) -> int:
        self._check_currency(other)
        if self.amount < other.amount:
            return -1
        if self.amount > other.amount:
            return 1
        return 0

    def __add__(self, other: Money) -> Money:
        return self.add(other)

    def __sub__(self, other: Money) -> Money:
        return self.subtract(other)

    def __mul__(self, factor: int) -> Money:
        return self.multiply(factor)

    __rmul__ = __mul__

    def __lt__(self, other: Money) -> bool:
        return self.compare_to(other) < 0

    def __le__(self, other: Money) -> bool:
        return self.compare_to(other) <= 0

    def __gt__(self, other: Money) -> bool:
        return self.compare_to(other) > 0

    def __ge__(self, other: Money) -> bool:
        return self.compare_to(other) >= 0

    def __str__(self) -> str:
        return f"{self.currency} {self.amount}"
