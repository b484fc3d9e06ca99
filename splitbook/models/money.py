"""
Money Value

DESIGN DECISION: Amounts are stored as integer minor units (cents for USD)
plus a 3-letter currency code. Floats never hold an authoritative amount.

Division never loses or creates minor units: split_evenly hands the
remainder out one unit at a time to the first parts, in order.
Mixing currencies is an error, not a conversion.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, getcontext
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Minor-unit exponents that differ from the usual 2 decimal places
_CURRENCY_EXPONENTS = {
    "BHD": 3,
    "CLP": 0,
    "IQD": 3,
    "ISK": 0,
    "JOD": 3,
    "JPY": 0,
    "KRW": 0,
    "KWD": 3,
    "OMR": 3,
    "TND": 3,
    "UGX": 0,
    "VND": 0,
}


def currency_exponent(currency: str) -> int:
    """Number of decimal places of the currency's minor unit."""
    return _CURRENCY_EXPONENTS.get(currency.upper(), 2)


class CurrencyMismatch(Exception):
    """Two amounts in different currencies were combined."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Currency mismatch: expected {expected}, got {actual}")

    def to_issue(self, field: str = "currency"):
        from splitbook.models.receipt import ValidationIssue

        return ValidationIssue(
            field=field,
            issue_type="currency_mismatch",
            message=str(self),
            severity="error",
            suggested_fix=f"Use {self.expected} for every amount",
        )


class Money(BaseModel):
    """
    Fixed-precision monetary amount.

    Immutable; every operation returns a new Money.
    """
    model_config = ConfigDict(frozen=True)

    minor_units: int = Field(
        ...,
        strict=True,
        description="Amount in the currency's smallest unit"
    )
    currency: str = Field(
        ...,
        pattern="^[A-Z]{3}$",
        description="ISO 4217 currency code"
    )

    @field_validator('currency', mode='before')
    @classmethod
    def normalize_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @classmethod
    def zero(cls, currency: str) -> "Money":
        return cls(minor_units=0, currency=currency)

    @classmethod
    def from_decimal(cls, amount, currency: str) -> "Money":
        """
        Build from a major-unit amount ("12.50", Decimal("12.5"), 12.5).

        Floats go through str() so 12.5 means exactly 12.50.
        Rounds half-up at the currency's exponent.
        """
        if isinstance(amount, bool):
            raise ValueError(f"Not a monetary amount: {amount!r}")
        try:
            value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {amount!r}")
        if not value.is_finite():
            raise ValueError(f"Not a monetary amount: {amount!r}")

        exponent = currency_exponent(currency)
        # Minor units must fit the decimal context exactly
        if value.adjusted() + exponent >= getcontext().prec - 1:
            raise ValueError(f"Amount out of range: {amount!r}")

        scaled = (value * (Decimal(10) ** exponent)).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
        return cls(minor_units=int(scaled), currency=currency)

    def to_decimal(self) -> Decimal:
        """Major-unit value. For display only."""
        exponent = currency_exponent(self.currency)
        return Decimal(self.minor_units).scaleb(-exponent)

    @property
    def is_negative(self) -> bool:
        return self.minor_units < 0

    @property
    def is_zero(self) -> bool:
        return self.minor_units == 0

    def _check_currency(self, other: "Money") -> None:
        if other.currency != self.currency:
            raise CurrencyMismatch(self.currency, other.currency)

    def add(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(minor_units=self.minor_units + other.minor_units, currency=self.currency)

    def subtract(self, other: "Money") -> "Money":
        self._check_currency(other)
        return Money(minor_units=self.minor_units - other.minor_units, currency=self.currency)

    def scale(self, n: int) -> "Money":
        """Multiply by an integer (e.g. unit price × quantity)."""
        if isinstance(n, bool) or not isinstance(n, int):
            raise TypeError(f"Money can only be scaled by an integer, got {n!r}")
        return Money(minor_units=self.minor_units * n, currency=self.currency)

    def split_evenly(self, n: int) -> list["Money"]:
        """
        Split into n parts that sum exactly to self.

        The first (minor_units mod n) parts receive one extra minor unit.
        E.g. 301 cents over 3 -> [101, 100, 100].
        """
        if isinstance(n, bool) or not isinstance(n, int) or n < 1:
            raise ValueError(f"Cannot split into {n!r} parts")

        base, remainder = divmod(self.minor_units, n)
        return [
            Money(minor_units=base + (1 if i < remainder else 0), currency=self.currency)
            for i in range(n)
        ]

    def __add__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other):
        if not isinstance(other, Money):
            return NotImplemented
        return self.subtract(other)

    def __lt__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.minor_units < other.minor_units

    def __le__(self, other: "Money") -> bool:
        self._check_currency(other)
        return self.minor_units <= other.minor_units

    def __str__(self) -> str:
        return f"{self.currency} {self.to_decimal()}"


def sum_money(values: Iterable[Money], currency: Optional[str] = None) -> Money:
    """
    Sum amounts of one currency.

    The result currency is `currency` if given, else that of the first
    value. An empty iterable needs `currency`.
    """
    total: Optional[Money] = Money.zero(currency) if currency else None
    for value in values:
        total = value if total is None else total.add(value)
    if total is None:
        raise ValueError("Cannot sum an empty sequence without a currency")
    return total
