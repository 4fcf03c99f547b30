"""
Values -- Immutable, self-validating value objects for billing amounts.

Responsibility:
    Every cost written onto a billing event is a Money: a Decimal amount in
    a supported currency.  Amount and currency travel together in domain
    code and are split into ``cost_amount`` / ``cost_currency`` columns only
    at the ORM boundary.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Failure modes:
    - ValueError on construction with a float, non-finite or unparsable
      amount, or an unsupported currency.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from billing_kernel.domain.currency import CurrencyRegistry


@dataclass(frozen=True, slots=True)
class Currency:
    """ISO 4217 currency code, normalized to upper case on construction."""

    code: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", CurrencyRegistry.validate(self.code))

    @property
    def quantum(self) -> Decimal:
        return CurrencyRegistry.get_info(self.code).quantum

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True, slots=True)
class Money:
    """
    Price of a renewal.

    Guarantees:
        - amount is a finite Decimal; floats are rejected, never converted
        - currency is a supported Currency

    Equality is exact: ``Money.of("13", "USD") == Money.of("13.00", "USD")``
    because Decimal equality ignores trailing zeros.
    """

    amount: Decimal
    currency: Currency

    def __post_init__(self) -> None:
        amount = self.amount
        if isinstance(amount, float):
            raise ValueError(f"Money amount must not be a float: {amount!r}")
        if not isinstance(amount, Decimal):
            try:
                amount = Decimal(str(amount))
            except InvalidOperation as e:
                raise ValueError(f"Invalid amount: {self.amount!r}") from e
            object.__setattr__(self, "amount", amount)
        if not amount.is_finite():
            raise ValueError(f"Money amount must be finite: {amount!r}")

        if isinstance(self.currency, str):
            object.__setattr__(self, "currency", Currency(self.currency))
        elif not isinstance(self.currency, Currency):
            raise TypeError(f"currency must be Currency or str, got {type(self.currency)}")

    @classmethod
    def of(cls, amount: Decimal | str | int, currency: str | Currency) -> Money:
        return cls(amount=amount, currency=currency)

    def __mul__(self, years: int) -> Money:
        """Scale a one-year price to a multi-year term."""
        if isinstance(years, bool) or not isinstance(years, (int, Decimal)):
            return NotImplemented
        return Money(self.amount * years, self.currency)

    __rmul__ = __mul__

    def round(self) -> Money:
        """Round half-up to the currency's minor unit."""
        return Money(
            self.amount.quantize(self.currency.quantum, rounding=ROUND_HALF_UP),
            self.currency,
        )

    def __str__(self) -> str:
        return f"{self.amount} {self.currency.code}"
