"""
Currency -- ISO 4217 codes renew prices may be quoted in.

A registry bills in a handful of currencies; anything not listed here is a
configuration mistake rather than something to guess the precision of.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import ClassVar


@dataclass(frozen=True)
class CurrencyInfo:
    code: str
    minor_units: int

    @property
    def quantum(self) -> Decimal:
        """Smallest representable amount, for ``Decimal.quantize()``."""
        return Decimal(1).scaleb(-self.minor_units)


class CurrencyRegistry:
    """Supported currencies, keyed by upper-case ISO 4217 code."""

    # code -> number of minor units (ISO 4217 exponent)
    _MINOR_UNITS: ClassVar[dict[str, int]] = {
        "AUD": 2, "BRL": 2, "CAD": 2, "CHF": 2, "CNY": 2, "DKK": 2,
        "EUR": 2, "GBP": 2, "HKD": 2, "INR": 2, "NOK": 2, "NZD": 2,
        "PLN": 2, "SEK": 2, "SGD": 2, "USD": 2,
        "JPY": 0, "KRW": 0,
        "BHD": 3, "KWD": 3,
    }

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo | None:
        if not isinstance(code, str):
            return None
        normalized = code.strip().upper()
        minor_units = cls._MINOR_UNITS.get(normalized)
        if minor_units is None:
            return None
        return CurrencyInfo(normalized, minor_units)

    @classmethod
    def is_valid(cls, code: str) -> bool:
        return cls.get_info(code) is not None

    @classmethod
    def validate(cls, code: str) -> str:
        """Return the normalized code, or raise ValueError."""
        info = cls.get_info(code)
        if info is None:
            raise ValueError(f"Unsupported ISO 4217 currency code: {code!r}")
        return info.code
