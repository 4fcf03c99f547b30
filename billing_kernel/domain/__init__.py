"""
Pure kernel domain layer: clocks and money.

No dependencies on ORM, database or I/O (SystemClock aside).
"""

from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from billing_kernel.domain.values import Currency, Money

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "Currency",
    "Money",
]
