"""
Billing Kernel -- shared infrastructure for registry billing jobs.

Provides:
- Typed exceptions with machine-readable codes
- Structured JSON logging
- SQLAlchemy declarative base, engine and transactional retry
- Append-only enforcement for materialized billing records
- Injectable clocks and the Money value object
"""

__version__ = "0.1.0"
