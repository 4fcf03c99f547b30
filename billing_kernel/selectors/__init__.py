"""Read-side base for billing selectors."""

from billing_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
