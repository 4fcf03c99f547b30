"""Read-only selectors for the expansion engine."""

from billing_batch.selectors.billing_event_selector import BillingEventSelector
from billing_batch.selectors.recurrence_selector import RecurrenceSelector

__all__ = ["BillingEventSelector", "RecurrenceSelector"]
