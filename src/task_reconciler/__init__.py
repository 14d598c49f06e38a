"""Task graph reconciliation and expansion engine."""

__version__ = "0.1.0"
