"""Billing engine: payment-event reconciliation service."""

__version__ = "0.1.0"
