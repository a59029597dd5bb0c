"""Subscription Scanner - find recurring payments and receipts in Gmail."""

__version__ = "0.1.0"
