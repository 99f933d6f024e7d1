"""
Pre-order tracker – form sync and order confirmation core.

Pulls new submissions from registered forms, turns them into pre-orders
exactly once, issues a confirmation code per order and emails an invoice.
Confirmation codes are later redeemed once at pickup.
"""

__version__ = "0.3.0"

__all__ = [
    "config",
    "errors",
    "logging",
    "paths",
]
