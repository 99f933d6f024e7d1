"""Failure taxonomy shared by the sync, ordering and mail layers.

Skipped mappings and repeated redemptions are not errors; they show up as
result values (``None`` from the mapper, ``ConfirmationOutcome.ALREADY_CLAIMED``).
"""

from __future__ import annotations

from typing import Optional


class PreorderError(Exception):
    """Base class for all errors raised by this package."""


class NotConfigured(PreorderError):
    """Required credentials or transport settings are missing."""


class RemoteFetchFailed(PreorderError):
    """The form provider could not be reached or answered with an error."""

    def __init__(self, form_id: str, detail: str, status_code: Optional[int] = None) -> None:
        self.form_id = form_id
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"Form {form_id}: {detail}")


class TransportError(PreorderError):
    """A mail transport rejected a send request.

    ``detail`` carries the provider's raw error text.
    """

    def __init__(self, transport: str, detail: str, status_code: Optional[int] = None) -> None:
        self.transport = transport
        self.detail = detail
        self.status_code = status_code
        super().__init__(f"{transport} send failed: {detail}")


class CodeCollision(PreorderError):
    """A generated confirmation code already exists and retries ran out."""


class EmailDeliveryFailed(PreorderError):
    """An order was persisted but its email could not be delivered."""

    def __init__(self, order_id: Optional[int], cause: TransportError) -> None:
        self.order_id = order_id
        self.cause = cause
        super().__init__(str(cause))
