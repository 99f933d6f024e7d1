"""Pickup confirmation: each confirmation code is redeemed at most once.

``pending``/``sent`` -> ``confirmed`` is the only transition handled here;
``confirmed`` is terminal. Redeeming a claimed code again is a normal
result (``ALREADY_CLAIMED``) carrying the original confirmation time.
"""

from __future__ import annotations

import enum
import sqlite3
from dataclasses import dataclass
from typing import Callable, Optional

from ..domain.codes import generate_confirmation_code, normalize_code
from ..domain.models import PreOrder
from ..errors import CodeCollision, PreorderError
from ..logging import get_logger
from ..store.db import OrderDatabase, is_code_collision
from .mailer import OrderMailer

LOG = get_logger("order-confirm")


class ConfirmationOutcome(enum.Enum):
    CONFIRMED = "confirmed"
    ALREADY_CLAIMED = "already_claimed"
    NOT_FOUND = "not_found"


@dataclass
class ConfirmationResult:
    outcome: ConfirmationOutcome
    code: str
    order: Optional[PreOrder] = None
    warning: Optional[str] = None

    @property
    def first_time(self) -> bool:
        return self.outcome is ConfirmationOutcome.CONFIRMED

    @property
    def confirmed_at(self) -> Optional[str]:
        return self.order.confirmed_at if self.order else None

    @property
    def message(self) -> str:
        if self.outcome is ConfirmationOutcome.NOT_FOUND:
            return f"No order found with code {self.code}"
        if self.outcome is ConfirmationOutcome.ALREADY_CLAIMED:
            return f"Order {self.code} was already claimed at {self.confirmed_at}"
        text = f"Order {self.code} confirmed"
        return f"{text} ({self.warning})" if self.warning else text


@dataclass
class ReissueResult:
    order: PreOrder
    previous_code: str
    warning: Optional[str] = None


class OrderConfirmation:
    def __init__(
        self,
        db: OrderDatabase,
        *,
        mailer: Optional[OrderMailer] = None,
        code_generator: Callable[[], str] = generate_confirmation_code,
        max_code_attempts: int = 5,
    ) -> None:
        self.db = db
        self.mailer = mailer
        self.code_generator = code_generator
        self.max_code_attempts = max(1, int(max_code_attempts))

    def confirm_by_code(self, code: str) -> ConfirmationResult:
        normalized = normalize_code(code)
        order = self.db.get_order_by_code(normalized) if normalized else None
        if order is None:
            LOG.info(f"Confirmation attempt with unknown code {normalized!r}")
            return ConfirmationResult(ConfirmationOutcome.NOT_FOUND, normalized)
        if order.is_confirmed:
            LOG.warning(f"Code {normalized} already claimed at {order.confirmed_at}")
            return ConfirmationResult(ConfirmationOutcome.ALREADY_CLAIMED, normalized, order)

        # Guarded UPDATE: only one caller can win the transition
        if not self.db.confirm_order(order.order_id):
            current = self.db.get_order(order.order_id)
            LOG.warning(f"Code {normalized} was claimed concurrently")
            return ConfirmationResult(ConfirmationOutcome.ALREADY_CLAIMED, normalized, current)

        confirmed = self.db.get_order(order.order_id) or order
        LOG.info(f"Order #{confirmed.order_id} confirmed with code {normalized}")
        result = ConfirmationResult(ConfirmationOutcome.CONFIRMED, normalized, confirmed)
        if self.mailer is not None:
            try:
                self.mailer.send_confirmation(confirmed)
            except PreorderError as exc:
                LOG.warning(f"Order {normalized} confirmed but notification email failed: {exc}")
                result.warning = f"Order confirmed but email failed: {exc}"
        return result

    def reissue_code(self, order_id: int) -> ReissueResult:
        """Replace the code of an unredeemed order, then resend the invoice.

        The new code is committed before any email goes out.
        """
        order = self.db.get_order(order_id)
        if order is None:
            raise LookupError(f"Order {order_id} not found")
        if order.is_confirmed:
            raise ValueError(f"Order {order_id} was already confirmed; its code cannot change")

        new_code = None
        for attempt in range(1, self.max_code_attempts + 1):
            candidate = self.code_generator()
            try:
                self.db.update_confirmation_code(order_id, candidate)
            except sqlite3.IntegrityError as exc:
                if is_code_collision(exc):
                    LOG.warning(f"Reissue code collision on attempt {attempt}; regenerating")
                    continue
                raise
            new_code = candidate
            break
        if new_code is None:
            raise CodeCollision(f"No unique confirmation code after {self.max_code_attempts} attempt(s)")

        updated = self.db.get_order(order_id)
        LOG.info(f"Order #{order_id}: code {order.confirmation_code} replaced by {new_code}")
        result = ReissueResult(order=updated, previous_code=order.confirmation_code)
        if self.mailer is not None:
            try:
                self.mailer.send_invoice(updated, updated=True)
            except PreorderError as exc:
                LOG.warning(f"Order #{order_id} has new code {new_code} but email failed: {exc}")
                result.warning = f"Code regenerated but email failed: {exc}"
        return result

    def delete_order(self, order_id: int) -> bool:
        return self.db.delete_order(order_id)
