from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Sequence

from ..domain.codes import generate_confirmation_code
from ..domain.mapping import MappedResponse
from ..domain.models import ORDER_STATUS_PENDING, OrderLine, PreOrder
from ..errors import CodeCollision
from ..logging import get_logger
from ..store.db import OrderDatabase, is_code_collision

LOG = get_logger("order-ingest")

DEFAULT_CODE_ATTEMPTS = 5


def import_note(form_id: str, when: Optional[datetime] = None) -> str:
    stamp = (when or datetime.now(timezone.utc)).strftime("%Y-%m-%d %H:%M:%S UTC")
    return f"Imported from form {form_id} on {stamp}"


class OrderIngestor:
    """Creates an order and its lines as one unit under a fresh confirmation code.

    Form imports and manual entry both end in ``create_order``.
    """

    def __init__(
        self,
        db: OrderDatabase,
        *,
        code_generator: Callable[[], str] = generate_confirmation_code,
        max_code_attempts: int = DEFAULT_CODE_ATTEMPTS,
    ) -> None:
        self.db = db
        self.code_generator = code_generator
        self.max_code_attempts = max(1, int(max_code_attempts))

    def create_order(
        self,
        customer_name: str,
        customer_email: str,
        lines: Sequence[OrderLine],
        *,
        notes: Optional[str] = None,
    ) -> PreOrder:
        if not lines:
            raise ValueError("An order needs at least one line")
        total = round(sum(line.subtotal for line in lines), 2)
        for attempt in range(1, self.max_code_attempts + 1):
            order = PreOrder(
                order_id=None,
                customer_name=customer_name,
                customer_email=customer_email,
                confirmation_code=self.code_generator(),
                status=ORDER_STATUS_PENDING,
                total_amount=total,
                notes=notes,
            )
            try:
                order_id = self.db.insert_order(order, lines)
            except sqlite3.IntegrityError as exc:
                if is_code_collision(exc):
                    LOG.warning(f"Confirmation code collision on attempt {attempt}; regenerating")
                    continue
                raise
            LOG.info(
                f"Created order #{order_id} for {customer_email} "
                f"({len(lines)} line(s), total {total:.2f}, code {order.confirmation_code})"
            )
            return self.db.get_order(order_id) or order
        raise CodeCollision(f"No unique confirmation code after {self.max_code_attempts} attempt(s)")

    def ingest_mapped(self, mapped: MappedResponse, *, form_id: str) -> PreOrder:
        """Persist a mapped form response; the caller marks it synced afterwards."""
        lines = [
            OrderLine(product_id=line.product_id, quantity=line.quantity, unit_price=line.unit_price)
            for line in mapped.lines
        ]
        return self.create_order(
            mapped.customer_name,
            mapped.customer_email,
            lines,
            notes=import_note(form_id),
        )

    def create_manual_order(
        self,
        customer_name: str,
        customer_email: str,
        quantities: Mapping[int, int],
        *,
        notes: Optional[str] = None,
    ) -> PreOrder:
        """Order typed in by the seller; prices come from the current catalog."""
        name = (customer_name or "").strip()
        email = (customer_email or "").strip()
        if not name or not email:
            raise ValueError("Customer name and email are required")
        lines = []
        for product_id, qty in quantities.items():
            qty = int(qty)
            if qty <= 0:
                continue
            product = self.db.get_product(int(product_id))
            if product is None:
                raise ValueError(f"Unknown product id: {product_id}")
            lines.append(OrderLine(product_id=product.product_id, quantity=qty, unit_price=float(product.price)))
        if not lines:
            raise ValueError("Select at least one product with a positive quantity")
        return self.create_order(name, email, lines, notes=notes)
