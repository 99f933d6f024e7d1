from __future__ import annotations

from typing import Callable, Optional

from ..domain.models import ORDER_STATUS_PENDING, ORDER_STATUS_SENT, OAuthAccount, PreOrder, SmtpSettings
from ..errors import EmailDeliveryFailed, TransportError
from ..invoice.qr import make_qr_png
from ..invoice.render import InvoiceRenderer, RenderedEmail
from ..logging import get_logger
from ..mail.dispatch import EmailDispatcher, TransportChoice, select_transport
from ..mail.transports import OutgoingEmail
from ..store.db import OrderDatabase

LOG = get_logger("order-mailer")

INVOICE_SUBJECT = "Pre-Order Invoice"
UPDATED_INVOICE_SUBJECT = "Updated Order Invoice"
CONFIRMED_SUBJECT = "Order Confirmed"


class OrderMailer:
    """Renders order emails and hands them to the dispatcher.

    Credentials stored in the database take precedence; ``oauth``/``smtp``
    passed here (typically from the environment) fill in when none are stored.
    """

    def __init__(
        self,
        db: OrderDatabase,
        dispatcher: EmailDispatcher,
        *,
        renderer: Optional[InvoiceRenderer] = None,
        oauth: Optional[OAuthAccount] = None,
        smtp: Optional[SmtpSettings] = None,
        qr_factory: Callable[[str], bytes] = make_qr_png,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.renderer = renderer or InvoiceRenderer()
        self.oauth = oauth
        self.smtp = smtp
        self.qr_factory = qr_factory

    def transport(self) -> Optional[TransportChoice]:
        stored_oauth = self.db.get_oauth_account()
        oauth = stored_oauth if stored_oauth is not None and stored_oauth.usable else self.oauth
        smtp = self.db.get_smtp_settings() or self.smtp
        return select_transport(oauth, smtp)

    def _deliver(self, order: PreOrder, subject: str, rendered: RenderedEmail) -> str:
        choice = self.transport()
        message = OutgoingEmail(
            sender=choice.sender if choice else "",
            to=order.customer_email,
            subject=subject,
            html=rendered.html,
            attachments=rendered.attachments,
        )
        # NotConfigured when choice is None
        try:
            return self.dispatcher.send(choice, message)
        except TransportError as exc:
            raise EmailDeliveryFailed(order.order_id, exc) from exc

    def render_invoice(self, order: PreOrder) -> RenderedEmail:
        return self.renderer.render_invoice(
            self.db.get_invoice_template(),
            order,
            self.db.order_lines(order.order_id),
            self.qr_factory(order.confirmation_code),
        )

    def send_invoice(self, order: PreOrder, *, updated: bool = False) -> str:
        """Email the invoice; a pending order becomes ``sent`` on success."""
        prefix = UPDATED_INVOICE_SUBJECT if updated else INVOICE_SUBJECT
        message_id = self._deliver(order, f"{prefix} - {order.confirmation_code}", self.render_invoice(order))
        if order.status == ORDER_STATUS_PENDING and order.order_id is not None:
            self.db.set_status(order.order_id, ORDER_STATUS_SENT)
        return message_id

    def send_confirmation(self, order: PreOrder) -> str:
        rendered = self.renderer.render_confirmation(self.db.get_invoice_template(), order, order.confirmed_at)
        return self._deliver(order, f"{CONFIRMED_SUBJECT} - {order.confirmation_code}", rendered)
