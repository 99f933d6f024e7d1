"""One delivery attempt through whichever transport the credentials allow."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from ..domain.models import DEFAULT_SENDER_NAME, OAuthAccount, SmtpSettings
from ..errors import NotConfigured
from ..logging import get_logger
from .transports import (
    TRANSPORT_OAUTH,
    TRANSPORT_SMTP,
    MailRelayClient,
    OAuthTransport,
    OutgoingEmail,
    SmtpTransport,
    format_sender,
    relay_auth,
)

LOG = get_logger("mail-dispatch")


@dataclass(frozen=True)
class TransportChoice:
    kind: str  # oauth | smtp
    credentials: Union[OAuthAccount, SmtpSettings]

    @property
    def sender(self) -> str:
        """From header for messages sent with these credentials."""
        if self.kind == TRANSPORT_OAUTH:
            acct = self.credentials
            return format_sender(acct.sender_name or DEFAULT_SENDER_NAME, acct.sender_email or "")
        smtp = self.credentials
        return format_sender(smtp.from_name or DEFAULT_SENDER_NAME, smtp.from_email)


def select_transport(
    oauth: Optional[OAuthAccount],
    smtp: Optional[SmtpSettings],
) -> Optional[TransportChoice]:
    """Provider account if usable, else SMTP if configured, else None."""
    if oauth is not None and oauth.usable:
        return TransportChoice(TRANSPORT_OAUTH, oauth)
    if smtp is not None and smtp.host and smtp.username and smtp.password and smtp.from_email:
        return TransportChoice(TRANSPORT_SMTP, smtp)
    return None


class EmailDispatcher:
    """Submits exactly one send request; no retry.

    With a relay client the request goes to the relay service instead of
    talking to the provider or SMTP server directly.
    """

    def __init__(
        self,
        *,
        oauth_transport: Optional[OAuthTransport] = None,
        smtp_transport: Optional[SmtpTransport] = None,
        relay: Optional[MailRelayClient] = None,
    ) -> None:
        self.oauth_transport = oauth_transport or OAuthTransport()
        self.smtp_transport = smtp_transport or SmtpTransport()
        self.relay = relay

    def send(self, choice: Optional[TransportChoice], message: OutgoingEmail) -> str:
        """Deliver ``message``; returns the provider message id.

        Raises NotConfigured without a transport and TransportError when the
        provider rejects the request.
        """
        if choice is None:
            raise NotConfigured("No email transport available (provider account or SMTP)")
        LOG.info(f"Sending {message.subject!r} to {message.to} via {choice.kind}")
        if self.relay is not None:
            return self.relay.send(choice.kind, relay_auth(choice.kind, choice.credentials), message)
        if choice.kind == TRANSPORT_OAUTH:
            return self.oauth_transport.send(choice.credentials, message)
        if choice.kind == TRANSPORT_SMTP:
            return self.smtp_transport.send(choice.credentials, message)
        raise NotConfigured(f"Unsupported transport: {choice.kind}")
