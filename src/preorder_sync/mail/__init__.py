from .dispatch import EmailDispatcher, TransportChoice, select_transport
from .transports import MailRelayClient, OAuthTransport, OutgoingEmail, SmtpTransport, build_mime

__all__ = [
    "EmailDispatcher",
    "MailRelayClient",
    "OAuthTransport",
    "OutgoingEmail",
    "SmtpTransport",
    "TransportChoice",
    "build_mime",
    "select_transport",
]
