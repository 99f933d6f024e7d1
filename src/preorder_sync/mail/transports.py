from __future__ import annotations

import base64
import smtplib
from dataclasses import dataclass, field
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid, parseaddr
from typing import Any, Callable, Dict, List, Optional

import requests

from ..domain.models import OAuthAccount, SmtpSettings
from ..errors import TransportError
from ..invoice.render import InlineAttachment
from ..logging import get_logger

LOG = get_logger("mail-transport")

GMAIL_SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"

TRANSPORT_OAUTH = "oauth"
TRANSPORT_SMTP = "smtp"


@dataclass
class OutgoingEmail:
    sender: str  # formatted From header
    to: str
    subject: str
    html: str
    attachments: List[InlineAttachment] = field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "from": self.sender,
            "to": self.to,
            "subject": self.subject,
            "html": self.html,
            "attachments": [a.to_wire() for a in self.attachments],
        }

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "OutgoingEmail":
        return cls(
            sender=str(data.get("from") or ""),
            to=str(data.get("to") or ""),
            subject=str(data.get("subject") or ""),
            html=str(data.get("html") or ""),
            attachments=[InlineAttachment.from_wire(a) for a in data.get("attachments") or [] if isinstance(a, dict)],
        )


def format_sender(name: Optional[str], address: str) -> str:
    return formataddr((name or "", address)) if name else address


def build_mime(message: OutgoingEmail) -> MIMEMultipart:
    """multipart/related body: the HTML first, then one inline part per content id."""
    msg = MIMEMultipart("related")
    msg["From"] = message.sender
    msg["To"] = message.to
    msg["Subject"] = message.subject
    domain = parseaddr(message.sender)[1].rpartition("@")[2] or None
    msg["Message-ID"] = make_msgid(domain=domain)
    msg.attach(MIMEText(message.html, "html", "utf-8"))
    for att in message.attachments:
        maintype, _, subtype = att.content_type.partition("/")
        part = MIMEBase(maintype or "application", subtype or "octet-stream")
        part.set_payload(att.content)
        encoders.encode_base64(part)
        part.add_header("Content-ID", f"<{att.cid}>")
        part.add_header("Content-Disposition", "inline", filename=att.filename)
        msg.attach(part)
    return msg


class OAuthTransport:
    """Sends through the provider account (Gmail REST, raw RFC 822 message)."""

    def __init__(self, *, session: Optional[requests.Session] = None, api_url: str = GMAIL_SEND_URL, timeout: int = 30) -> None:
        self.s = session or requests.Session()
        self.api_url = api_url
        self.timeout = int(timeout)

    def send(self, account: OAuthAccount, message: OutgoingEmail) -> str:
        raw = base64.urlsafe_b64encode(build_mime(message).as_bytes()).decode("ascii").rstrip("=")
        try:
            r = self.s.post(
                self.api_url,
                json={"raw": raw},
                headers={"Authorization": f"Bearer {account.access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(TRANSPORT_OAUTH, str(e)) from e
        if not r.ok:
            raise TransportError(TRANSPORT_OAUTH, f"Gmail API error: {r.text}", status_code=r.status_code)
        try:
            message_id = str((r.json() or {}).get("id") or "")
        except ValueError:
            message_id = ""
        LOG.info(f"Email sent via Gmail API: {message_id} ({len(message.attachments)} inline part(s))")
        return message_id


class SmtpTransport:
    """Implicit TLS on port 465, STARTTLS otherwise."""

    def __init__(self, *, timeout: int = 30, smtp_factory: Optional[Callable[..., smtplib.SMTP]] = None) -> None:
        self.timeout = int(timeout)
        self.smtp_factory = smtp_factory

    def _open(self, settings: SmtpSettings) -> smtplib.SMTP:
        if self.smtp_factory is not None:
            return self.smtp_factory(settings.host, settings.port, timeout=self.timeout)
        if settings.secure:
            return smtplib.SMTP_SSL(settings.host, settings.port, timeout=self.timeout)
        return smtplib.SMTP(settings.host, settings.port, timeout=self.timeout)

    def send(self, settings: SmtpSettings, message: OutgoingEmail) -> str:
        mime = build_mime(message)
        try:
            with self._open(settings) as server:
                if not settings.secure:
                    server.starttls()
                server.login(settings.username, settings.password)
                server.send_message(mime)
        except (smtplib.SMTPException, OSError) as e:
            raise TransportError(TRANSPORT_SMTP, str(e)) from e
        message_id = str(mime["Message-ID"])
        LOG.info(f"Email sent via SMTP {settings.host}:{settings.port}: {message_id}")
        return message_id


class MailRelayClient:
    """Client for a relay service exposing ``POST /email/send``."""

    def __init__(self, base_url: str, *, session: Optional[requests.Session] = None, timeout: int = 60) -> None:
        self.base = base_url.rstrip("/")
        self.timeout = int(timeout)
        self.s = session or requests.Session()
        self.s.headers.update({"Accept": "application/json"})

    def _url(self, path: str) -> str:
        return f"{self.base}{path}"

    def send(self, kind: str, auth: Dict[str, Any], message: OutgoingEmail) -> str:
        payload = {"type": kind, "auth": auth, "email": message.to_wire()}
        try:
            r = self.s.post(self._url("/email/send"), json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(kind, f"relay unreachable: {e}") from e
        try:
            body = r.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        if not r.ok or not body.get("success"):
            detail = body.get("error") or r.text
            raise TransportError(kind, str(detail), status_code=r.status_code)
        return str(body.get("messageId") or "")

    def health(self) -> Dict[str, Any]:
        r = self.s.get(self._url("/health"), timeout=self.timeout)
        r.raise_for_status()
        return r.json()


def relay_auth(kind: str, credentials: Any) -> Dict[str, Any]:
    """Credential block in the relay's request shape."""
    if kind == TRANSPORT_OAUTH:
        return {"accessToken": credentials.access_token}
    return {
        "host": credentials.host,
        "port": int(credentials.port),
        "secure": bool(credentials.secure),
        "user": credentials.username,
        "pass": credentials.password,
    }
