"""HTML invoice and confirmation emails built from an InvoiceTemplate.

Sections are emitted in ascending ``order`` and disabled or unknown kinds are
skipped. Embedded images (base64 data URIs, local files, the generated QR PNG)
never end up inline: each becomes an attachment part keyed by a content id
derived from its bytes, and the HTML references it as ``cid:<id>``.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import html
import mimetypes
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from ..domain.models import (
    SECTION_FOOTER,
    SECTION_GREETING,
    SECTION_HEADER,
    SECTION_ITEMS_TABLE,
    SECTION_QR_CODE,
    SECTION_TOTAL,
    InvoiceTemplate,
    OrderLineDetail,
    PreOrder,
    default_invoice_template,
)
from ..logging import get_logger
from .qr import QR_CONTENT_TYPE, remote_qr_url

LOG = get_logger("invoice-render")

DATA_URI_RE = re.compile(r"^data:(image/[a-zA-Z+]+);base64,(.+)$", re.DOTALL)
HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
NAMED_COLOR_RE = re.compile(r"^[a-zA-Z]{3,20}$")

CONFIRM_PRIMARY = "#10b981"
CONFIRM_SECONDARY = "#059669"

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "IDR": "Rp",
}


@dataclass
class InlineAttachment:
    filename: str
    content: bytes
    content_type: str
    cid: str

    def to_wire(self) -> Dict[str, str]:
        """JSON shape used by the mail relay."""
        return {
            "filename": self.filename,
            "content": base64.b64encode(self.content).decode("ascii"),
            "encoding": "base64",
            "cid": self.cid,
            "contentType": self.content_type,
        }

    @classmethod
    def from_wire(cls, data: Dict[str, str]) -> "InlineAttachment":
        raw = data.get("content") or ""
        if (data.get("encoding") or "base64") == "base64":
            content = base64.b64decode(raw)
        else:
            content = raw.encode("utf-8")
        return cls(
            filename=str(data.get("filename") or "attachment"),
            content=content,
            content_type=str(data.get("contentType") or "application/octet-stream"),
            cid=str(data.get("cid") or ""),
        )


@dataclass
class RenderedEmail:
    html: str
    attachments: List[InlineAttachment] = field(default_factory=list)


def content_id(stem: str, content: bytes) -> str:
    return f"{stem}_{hashlib.sha256(content).hexdigest()[:16]}"


def safe_color(value: Optional[str], fallback: str) -> str:
    """Only hex codes or plain colour names reach the stylesheet."""
    v = (value or "").strip()
    if HEX_COLOR_RE.match(v) or NAMED_COLOR_RE.match(v):
        return v
    if v:
        LOG.warning(f"Ignoring invalid colour value {v!r}; using {fallback}")
    return fallback


def format_money(amount: float, currency: str = "USD") -> str:
    code = (currency or "USD").upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    prefix = symbol if symbol else f"{code} "
    return f"{prefix}{float(amount):,.2f}"


class _Attachments:
    """Collects inline parts, one per distinct content id."""

    def __init__(self) -> None:
        self.parts: List[InlineAttachment] = []

    def add(self, stem: str, content: bytes, content_type: str) -> str:
        cid = content_id(stem, content)
        if not any(p.cid == cid for p in self.parts):
            ext = mimetypes.guess_extension(content_type) or ".bin"
            self.parts.append(InlineAttachment(f"{stem}{ext}", content, content_type, cid))
        return cid

    def image_src(self, stem: str, url: str) -> str:
        """``cid:`` reference for embedded or local images; remote URLs pass through."""
        m = DATA_URI_RE.match(url.strip())
        if m:
            try:
                content = base64.b64decode(m.group(2), validate=False)
            except (binascii.Error, ValueError):
                LOG.warning(f"{stem}: data URI is not valid base64; image omitted")
                return ""
            return "cid:" + self.add(stem, content, m.group(1))
        if url.startswith(("http://", "https://", "cid:")):
            return url
        path = url[len("file://"):] if url.startswith("file://") else url
        if os.path.isfile(path):
            with open(path, "rb") as fh:
                content = fh.read()
            content_type = mimetypes.guess_type(path)[0] or "image/png"
            return "cid:" + self.add(stem, content, content_type)
        LOG.warning(f"{stem}: image reference {url!r} could not be resolved; image omitted")
        return ""


_STYLE = """
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
    .content {{ background: #f9fafb; padding: 30px; border: 1px solid #e5e7eb; border-top: none; }}
    .code-box {{ background: white; border: 2px dashed {primary}; padding: 20px; text-align: center; margin: 20px 0; border-radius: 10px; }}
    .code {{ font-size: 32px; font-weight: bold; color: {primary}; letter-spacing: 4px; font-family: monospace; }}
    table {{ width: 100%; border-collapse: collapse; margin: 20px 0; background: white; }}
    th {{ background: #f3f4f6; padding: 12px; text-align: left; font-weight: 600; }}
    .total {{ font-size: 24px; font-weight: bold; color: {primary}; }}
    .order-info {{ background: white; border-left: 4px solid {primary}; padding: 15px; margin: 20px 0; }}
    .footer {{ text-align: center; padding: 20px; color: #6b7280; font-size: 14px; }}
"""


def _document(body: str, primary: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n<style>"
        + _STYLE.format(primary=primary)
        + "</style>\n</head>\n<body>\n<div class=\"container\">\n"
        + body
        + "\n</div>\n</body>\n</html>\n"
    )


def _header_html(title: str, subtitle: str, primary: str, secondary: str, banner_src: str) -> str:
    title = html.escape(title)
    subtitle = html.escape(subtitle)
    if banner_src:
        return (
            f'<div style="text-align: center; background-color: {primary}; border-radius: 10px 10px 0 0; overflow: hidden;">'
            f'<img src="{html.escape(banner_src, quote=True)}" alt="Banner" '
            'style="width: 100%; max-height: 200px; object-fit: cover; display: block;" />'
            '<div style="margin-top: -60px; padding-bottom: 20px; position: relative;">'
            f'<h1 style="margin: 0; text-shadow: 0 2px 4px rgba(0,0,0,0.5); color: white;">{title}</h1>'
            f'<p style="margin: 5px 0 0 0; opacity: 0.9; text-shadow: 0 1px 2px rgba(0,0,0,0.5); color: white;">{subtitle}</p>'
            "</div></div>"
        )
    style = (
        "padding: 30px; text-align: center; border-radius: 10px 10px 0 0; color: white; "
        f"background: linear-gradient(135deg, {primary}, {secondary});"
    )
    return (
        f'<div class="header" style="{style}">'
        f'<h1 style="margin: 0;">{title}</h1>'
        f'<p style="margin: 10px 0 0 0; opacity: 0.9;">{subtitle}</p>'
        "</div>"
    )


class InvoiceRenderer:
    """Turns an order plus template into a RenderedEmail."""

    def __init__(self, currency: str = "USD") -> None:
        self.currency = currency

    def render_invoice(
        self,
        template: Optional[InvoiceTemplate],
        order: PreOrder,
        lines: Sequence[OrderLineDetail],
        qr_png: Optional[bytes] = None,
    ) -> RenderedEmail:
        template = template or default_invoice_template()
        defaults = default_invoice_template()
        primary = safe_color(template.primary_color, defaults.primary_color)
        secondary = safe_color(template.secondary_color, defaults.secondary_color)
        parts = _Attachments()

        def money(amount: float) -> str:
            return html.escape(format_money(amount, self.currency))

        def header() -> str:
            banner_src = parts.image_src("banner", template.banner_image_url) if template.has_banner else ""
            return _header_html(template.header_title, template.header_subtitle, primary, secondary, banner_src)

        def greeting() -> str:
            return (
                '<div class="content">'
                f"<p>Dear <strong>{html.escape(order.customer_name)}</strong>,</p>"
                "<p>Thank you for your pre-order. Please find your order details below:</p>"
                "</div>"
            )

        def qr_code() -> str:
            code = html.escape(order.confirmation_code)
            if qr_png:
                src = "cid:" + parts.add("qrcode", qr_png, QR_CONTENT_TYPE)
            else:
                src = remote_qr_url(order.confirmation_code)
            return (
                '<div class="content"><div class="code-box">'
                '<p style="margin: 0 0 10px 0; color: #6b7280;">Your Confirmation Code:</p>'
                '<div style="text-align: center; margin: 10px 0;">'
                f'<img src="{html.escape(src, quote=True)}" alt="QR Code" width="150" height="150" />'
                "</div>"
                f'<div class="code">{code}</div>'
                '<p style="margin: 10px 0 0 0; color: #6b7280; font-size: 14px;">'
                "Present this code to confirm your order pickup</p>"
                "</div></div>"
            )

        def items_table() -> str:
            cell = "padding: 12px; border-bottom: 1px solid #eee;"
            rows = "".join(
                "<tr>"
                f'<td style="{cell}">{html.escape(line.product_name)}</td>'
                f'<td style="{cell} text-align: center;">{int(line.quantity)}</td>'
                f'<td style="{cell} text-align: right;">{money(line.unit_price)}</td>'
                f'<td style="{cell} text-align: right;">{money(line.subtotal)}</td>'
                "</tr>"
                for line in lines
            )
            return (
                '<div class="content"><table><thead><tr>'
                "<th>Product</th>"
                '<th style="text-align: center;">Qty</th>'
                '<th style="text-align: right;">Price</th>'
                '<th style="text-align: right;">Subtotal</th>'
                f"</tr></thead><tbody>{rows}</tbody></table></div>"
            )

        def total() -> str:
            return (
                '<div class="content"><div style="text-align: right; padding: 20px; background: white; border-radius: 10px;">'
                f'<span class="total">Total: {money(order.total_amount)}</span>'
                "</div></div>"
            )

        def footer() -> str:
            return f'<div class="footer"><p>{html.escape(template.footer_text)}</p></div>'

        builders: Dict[str, Callable[[], str]] = {
            SECTION_HEADER: header,
            SECTION_GREETING: greeting,
            SECTION_QR_CODE: qr_code,
            SECTION_ITEMS_TABLE: items_table,
            SECTION_TOTAL: total,
            SECTION_FOOTER: footer,
        }
        blocks: List[str] = []
        for section in template.ordered_sections():
            build = builders.get(section.kind)
            if build is None:
                LOG.debug(f"Skipping unknown section kind {section.kind!r}")
                continue
            blocks.append(build())

        LOG.debug(
            "Rendered invoice for order %s: %d section(s), %d inline part(s)",
            order.order_id,
            len(blocks),
            len(parts.parts),
        )
        return RenderedEmail(html=_document("\n".join(blocks), primary), attachments=parts.parts)

    def render_confirmation(
        self,
        template: Optional[InvoiceTemplate],
        order: PreOrder,
        confirmed_at: Optional[str] = None,
    ) -> RenderedEmail:
        """Pickup notification; keeps the banner but uses the green theme."""
        template = template or default_invoice_template()
        parts = _Attachments()
        banner_src = parts.image_src("banner", template.banner_image_url) if template.has_banner else ""
        header = _header_html(
            "Order Confirmed",
            "Your order has been successfully picked up!",
            CONFIRM_PRIMARY,
            CONFIRM_SECONDARY,
            banner_src,
        )
        when = html.escape(confirmed_at or order.confirmed_at or "")
        body = (
            header
            + '<div class="content">'
            + f"<p>Dear <strong>{html.escape(order.customer_name)}</strong>,</p>"
            + "<p>This email is to confirm that your order "
            + f"<strong>{html.escape(order.confirmation_code)}</strong> has been successfully processed and picked up.</p>"
            + '<div class="order-info">'
            + '<p style="margin: 0;"><strong>Status:</strong> Confirmed &amp; Completed</p>'
            + f'<p style="margin: 5px 0 0 0;"><strong>Time:</strong> {when}</p>'
            + "</div>"
            + "<p>Thank you for your business!</p>"
            + "</div>"
            + f'<div class="footer"><p>{html.escape(template.footer_text)}</p></div>'
        )
        return RenderedEmail(html=_document(body, CONFIRM_PRIMARY), attachments=parts.parts)
