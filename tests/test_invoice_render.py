from __future__ import annotations

import base64

from preorder_sync.domain.models import InvoiceSection, OrderLineDetail, PreOrder, default_invoice_template
from preorder_sync.invoice.qr import make_qr_png
from preorder_sync.invoice.render import InvoiceRenderer, format_money, safe_color

ORDER = PreOrder(
    order_id=7,
    customer_name="Alice <Admin>",
    customer_email="a@x.com",
    confirmation_code="ABC12345",
    total_amount=30.0,
)
LINES = [OrderLineDetail(product_id=1, product_name="Widget", quantity=3, unit_price=10.0)]

BANNER_BYTES = b"\x89PNG\r\n\x1a\nbanner-bytes-for-test"
BANNER_B64 = base64.b64encode(BANNER_BYTES).decode("ascii")
QR_BYTES = b"\x89PNG\r\n\x1a\nqr-bytes-for-test"


def _template_with_banner():
    template = default_invoice_template()
    template.use_banner_image = True
    template.banner_image_url = f"data:image/png;base64,{BANNER_B64}"
    return template


def test_embedded_images_become_cid_attachments() -> None:
    rendered = InvoiceRenderer().render_invoice(_template_with_banner(), ORDER, LINES, QR_BYTES)

    assert len(rendered.attachments) == 2
    cids = {a.cid for a in rendered.attachments}
    assert len(cids) == 2
    for att in rendered.attachments:
        assert f'src="cid:{att.cid}"' in rendered.html
        assert att.content_type == "image/png"
    assert {a.content for a in rendered.attachments} == {BANNER_BYTES, QR_BYTES}
    assert BANNER_B64 not in rendered.html
    assert base64.b64encode(QR_BYTES).decode("ascii") not in rendered.html
    assert "data:image" not in rendered.html


def test_content_ids_follow_content() -> None:
    renderer = InvoiceRenderer()
    a = renderer.render_invoice(_template_with_banner(), ORDER, LINES, QR_BYTES)
    b = renderer.render_invoice(_template_with_banner(), ORDER, LINES, QR_BYTES)
    c = renderer.render_invoice(_template_with_banner(), ORDER, LINES, QR_BYTES + b"!")
    assert [x.cid for x in a.attachments] == [x.cid for x in b.attachments]
    assert {x.cid for x in a.attachments} != {x.cid for x in c.attachments}


def test_sections_follow_order_and_skip_disabled() -> None:
    template = default_invoice_template()
    template.sections = [
        InvoiceSection("footer", "footer", "Footer", enabled=True, order=0),
        InvoiceSection("header", "header", "Header", enabled=True, order=1),
        InvoiceSection("total", "total", "Total Amount", enabled=False, order=2),
        InvoiceSection("mystery", "confetti", "Unknown", enabled=True, order=3),
    ]
    html = InvoiceRenderer().render_invoice(template, ORDER, LINES, QR_BYTES).html

    assert html.index(template.footer_text) < html.index(template.header_title)
    assert 'class="total"' not in html
    assert "Total: " not in html
    assert "ABC12345" not in html  # qr section absent


def test_full_default_invoice_content() -> None:
    rendered = InvoiceRenderer().render_invoice(None, ORDER, LINES, QR_BYTES)
    html = rendered.html
    assert "Dear <strong>Alice &lt;Admin&gt;</strong>" in html
    assert "<Admin>" not in html
    assert '<div class="code">ABC12345</div>' in html
    assert "Widget" in html
    assert "Total: $30.00" in html
    assert "linear-gradient(135deg, #6366f1, #a855f7)" in html
    assert len(rendered.attachments) == 1


def test_remote_images_are_referenced_not_attached() -> None:
    template = default_invoice_template()
    template.use_banner_image = True
    template.banner_image_url = "https://cdn.example.com/banner.png"
    rendered = InvoiceRenderer().render_invoice(template, ORDER, LINES, qr_png=None)
    assert rendered.attachments == []
    assert 'src="https://cdn.example.com/banner.png"' in rendered.html
    assert "api.qrserver.com" in rendered.html


def test_local_banner_file_is_attached(tmp_path) -> None:
    banner = tmp_path / "banner.jpg"
    banner.write_bytes(b"jpeg-bytes")
    template = default_invoice_template()
    template.use_banner_image = True
    template.banner_image_url = str(banner)
    rendered = InvoiceRenderer().render_invoice(template, ORDER, LINES, QR_BYTES)
    kinds = {a.content_type for a in rendered.attachments}
    assert kinds == {"image/jpeg", "image/png"}


def test_untrusted_colours_fall_back_to_defaults() -> None:
    template = default_invoice_template()
    template.primary_color = "red; } body { display:none"
    template.secondary_color = "teal"
    html = InvoiceRenderer().render_invoice(template, ORDER, LINES, QR_BYTES).html
    assert "display:none" not in html
    assert "linear-gradient(135deg, #6366f1, teal)" in html
    assert safe_color("#abc", "#000") == "#abc"
    assert safe_color("#abcd", "#000") == "#000"


def test_confirmation_email_uses_green_theme() -> None:
    order = PreOrder(7, "Alice", "a@x.com", "ABC12345", status="confirmed", confirmed_at="2024-05-01 10:00:00")
    rendered = InvoiceRenderer().render_confirmation(None, order)
    assert "Order Confirmed" in rendered.html
    assert "#10b981" in rendered.html
    assert "2024-05-01 10:00:00" in rendered.html
    assert rendered.attachments == []

    with_banner = InvoiceRenderer().render_confirmation(_template_with_banner(), order)
    assert len(with_banner.attachments) == 1
    assert BANNER_B64 not in with_banner.html


def test_money_formatting() -> None:
    assert format_money(1234.5) == "$1,234.50"
    assert format_money(3, "eur") == "€3.00"
    assert format_money(3, "CHF") == "CHF 3.00"


def test_qr_png_is_a_png() -> None:
    png = make_qr_png("ABC12345")
    assert png.startswith(b"\x89PNG\r\n\x1a\n")
