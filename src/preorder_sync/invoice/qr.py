from __future__ import annotations

import io
from urllib.parse import quote

import qrcode
from qrcode.constants import ERROR_CORRECT_M

QR_CONTENT_TYPE = "image/png"


def make_qr_png(data: str, *, box_size: int = 10, border: int = 2) -> bytes:
    """Render ``data`` (a confirmation code) as a PNG QR image."""
    qr = qrcode.QRCode(version=None, error_correction=ERROR_CORRECT_M, box_size=box_size, border=border)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = io.BytesIO()
    img.save(buf)
    return buf.getvalue()


def remote_qr_url(data: str, size: int = 150) -> str:
    """Hosted QR fallback for when no PNG could be produced locally."""
    return f"https://api.qrserver.com/v1/create-qr-code/?size={size}x{size}&data={quote(data)}"
