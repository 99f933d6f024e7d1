from .qr import make_qr_png
from .render import InlineAttachment, InvoiceRenderer, RenderedEmail, format_money

__all__ = ["InlineAttachment", "InvoiceRenderer", "RenderedEmail", "format_money", "make_qr_png"]
