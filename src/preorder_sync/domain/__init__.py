"""Domain records plus the pure helpers (code generation, answer mapping)."""

from .codes import generate_confirmation_code, normalize_code
from .mapping import FormResponse, MappedResponse, QuestionDef, QuestionLayout, map_response
from .models import (
    FormRegistration,
    InvoiceSection,
    InvoiceTemplate,
    OAuthAccount,
    OrderLine,
    OrderLineDetail,
    PreOrder,
    Product,
    ProductPrice,
    SmtpSettings,
    SyncSettings,
    default_invoice_template,
)

__all__ = [
    "generate_confirmation_code",
    "normalize_code",
    "FormResponse",
    "MappedResponse",
    "QuestionDef",
    "QuestionLayout",
    "map_response",
    "FormRegistration",
    "InvoiceSection",
    "InvoiceTemplate",
    "OAuthAccount",
    "OrderLine",
    "OrderLineDetail",
    "PreOrder",
    "Product",
    "ProductPrice",
    "SmtpSettings",
    "SyncSettings",
    "default_invoice_template",
]
