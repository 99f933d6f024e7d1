from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_CONFIRMED = "confirmed"
ORDER_STATUS_SENT = "sent"

ORDER_STATUSES: Tuple[str, ...] = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_SENT,
)

SECTION_HEADER = "header"
SECTION_GREETING = "greeting"
SECTION_QR_CODE = "qr_code"
SECTION_ITEMS_TABLE = "items_table"
SECTION_TOTAL = "total"
SECTION_FOOTER = "footer"

SECTION_KINDS: Tuple[str, ...] = (
    SECTION_HEADER,
    SECTION_GREETING,
    SECTION_QR_CODE,
    SECTION_ITEMS_TABLE,
    SECTION_TOTAL,
    SECTION_FOOTER,
)

MIN_SYNC_INTERVAL_MINUTES = 1
DEFAULT_SYNC_INTERVAL_MINUTES = 15
DEFAULT_SENDER_NAME = "POTracker"


@dataclass
class ProductPrice:
    currency_code: str
    price: float
    price_id: Optional[int] = None


@dataclass
class Product:
    product_id: Optional[int]
    name: str
    price: float
    currency_code: str = "USD"
    description: Optional[str] = None
    prices: List[ProductPrice] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    event_id: Optional[int] = None
    created_at: Optional[str] = None


@dataclass
class OrderLine:
    product_id: int
    quantity: int
    unit_price: float  # snapshot at order time
    line_id: Optional[int] = None
    order_id: Optional[int] = None

    @property
    def subtotal(self) -> float:
        return round(self.unit_price * self.quantity, 2)


@dataclass
class OrderLineDetail:
    """An order line joined with the product name, as shown on invoices."""

    product_id: int
    product_name: str
    quantity: int
    unit_price: float

    @property
    def subtotal(self) -> float:
        return round(self.unit_price * self.quantity, 2)


@dataclass
class PreOrder:
    order_id: Optional[int]
    customer_name: str
    customer_email: str
    confirmation_code: str
    status: str = ORDER_STATUS_PENDING
    total_amount: float = 0.0
    notes: Optional[str] = None
    created_at: Optional[str] = None
    confirmed_at: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == ORDER_STATUS_CONFIRMED


@dataclass
class SyncedResponse:
    response_id: str
    form_id: str
    synced_at: Optional[str] = None


@dataclass
class FormRegistration:
    form_id: str
    form_url: str
    responder_url: str
    title: str
    created_at: Optional[str] = None
    last_synced_at: Optional[str] = None


@dataclass
class InvoiceSection:
    section_id: str
    kind: str
    label: str
    enabled: bool = True
    order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.section_id,
            "type": self.kind,
            "label": self.label,
            "enabled": bool(self.enabled),
            "order": int(self.order),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InvoiceSection":
        kind = str(data.get("type") or data.get("kind") or "")
        return cls(
            section_id=str(data.get("id") or kind),
            kind=kind,
            label=str(data.get("label") or kind),
            enabled=bool(data.get("enabled", True)),
            order=int(data.get("order") or 0),
        )


@dataclass
class InvoiceTemplate:
    sections: List[InvoiceSection]
    header_title: str = "Pre-Order Invoice"
    header_subtitle: str = "Thank you for your order!"
    footer_text: str = "This is an automated email from POTracker"
    primary_color: str = "#6366f1"
    secondary_color: str = "#a855f7"
    use_banner_image: bool = False
    banner_image_url: str = ""

    def ordered_sections(self) -> List[InvoiceSection]:
        """Enabled sections in ascending order index (stable for ties)."""
        return sorted((s for s in self.sections if s.enabled), key=lambda s: s.order)

    @property
    def has_banner(self) -> bool:
        return bool(self.use_banner_image and self.banner_image_url)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sections": [s.to_dict() for s in self.sections],
            "header_title": self.header_title,
            "header_subtitle": self.header_subtitle,
            "footer_text": self.footer_text,
            "primary_color": self.primary_color,
            "secondary_color": self.secondary_color,
            "use_banner_image": bool(self.use_banner_image),
            "banner_image_url": self.banner_image_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InvoiceTemplate":
        defaults = default_invoice_template()
        raw_sections = data.get("sections")
        if isinstance(raw_sections, list):
            sections = [InvoiceSection.from_dict(s) for s in raw_sections if isinstance(s, dict)]
        else:
            sections = defaults.sections
        return cls(
            sections=sections,
            header_title=str(data.get("header_title") or defaults.header_title),
            header_subtitle=str(data.get("header_subtitle") or defaults.header_subtitle),
            footer_text=str(data.get("footer_text") or defaults.footer_text),
            primary_color=str(data.get("primary_color") or defaults.primary_color),
            secondary_color=str(data.get("secondary_color") or defaults.secondary_color),
            use_banner_image=bool(data.get("use_banner_image", False)),
            banner_image_url=str(data.get("banner_image_url") or ""),
        )


def default_invoice_template() -> InvoiceTemplate:
    labels = {
        SECTION_HEADER: "Header",
        SECTION_GREETING: "Greeting",
        SECTION_QR_CODE: "QR Code & Confirmation",
        SECTION_ITEMS_TABLE: "Items Table",
        SECTION_TOTAL: "Total Amount",
        SECTION_FOOTER: "Footer",
    }
    sections = [
        InvoiceSection(section_id=kind, kind=kind, label=labels[kind], enabled=True, order=idx)
        for idx, kind in enumerate(SECTION_KINDS)
    ]
    return InvoiceTemplate(sections=sections)


@dataclass
class SyncSettings:
    auto_sync_enabled: bool = False
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES

    def __post_init__(self) -> None:
        try:
            minutes = int(self.sync_interval_minutes)
        except (TypeError, ValueError):
            minutes = DEFAULT_SYNC_INTERVAL_MINUTES
        self.sync_interval_minutes = max(MIN_SYNC_INTERVAL_MINUTES, minutes)
        self.auto_sync_enabled = bool(self.auto_sync_enabled)


@dataclass
class SmtpSettings:
    host: str
    username: str
    password: str
    from_email: str
    port: int = 587
    from_name: str = DEFAULT_SENDER_NAME

    @property
    def secure(self) -> bool:
        # Implicit TLS on 465, STARTTLS everywhere else
        return int(self.port) == 465


@dataclass
class OAuthAccount:
    access_token: Optional[str]
    sender_email: Optional[str]
    sender_name: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.access_token and self.sender_email)
