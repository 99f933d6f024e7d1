"""Translate raw form answers into order fields.

Question titles drive the mapping:

- ``Your Name``            -> customer name
- ``Your Email``           -> customer email
- ``Quantity: <product>``  -> quantity for the catalog product with that exact name

Anything missing from a response degrades to a default instead of failing the
import. A response with no positive quantity is not an order.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from ..logging import get_logger
from .models import Product

LOG = get_logger("answer-mapper")

NAME_TITLE = "Your Name"
EMAIL_TITLE = "Your Email"
QUANTITY_PREFIX = "Quantity: "

UNKNOWN_NAME = "Unknown"
UNKNOWN_EMAIL = "unknown@email.com"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class QuestionDef:
    question_id: str
    title: str


@dataclass(frozen=True)
class FormResponse:
    """One submission; ``answers`` maps question id to the first text value."""

    response_id: str
    answers: Mapping[str, Optional[str]] = field(default_factory=dict)
    create_time: Optional[str] = None

    def answer(self, question_id: Optional[str]) -> Optional[str]:
        if not question_id:
            return None
        value = self.answers.get(question_id)
        if value is None:
            return None
        value = str(value).strip()
        return value or None


@dataclass
class MappedLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price: float

    @property
    def subtotal(self) -> float:
        return round(self.unit_price * self.quantity, 2)


@dataclass
class MappedResponse:
    response_id: str
    customer_name: str
    customer_email: str
    lines: List[MappedLine]
    total_amount: float
    dropped_products: List[str] = field(default_factory=list)


@dataclass
class QuestionLayout:
    """Which question ids carry the name, email and per-product quantities."""

    name_question_id: Optional[str] = None
    email_question_id: Optional[str] = None
    product_questions: Dict[str, str] = field(default_factory=dict)  # question id -> product name

    @classmethod
    def from_questions(cls, questions: Iterable[QuestionDef]) -> "QuestionLayout":
        layout = cls()
        for q in questions:
            title = q.title or ""
            if title == NAME_TITLE:
                layout.name_question_id = q.question_id
            elif title == EMAIL_TITLE:
                layout.email_question_id = q.question_id
            elif title.startswith(QUANTITY_PREFIX):
                product_name = title[len(QUANTITY_PREFIX):].strip()
                if product_name:
                    layout.product_questions[q.question_id] = product_name
        LOG.debug(
            "Question layout: name=%s email=%s products=%d",
            layout.name_question_id,
            layout.email_question_id,
            len(layout.product_questions),
        )
        return layout


def parse_quantity(raw: Optional[str]) -> int:
    """Integer prefix of the answer; anything unparsable counts as 0."""
    if raw is None:
        return 0
    m = _LEADING_INT.match(str(raw))
    if not m:
        return 0
    try:
        return int(m.group(1))
    except ValueError:
        return 0


def catalog_by_name(products: Iterable[Product]) -> Dict[str, Product]:
    catalog: Dict[str, Product] = {}
    for p in products:
        # First product wins on duplicate names
        catalog.setdefault(p.name, p)
    return catalog


def map_response(
    layout: QuestionLayout,
    response: FormResponse,
    catalog: Mapping[str, Product],
) -> Optional[MappedResponse]:
    """Return the mapped order, or None when the response orders nothing."""
    customer_name = response.answer(layout.name_question_id) or UNKNOWN_NAME
    customer_email = response.answer(layout.email_question_id) or UNKNOWN_EMAIL

    by_product: Dict[int, MappedLine] = {}
    dropped: List[str] = []
    for question_id, product_name in layout.product_questions.items():
        quantity = parse_quantity(response.answer(question_id))
        if quantity <= 0:
            continue
        product = catalog.get(product_name)
        if product is None or product.product_id is None:
            LOG.warning(
                "Response %s orders %d x %r but no such product exists; dropping line",
                response.response_id,
                quantity,
                product_name,
            )
            dropped.append(product_name)
            continue
        line = by_product.get(product.product_id)
        if line is None:
            by_product[product.product_id] = MappedLine(
                product_id=product.product_id,
                product_name=product.name,
                quantity=quantity,
                unit_price=float(product.price),
            )
        else:
            line.quantity += quantity

    lines = list(by_product.values())
    if not lines:
        LOG.info("Response %s has no positive quantities; not an order", response.response_id)
        return None

    total = round(sum(line.subtotal for line in lines), 2)
    return MappedResponse(
        response_id=response.response_id,
        customer_name=customer_name,
        customer_email=customer_email,
        lines=lines,
        total_amount=total,
        dropped_products=dropped,
    )
