from __future__ import annotations

import re

from preorder_sync.domain.codes import generate_confirmation_code, looks_like_code, normalize_code
from preorder_sync.domain.mapping import (
    UNKNOWN_EMAIL,
    UNKNOWN_NAME,
    FormResponse,
    QuestionDef,
    QuestionLayout,
    catalog_by_name,
    map_response,
    parse_quantity,
)
from preorder_sync.domain.models import Product


CATALOG = catalog_by_name(
    [
        Product(product_id=1, name="Widget", price=10.00),
        Product(product_id=2, name="Gadget", price=2.50),
    ]
)

LAYOUT = QuestionLayout.from_questions(
    [
        QuestionDef("n", "Your Name"),
        QuestionDef("e", "Your Email"),
        QuestionDef("w", "Quantity: Widget"),
        QuestionDef("g", "Quantity: Gadget"),
        QuestionDef("x", "Quantity: Retired Thing"),
        QuestionDef("c", "Comments"),
    ]
)


def test_codes_are_eight_uppercase_alphanumerics() -> None:
    codes = {generate_confirmation_code() for _ in range(200)}
    assert len(codes) > 190
    for code in codes:
        assert re.fullmatch(r"[A-Z0-9]{8}", code)
        assert looks_like_code(code)


def test_normalize_code_trims_and_uppercases() -> None:
    assert normalize_code("  abc12345\n") == "ABC12345"
    assert normalize_code("") == ""
    assert not looks_like_code("abc")


def test_layout_reads_titles() -> None:
    assert LAYOUT.name_question_id == "n"
    assert LAYOUT.email_question_id == "e"
    assert LAYOUT.product_questions == {"w": "Widget", "g": "Gadget", "x": "Retired Thing"}


def test_parse_quantity_takes_integer_prefix() -> None:
    assert parse_quantity("3") == 3
    assert parse_quantity(" 4 pcs") == 4
    assert parse_quantity("abc") == 0
    assert parse_quantity("") == 0
    assert parse_quantity(None) == 0
    assert parse_quantity("-2") == -2


def test_map_response_builds_lines_and_total() -> None:
    response = FormResponse("r1", {"n": "Alice", "e": "a@x.com", "w": "3"})
    mapped = map_response(LAYOUT, response, CATALOG)
    assert mapped is not None
    assert mapped.customer_name == "Alice"
    assert mapped.customer_email == "a@x.com"
    assert mapped.total_amount == 30.00
    assert len(mapped.lines) == 1
    line = mapped.lines[0]
    assert (line.product_name, line.quantity, line.unit_price) == ("Widget", 3, 10.00)


def test_map_response_defaults_missing_customer_fields() -> None:
    mapped = map_response(LAYOUT, FormResponse("r2", {"g": "2", "n": "   "}), CATALOG)
    assert mapped is not None
    assert mapped.customer_name == UNKNOWN_NAME
    assert mapped.customer_email == UNKNOWN_EMAIL
    assert mapped.total_amount == 5.00


def test_zero_or_missing_quantities_are_not_an_order() -> None:
    assert map_response(LAYOUT, FormResponse("r3", {"n": "Bob", "w": "0", "g": "-1"}), CATALOG) is None
    assert map_response(LAYOUT, FormResponse("r4", {"n": "Bob", "e": "b@x.com"}), CATALOG) is None


def test_unknown_products_are_dropped_and_reported() -> None:
    mapped = map_response(LAYOUT, FormResponse("r5", {"w": "1", "x": "5"}), CATALOG)
    assert mapped is not None
    assert [line.product_name for line in mapped.lines] == ["Widget"]
    assert mapped.dropped_products == ["Retired Thing"]

    only_unknown = map_response(LAYOUT, FormResponse("r6", {"x": "5"}), CATALOG)
    assert only_unknown is None


def test_duplicate_product_questions_merge_into_one_line() -> None:
    layout = QuestionLayout.from_questions(
        [QuestionDef("w1", "Quantity: Widget"), QuestionDef("w2", "Quantity: Widget")]
    )
    mapped = map_response(layout, FormResponse("r7", {"w1": "1", "w2": "2"}), CATALOG)
    assert mapped is not None
    assert len(mapped.lines) == 1
    assert mapped.lines[0].quantity == 3
    assert mapped.total_amount == 30.00
