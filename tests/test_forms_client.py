from __future__ import annotations

import pytest

from preorder_sync.domain.models import Product, ProductPrice
from preorder_sync.errors import RemoteFetchFailed
from preorder_sync.forms.client import FormsClient, build_question_requests, parse_response


class Reply:
    def __init__(self, status_code: int, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self.payload = payload
        self.text = text

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        if self.payload is None:
            raise ValueError("not json")
        return self.payload


class ScriptedSession:
    """Hands out queued replies in order and records each request."""

    def __init__(self, *replies: Reply) -> None:
        self.replies = list(replies)
        self.requests = []
        self.headers = {}

    def get(self, url, params=None, timeout=None):
        self.requests.append(("GET", url, params))
        return self.replies.pop(0)

    def post(self, url, json=None, timeout=None):
        self.requests.append(("POST", url, json))
        return self.replies.pop(0)


def _text(value: str) -> dict:
    return {"textAnswers": {"answers": [{"value": value}]}}


def test_form_definition_keeps_only_questions() -> None:
    session = ScriptedSession(
        Reply(
            200,
            {
                "items": [
                    {"title": "Your Name", "questionItem": {"question": {"questionId": "q1"}}},
                    {"title": "Section break"},
                    {"title": "Quantity: Widget", "questionItem": {"question": {"questionId": "q2"}}},
                ]
            },
        )
    )
    client = FormsClient("tok", session=session)
    questions = client.get_form_definition("form-1")
    assert [(q.question_id, q.title) for q in questions] == [("q1", "Your Name"), ("q2", "Quantity: Widget")]
    assert session.headers["Authorization"] == "Bearer tok"
    assert session.requests[0][1] == "https://forms.googleapis.com/v1/forms/form-1"


def test_responses_follow_page_tokens() -> None:
    session = ScriptedSession(
        Reply(200, {"responses": [{"responseId": "r1", "answers": {"q1": _text("Alice")}}], "nextPageToken": "p2"}),
        Reply(200, {"responses": [{"responseId": "r2", "answers": {}}, {"answers": {}}]}),
    )
    responses = FormsClient("tok", session=session, page_size=1).list_responses("form-1")
    assert [r.response_id for r in responses] == ["r1", "r2"]
    assert responses[0].answers == {"q1": "Alice"}
    assert session.requests[0][2] == {"pageSize": 1}
    assert session.requests[1][2] == {"pageSize": 1, "pageToken": "p2"}


def test_http_error_carries_provider_text() -> None:
    session = ScriptedSession(Reply(403, None, text="PERMISSION_DENIED"))
    with pytest.raises(RemoteFetchFailed) as excinfo:
        FormsClient("tok", session=session).list_responses("form-1")
    assert excinfo.value.status_code == 403
    assert "PERMISSION_DENIED" in excinfo.value.detail
    assert excinfo.value.form_id == "form-1"


def test_parse_response_takes_first_text_answer() -> None:
    parsed = parse_response(
        {
            "responseId": "r9",
            "createTime": "2024-05-01T10:00:00Z",
            "answers": {"q1": {"textAnswers": {"answers": [{"value": "3"}, {"value": "4"}]}}, "q2": {}},
        }
    )
    assert parsed.answers == {"q1": "3", "q2": None}
    assert parsed.create_time == "2024-05-01T10:00:00Z"
    assert parse_response({"answers": {}}) is None


def test_create_order_form_adds_catalog_questions() -> None:
    session = ScriptedSession(
        Reply(200, {"formId": "new-form", "responderUri": "https://docs.google.com/forms/d/e/xyz/viewform"}),
        Reply(200, {}),
    )
    products = [Product(1, "Widget", 10.0, prices=[ProductPrice("EUR", 9.5)])]
    created = FormsClient("tok", session=session).create_order_form("Spring drop", products)

    assert created == {
        "form_id": "new-form",
        "form_url": "https://docs.google.com/forms/d/new-form/edit",
        "responder_url": "https://docs.google.com/forms/d/e/xyz/viewform",
        "title": "Spring drop",
    }
    method, url, body = session.requests[1]
    assert url.endswith("/v1/forms/new-form:batchUpdate")
    titles = [r["createItem"]["item"]["title"] for r in body["requests"]]
    assert titles == ["Your Name", "Your Email", "Quantity: Widget"]


def test_question_descriptions_list_prices() -> None:
    reqs = build_question_requests([Product(1, "Widget", 1234.5, prices=[ProductPrice("EUR", 9.5)])])
    item = reqs[2]["createItem"]["item"]
    assert item["description"] == "Price: USD 1,234.50 / EUR 9.50"
    assert item["questionItem"]["question"]["required"] is False
    assert reqs[2]["createItem"]["location"] == {"index": 2}
