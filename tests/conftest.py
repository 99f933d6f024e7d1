from __future__ import annotations

import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from preorder_sync.domain.mapping import FormResponse, QuestionDef
from preorder_sync.domain.models import FormRegistration, OAuthAccount
from preorder_sync.errors import RemoteFetchFailed, TransportError
from preorder_sync.mail.dispatch import EmailDispatcher
from preorder_sync.orders.ingest import OrderIngestor
from preorder_sync.orders.mailer import OrderMailer
from preorder_sync.store.db import OrderDatabase
from preorder_sync.store.ledger import ResponseLedger


WIDGET_FORM_QUESTIONS = [
    QuestionDef("q-name", "Your Name"),
    QuestionDef("q-email", "Your Email"),
    QuestionDef("q-widget", "Quantity: Widget"),
    QuestionDef("q-gadget", "Quantity: Gadget"),
]


class FakeFormsClient:
    """In-memory form provider; ``gate`` lets a test hold a fetch open."""

    def __init__(self) -> None:
        self.questions: Dict[str, List[QuestionDef]] = {}
        self.responses: Dict[str, List[FormResponse]] = {}
        self.failures: Dict[str, str] = {}
        self.fetches: List[str] = []
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()

    def add_form(self, form_id: str, questions: List[QuestionDef]) -> None:
        self.questions[form_id] = list(questions)
        self.responses.setdefault(form_id, [])

    def add_response(self, form_id: str, response_id: str, **answers: str) -> None:
        self.responses[form_id].append(FormResponse(response_id=response_id, answers=answers))

    def get_form_definition(self, form_id: str) -> List[QuestionDef]:
        if form_id in self.failures:
            raise RemoteFetchFailed(form_id, self.failures[form_id], status_code=500)
        return list(self.questions.get(form_id, []))

    def list_responses(self, form_id: str) -> List[FormResponse]:
        if form_id in self.failures:
            raise RemoteFetchFailed(form_id, self.failures[form_id], status_code=500)
        self.fetches.append(form_id)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(5)
        return list(self.responses.get(form_id, []))


class RecordingDispatcher(EmailDispatcher):
    """Dispatcher that records messages instead of talking to a provider."""

    def __init__(self, *, fail_with: Optional[str] = None) -> None:
        super().__init__()
        self.sent: List[tuple] = []
        self.fail_with = fail_with
        self.on_send = None

    def send(self, choice, message) -> str:
        if choice is None:
            return super().send(choice, message)
        if self.on_send is not None:
            self.on_send(message)
        if self.fail_with:
            raise TransportError(choice.kind, self.fail_with, status_code=500)
        self.sent.append((choice, message))
        return f"msg-{len(self.sent)}"


def fake_qr(code: str) -> bytes:
    return b"\x89PNG-fake-" + code.encode("ascii")


@pytest.fixture()
def db(tmp_path: Path) -> OrderDatabase:
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    return OrderDatabase(root_dir=str(tmp_path))


@pytest.fixture()
def ledger(db: OrderDatabase) -> ResponseLedger:
    return ResponseLedger(db)


@pytest.fixture()
def widget_id(db: OrderDatabase) -> int:
    return db.add_product("Widget", 10.00)


@pytest.fixture()
def gadget_id(db: OrderDatabase) -> int:
    return db.add_product("Gadget", 2.50)


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def mailer(db: OrderDatabase, dispatcher: RecordingDispatcher) -> OrderMailer:
    return OrderMailer(
        db,
        dispatcher,
        oauth=OAuthAccount(access_token="token-123", sender_email="shop@example.com", sender_name="Shop"),
        qr_factory=fake_qr,
    )


@pytest.fixture()
def ingestor(db: OrderDatabase) -> OrderIngestor:
    return OrderIngestor(db)


@pytest.fixture()
def forms_client(db: OrderDatabase) -> FakeFormsClient:
    client = FakeFormsClient()
    client.add_form("form-1", WIDGET_FORM_QUESTIONS)
    db.register_form(
        FormRegistration(
            form_id="form-1",
            form_url="https://docs.google.com/forms/d/form-1/edit",
            responder_url="https://docs.google.com/forms/d/form-1/viewform",
            title="Spring drop",
        )
    )
    return client
