from __future__ import annotations

from pathlib import Path

import pytest

from preorder_sync.config import (
    load_currency,
    load_forms_token,
    load_oauth_account,
    load_relay_url,
    load_smtp_settings,
)

KEYS = (
    "FORMS_ACCESS_TOKEN",
    "GMAIL_ACCESS_TOKEN",
    "GMAIL_SENDER",
    "GMAIL_SENDER_NAME",
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SMTP_FROM_EMAIL",
    "SMTP_FROM_NAME",
    "MAIL_RELAY_URL",
    "CURRENCY_CODE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for key in KEYS:
        monkeypatch.delenv(key, raising=False)


def _write_env(root: Path, text: str) -> None:
    (root / ".env").write_text(text, encoding="utf-8")


def test_values_come_from_nearest_dotenv(tmp_path: Path) -> None:
    _write_env(
        tmp_path,
        "FORMS_ACCESS_TOKEN=forms-tok\n"
        "GMAIL_ACCESS_TOKEN=gm-tok\n"
        "GMAIL_SENDER=shop@example.com\n"
        "MAIL_RELAY_URL=http://relay.local:3001/\n"
        "CURRENCY_CODE=eur\n",
    )
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert load_forms_token(str(nested)) == "forms-tok"
    account = load_oauth_account(str(nested))
    assert account.access_token == "gm-tok"
    assert account.sender_email == "shop@example.com"
    assert account.sender_name is None
    assert load_relay_url(str(nested)) == "http://relay.local:3001"
    assert load_currency(str(nested)) == "EUR"


def test_process_environment_wins(tmp_path: Path, monkeypatch) -> None:
    _write_env(tmp_path, "FORMS_ACCESS_TOKEN=from-file\nCURRENCY_CODE=EUR\n")
    monkeypatch.setenv("FORMS_ACCESS_TOKEN", "from-env")
    monkeypatch.setenv("CURRENCY_CODE", "gbp")
    assert load_forms_token(str(tmp_path)) == "from-env"
    assert load_currency(str(tmp_path)) == "GBP"


def test_incomplete_credentials_are_none(tmp_path: Path) -> None:
    _write_env(tmp_path, "GMAIL_ACCESS_TOKEN=gm-tok\nSMTP_HOST=smtp.example.com\n")
    assert load_oauth_account(str(tmp_path)) is None
    assert load_smtp_settings(str(tmp_path)) is None
    assert load_forms_token(str(tmp_path)) is None


def test_smtp_defaults(tmp_path: Path) -> None:
    _write_env(
        tmp_path,
        "SMTP_HOST=smtp.example.com\nSMTP_USERNAME=orders@example.com\nSMTP_PASSWORD=pw\nSMTP_PORT=not-a-port\n",
    )
    settings = load_smtp_settings(str(tmp_path))
    assert settings.port == 587
    assert not settings.secure
    assert settings.from_email == "orders@example.com"
    assert settings.from_name == "POTracker"


def test_smtp_implicit_tls_port(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_USERNAME", "u")
    monkeypatch.setenv("SMTP_PASSWORD", "p")
    monkeypatch.setenv("SMTP_PORT", "465")
    monkeypatch.setenv("SMTP_FROM_EMAIL", "shop@example.com")
    settings = load_smtp_settings(str(tmp_path))
    assert settings.secure
    assert settings.from_email == "shop@example.com"
