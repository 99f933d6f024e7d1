from __future__ import annotations

import io
import json
import logging
import re
from pathlib import Path

import pytest

from preorder_sync.cli.main import _read_codes, main
from preorder_sync.logging import PACKAGE_LOGGER, configure_logging
from preorder_sync.store.db import OrderDatabase

ENV_KEYS = (
    "FORMS_ACCESS_TOKEN",
    "GMAIL_ACCESS_TOKEN",
    "GMAIL_SENDER",
    "GMAIL_SENDER_NAME",
    "SMTP_HOST",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "MAIL_RELAY_URL",
    "CURRENCY_CODE",
)


@pytest.fixture()
def root(tmp_path: Path, monkeypatch) -> Path:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    (tmp_path / "README.md").write_text("test marker", encoding="utf-8")
    return tmp_path


def _run(root: Path, *args: str) -> int:
    return main(["--root", str(root), *args])


def _new_order(root: Path, capsys) -> str:
    assert _run(root, "products", "add", "--name", "Widget", "--price", "10") == 0
    product_id = capsys.readouterr().out.strip()
    assert _run(root, "orders", "create", "--name", "Alice", "--email", "a@x.com", "--item", f"{product_id}=2", "--no-email") == 0
    out = capsys.readouterr().out
    return re.search(r"code ([A-Z0-9]{8})", out).group(1)


def test_init_creates_database(root: Path, capsys) -> None:
    assert _run(root, "init") == 0
    path = Path(capsys.readouterr().out.strip())
    assert path == root / "var" / "preorders" / "preorders.sqlite3"
    assert path.exists()


def test_order_then_confirm_exit_codes(root: Path, capsys) -> None:
    code = _new_order(root, capsys)

    assert _run(root, "confirm", "--code", code.lower()) == 0
    out = capsys.readouterr().out
    assert f"CONFIRMED: {code} for Alice (20.00)" in out
    assert "email failed" in out  # no transport configured

    assert _run(root, "confirm", "--code", code) == 3
    assert "ALREADY CLAIMED" in capsys.readouterr().out
    assert _run(root, "confirm", "--code", "ZZZZZZZZ") == 1
    assert "NOT FOUND: ZZZZZZZZ" in capsys.readouterr().out


def test_orders_show_lists_lines(root: Path, capsys) -> None:
    _new_order(root, capsys)
    assert _run(root, "orders", "show", "1") == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["total_amount"] == 20.0
    assert payload["lines"][0]["subtotal"] == 20.0
    assert _run(root, "orders", "show", "99") == 1


def test_sync_without_token_is_not_configured(root: Path) -> None:
    assert _run(root, "sync") == 2


def test_settings_sync_clamps_interval(root: Path, capsys) -> None:
    assert _run(root, "settings", "sync", "--enable", "--interval", "0") == 0
    assert json.loads(capsys.readouterr().out) == {"auto_sync_enabled": True, "sync_interval_minutes": 1}
    stored = OrderDatabase(root_dir=str(root)).get_sync_settings()
    assert stored.auto_sync_enabled
    assert stored.sync_interval_minutes == 1


def test_settings_show_masks_password(root: Path, capsys) -> None:
    _run(root, "settings", "smtp", "--host", "smtp.example.com", "--username", "u", "--password", "secret")
    capsys.readouterr()
    assert _run(root, "settings", "show") == 0
    out = capsys.readouterr().out
    assert "secret" not in out
    assert json.loads(out)["active_transport"] == "smtp"


def test_template_set_and_preview(root: Path, tmp_path: Path, capsys) -> None:
    _new_order(root, capsys)
    template_file = tmp_path / "template.json"
    template_file.write_text(json.dumps({"header_title": "Bakery Pickup"}), encoding="utf-8")
    assert _run(root, "template", "set", "--file", str(template_file)) == 0

    output = tmp_path / "preview.html"
    assert _run(root, "template", "preview", "1", "--output", str(output)) == 0
    html = output.read_text(encoding="utf-8")
    assert "Bakery Pickup" in html
    assert "data:image" not in html


def test_interactive_confirm_reads_until_eof(root: Path, capsys, monkeypatch) -> None:
    code = _new_order(root, capsys)
    monkeypatch.setattr("sys.stdin", io.StringIO(f"{code}\n\n{code}\n"))
    assert _run(root, "confirm", "--interactive", "--timeout", "5") == 0
    out = capsys.readouterr().out
    assert "CONFIRMED" in out
    assert "ALREADY CLAIMED" in out


def test_read_codes_skips_blank_lines() -> None:
    assert list(_read_codes(io.StringIO("a\n  \nb\n"), timeout=5)) == ["a", "b"]


def test_malformed_code_is_rejected_without_lookup(root: Path, capsys) -> None:
    _new_order(root, capsys)
    assert _run(root, "confirm", "--code", "abc") == 1
    assert "NOT FOUND: ABC (not a confirmation code)" in capsys.readouterr().out


def test_summary_counts_orders(root: Path, capsys) -> None:
    code = _new_order(root, capsys)
    _run(root, "confirm", "--code", code)
    capsys.readouterr()

    assert _run(root, "summary") == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["counts"]["products"] == 1
    assert payload["counts"]["preorders"] == 1
    assert payload["orders_by_status"] == {"confirmed": 1}
    assert payload["order_value"] == 20.0
    assert payload["sync"]["auto_sync_enabled"] is False


def test_relay_health_without_url_is_not_configured(root: Path) -> None:
    assert _run(root, "relay", "health") == 2


def test_relay_health_reports_unreachable_relay(root: Path) -> None:
    assert _run(root, "relay", "health", "--url", "http://127.0.0.1:9") == 1


def test_verbose_switches_package_to_debug(root: Path, capsys) -> None:
    try:
        assert main(["--root", str(root), "--verbose", "init"]) == 0
        assert logging.getLogger(PACKAGE_LOGGER).level == logging.DEBUG
    finally:
        configure_logging()
