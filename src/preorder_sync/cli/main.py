from __future__ import annotations

import argparse
import json
import os
import queue
import sys
import threading
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Sequence, TextIO

import requests

from ..config import (
    load_currency,
    load_forms_token,
    load_oauth_account,
    load_relay_url,
    load_smtp_settings,
)
from ..domain.codes import looks_like_code, normalize_code
from ..domain.models import (
    ORDER_STATUSES,
    FormRegistration,
    InvoiceTemplate,
    OAuthAccount,
    ProductPrice,
    SmtpSettings,
    SyncSettings,
)
from ..errors import NotConfigured, PreorderError
from ..forms.client import FormsClient
from ..invoice.render import InvoiceRenderer
from ..logging import configure_logging, get_logger
from ..mail.dispatch import EmailDispatcher
from ..mail.transports import MailRelayClient
from ..orders.confirm import ConfirmationOutcome, OrderConfirmation
from ..orders.ingest import OrderIngestor
from ..orders.mailer import OrderMailer
from ..paths import find_project_root
from ..store.db import OrderDatabase
from ..sync.engine import FormSyncEngine
from ..sync.scheduler import AutoSyncScheduler

LOG = get_logger("cli-main")

SCAN_TIMEOUT_SECONDS = 60


@dataclass
class AppContext:
    root: str
    db: OrderDatabase
    ingestor: OrderIngestor
    mailer: OrderMailer
    confirmation: OrderConfirmation

    def forms_client(self) -> FormsClient:
        token = load_forms_token(self.root)
        if not token:
            raise NotConfigured("FORMS_ACCESS_TOKEN missing. Set it in env/.env.")
        return FormsClient(token)

    def sync_engine(self) -> FormSyncEngine:
        return FormSyncEngine(self.db, self.forms_client(), ingestor=self.ingestor, mailer=self.mailer)


def build_context(root_dir: Optional[str] = None) -> AppContext:
    root = find_project_root(root_dir or os.getcwd())
    db = OrderDatabase(root_dir=root)
    relay_url = load_relay_url(root)
    dispatcher = EmailDispatcher(relay=MailRelayClient(relay_url) if relay_url else None)
    mailer = OrderMailer(
        db,
        dispatcher,
        renderer=InvoiceRenderer(currency=load_currency(root)),
        oauth=load_oauth_account(root),
        smtp=load_smtp_settings(root),
    )
    return AppContext(
        root=root,
        db=db,
        ingestor=OrderIngestor(db),
        mailer=mailer,
        confirmation=OrderConfirmation(db, mailer=mailer),
    )


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _parse_pairs(values: Optional[Sequence[str]], what: str) -> Dict[str, str]:
    pairs: Dict[str, str] = {}
    for raw in values or []:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip() or not value.strip():
            raise argparse.ArgumentTypeError(f"{what} must look like KEY=VALUE, got {raw!r}")
        pairs[key.strip()] = value.strip()
    return pairs


# ---------------- products ----------------
def _add_products_cli(subparsers, ctx_factory) -> None:
    products = subparsers.add_parser("products", help="Manage the product catalog")
    sub = products.add_subparsers(dest="products_command", required=True)

    add = sub.add_parser("add", help="Add a product")
    add.add_argument("--name", required=True)
    add.add_argument("--price", type=float, required=True)
    add.add_argument("--currency", help="Base currency (default: CURRENCY_CODE or USD)")
    add.add_argument("--description")
    add.add_argument("--alt-price", action="append", metavar="CUR=AMOUNT", help="Additional currency price")
    add.add_argument("--tag", action="append")

    def _add(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        extra = [ProductPrice(cur, float(amount)) for cur, amount in _parse_pairs(ns.alt_price, "--alt-price").items()]
        product_id = ctx.db.add_product(
            ns.name,
            ns.price,
            currency_code=ns.currency or load_currency(ctx.root),
            description=ns.description,
            prices=extra,
            tags=ns.tag,
        )
        print(product_id)
        return 0

    add.set_defaults(handler=_add)

    lst = sub.add_parser("list", help="List active products")

    def _list(ns: argparse.Namespace) -> int:
        _print_json([asdict(p) for p in ctx_factory(ns).db.list_products()])
        return 0

    lst.set_defaults(handler=_list)

    deactivate = sub.add_parser("deactivate", help="Hide a product from the catalog")
    deactivate.add_argument("product_id", type=int)

    def _deactivate(ns: argparse.Namespace) -> int:
        return 0 if ctx_factory(ns).db.deactivate_product(ns.product_id) else 1

    deactivate.set_defaults(handler=_deactivate)


# ---------------- forms ----------------
def _add_forms_cli(subparsers, ctx_factory) -> None:
    forms = subparsers.add_parser("forms", help="Register and manage order forms")
    sub = forms.add_subparsers(dest="forms_command", required=True)

    add = sub.add_parser("add", help="Register an existing form by id")
    add.add_argument("--form-id", required=True)
    add.add_argument("--title")
    add.add_argument("--form-url")
    add.add_argument("--responder-url")

    def _add(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        form = FormRegistration(
            form_id=ns.form_id,
            form_url=ns.form_url or f"https://docs.google.com/forms/d/{ns.form_id}/edit",
            responder_url=ns.responder_url or f"https://docs.google.com/forms/d/{ns.form_id}/viewform",
            title=ns.title or ns.form_id,
        )
        ctx.db.register_form(form)
        LOG.info(f"Registered form {form.form_id} ({form.title})")
        return 0

    add.set_defaults(handler=_add)

    create = sub.add_parser("create", help="Create a new order form from the catalog and register it")
    create.add_argument("--title", required=True)
    create.add_argument("--product-id", type=int, action="append", help="Limit to these products (default: all)")

    def _create(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        products = ctx.db.list_products()
        if ns.product_id:
            wanted = set(ns.product_id)
            products = [p for p in products if p.product_id in wanted]
        if not products:
            LOG.error("No products to put on the form")
            return 1
        created = ctx.forms_client().create_order_form(f"Pre-Order Form - {ns.title}", products)
        ctx.db.register_form(FormRegistration(**created))
        _print_json(created)
        return 0

    create.set_defaults(handler=_create)

    lst = sub.add_parser("list", help="List registered forms")

    def _list(ns: argparse.Namespace) -> int:
        _print_json([asdict(f) for f in ctx_factory(ns).db.list_forms()])
        return 0

    lst.set_defaults(handler=_list)

    remove = sub.add_parser("remove", help="Unregister a form (also forgets its synced responses)")
    remove.add_argument("form_id")

    def _remove(ns: argparse.Namespace) -> int:
        if ctx_factory(ns).db.remove_form(ns.form_id):
            LOG.info(f"Removed form {ns.form_id}")
            return 0
        LOG.error(f"Form {ns.form_id} is not registered")
        return 1

    remove.set_defaults(handler=_remove)


# ---------------- orders ----------------
def _add_orders_cli(subparsers, ctx_factory) -> None:
    orders = subparsers.add_parser("orders", help="Create, inspect and manage orders")
    sub = orders.add_subparsers(dest="orders_command", required=True)

    create = sub.add_parser("create", help="Create an order manually")
    create.add_argument("--name", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--item", action="append", required=True, metavar="PRODUCT_ID=QTY")
    create.add_argument("--notes")
    create.add_argument("--no-email", action="store_true", help="Do not send the invoice")

    def _create(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        try:
            quantities = {int(k): int(v) for k, v in _parse_pairs(ns.item, "--item").items()}
        except ValueError:
            LOG.error("--item expects numeric PRODUCT_ID=QTY")
            return 2
        try:
            order = ctx.ingestor.create_manual_order(ns.name, ns.email, quantities, notes=ns.notes)
        except ValueError as exc:
            LOG.error(str(exc))
            return 1
        print(f"Order #{order.order_id} created with code {order.confirmation_code}")
        if not ns.no_email:
            try:
                ctx.mailer.send_invoice(order)
                print(f"Invoice sent to {order.customer_email}")
            except PreorderError as exc:
                LOG.warning(f"Order created but email failed: {exc}")
                print(f"Order created but email failed: {exc}")
        return 0

    create.set_defaults(handler=_create)

    lst = sub.add_parser("list", help="List orders, newest first")
    lst.add_argument("--status", choices=ORDER_STATUSES)

    def _list(ns: argparse.Namespace) -> int:
        _print_json([asdict(o) for o in ctx_factory(ns).db.list_orders(status=ns.status)])
        return 0

    lst.set_defaults(handler=_list)

    show = sub.add_parser("show", help="Show one order with its lines")
    show.add_argument("order_id", type=int)

    def _show(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        order = ctx.db.get_order(ns.order_id)
        if order is None:
            LOG.error(f"Order {ns.order_id} not found")
            return 1
        payload = asdict(order)
        payload["lines"] = [dict(asdict(line), subtotal=line.subtotal) for line in ctx.db.order_lines(ns.order_id)]
        _print_json(payload)
        return 0

    show.set_defaults(handler=_show)

    delete = sub.add_parser("delete", help="Delete an order and its lines")
    delete.add_argument("order_id", type=int)

    def _delete(ns: argparse.Namespace) -> int:
        return 0 if ctx_factory(ns).confirmation.delete_order(ns.order_id) else 1

    delete.set_defaults(handler=_delete)

    reissue = sub.add_parser("reissue", help="Regenerate the confirmation code and resend the invoice")
    reissue.add_argument("order_id", type=int)

    def _reissue(ns: argparse.Namespace) -> int:
        try:
            result = ctx_factory(ns).confirmation.reissue_code(ns.order_id)
        except (LookupError, ValueError) as exc:
            LOG.error(str(exc))
            return 1
        print(f"Order #{ns.order_id}: new code {result.order.confirmation_code} (was {result.previous_code})")
        if result.warning:
            print(result.warning)
        return 0

    reissue.set_defaults(handler=_reissue)


# ---------------- confirm ----------------
def _read_codes(stream: TextIO, timeout: float):
    """Yield stripped lines from ``stream`` until EOF or ``timeout`` seconds of silence."""
    lines: "queue.Queue[Optional[str]]" = queue.Queue()

    def _pump() -> None:
        for line in stream:
            lines.put(line)
        lines.put(None)

    threading.Thread(target=_pump, name="code-reader", daemon=True).start()
    while True:
        try:
            line = lines.get(timeout=timeout)
        except queue.Empty:
            LOG.warning(f"No input for {int(timeout)}s; stopping code entry")
            return
        if line is None:
            return
        line = line.strip()
        if line:
            yield line


def _add_confirm_cli(subparsers, ctx_factory) -> None:
    confirm = subparsers.add_parser("confirm", help="Redeem confirmation codes at pickup")
    group = confirm.add_mutually_exclusive_group(required=True)
    group.add_argument("--code")
    group.add_argument("--interactive", action="store_true", help="Read codes (typed or scanned) from stdin")
    confirm.add_argument("--timeout", type=float, default=SCAN_TIMEOUT_SECONDS, help="Inactivity timeout in seconds")

    def _report(ctx: AppContext, code: str) -> int:
        if not looks_like_code(code):
            print(f"NOT FOUND: {normalize_code(code)} (not a confirmation code)")
            return 1
        result = ctx.confirmation.confirm_by_code(code)
        if result.outcome is ConfirmationOutcome.NOT_FOUND:
            print(f"NOT FOUND: {normalize_code(code)}")
            return 1
        if result.outcome is ConfirmationOutcome.ALREADY_CLAIMED:
            print(f"ALREADY CLAIMED: {result.code} at {result.confirmed_at} ({result.order.customer_name})")
            return 3
        print(f"CONFIRMED: {result.code} for {result.order.customer_name} ({result.order.total_amount:.2f})")
        if result.warning:
            print(result.warning)
        return 0

    def _confirm(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        if ns.code:
            return _report(ctx, ns.code)
        print(f"Enter or scan codes; stops after {int(ns.timeout)}s without input.")
        for code in _read_codes(sys.stdin, ns.timeout):
            _report(ctx, code)
        return 0

    confirm.set_defaults(handler=_confirm)


# ---------------- sync ----------------
def _add_sync_cli(subparsers, ctx_factory) -> None:
    sync = subparsers.add_parser("sync", help="Run one sync pass over registered forms")
    sync.add_argument("--form-id", help="Only sync this form")

    def _sync(ns: argparse.Namespace) -> int:
        engine = ctx_factory(ns).sync_engine()
        report = engine.sync_form(ns.form_id) if ns.form_id else engine.sync_all()
        for warning in report.warnings:
            print(f"warning: {warning}")
        print(report.message)
        return 0 if not report.errors else 1

    sync.set_defaults(handler=_sync)

    watch = subparsers.add_parser("watch", help="Auto-sync on the stored interval until interrupted")
    watch.add_argument("--poll-seconds", type=float, default=30.0, help="How often stored settings are re-read")

    def _watch(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        scheduler = AutoSyncScheduler(ctx.sync_engine(), ctx.db.get_sync_settings)
        settings = ctx.db.get_sync_settings()
        if not settings.auto_sync_enabled:
            LOG.warning("Auto-sync is disabled; enable it with 'settings sync --enable'. Waiting for changes.")
        LOG.info("Press Ctrl+C to stop.")
        try:
            scheduler.watch_settings(poll_seconds=ns.poll_seconds)
        except KeyboardInterrupt:
            LOG.info("Watch mode interrupted by user. Exiting.")
        return 0

    watch.set_defaults(handler=_watch)


# ---------------- settings / template ----------------
def _add_settings_cli(subparsers, ctx_factory) -> None:
    settings = subparsers.add_parser("settings", help="Sync and email settings")
    sub = settings.add_subparsers(dest="settings_command", required=True)

    show = sub.add_parser("show", help="Print stored settings (passwords masked)")

    def _show(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        smtp = ctx.db.get_smtp_settings()
        oauth = ctx.db.get_oauth_account()
        choice = ctx.mailer.transport()
        _print_json(
            {
                "sync": asdict(ctx.db.get_sync_settings()),
                "smtp": dict(asdict(smtp), password="***") if smtp else None,
                "oauth": {"sender_email": oauth.sender_email, "sender_name": oauth.sender_name} if oauth else None,
                "active_transport": choice.kind if choice else None,
            }
        )
        return 0

    show.set_defaults(handler=_show)

    sync = sub.add_parser("sync", help="Auto-sync switch and interval")
    toggle = sync.add_mutually_exclusive_group()
    toggle.add_argument("--enable", dest="enabled", action="store_true", default=None)
    toggle.add_argument("--disable", dest="enabled", action="store_false")
    sync.add_argument("--interval", type=int, help="Minutes between passes (minimum 1)")

    def _sync(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        current = ctx.db.get_sync_settings()
        updated = ctx.db.save_sync_settings(
            SyncSettings(
                auto_sync_enabled=current.auto_sync_enabled if ns.enabled is None else ns.enabled,
                sync_interval_minutes=ns.interval if ns.interval is not None else current.sync_interval_minutes,
            )
        )
        _print_json(asdict(updated))
        return 0

    sync.set_defaults(handler=_sync)

    smtp = sub.add_parser("smtp", help="Store SMTP credentials")
    smtp.add_argument("--host", required=True)
    smtp.add_argument("--port", type=int, default=587)
    smtp.add_argument("--username", required=True)
    smtp.add_argument("--password", required=True)
    smtp.add_argument("--from-email")
    smtp.add_argument("--from-name", default="POTracker")

    def _smtp(ns: argparse.Namespace) -> int:
        ctx_factory(ns).db.save_smtp_settings(
            SmtpSettings(
                host=ns.host,
                port=ns.port,
                username=ns.username,
                password=ns.password,
                from_email=ns.from_email or ns.username,
                from_name=ns.from_name,
            )
        )
        LOG.info(f"SMTP settings saved for {ns.host}:{ns.port}")
        return 0

    smtp.set_defaults(handler=_smtp)

    oauth = sub.add_parser("oauth", help="Store the provider account used for sending")
    oauth.add_argument("--token", required=True, help="Access token")
    oauth.add_argument("--sender", required=True, help="Sender email address")
    oauth.add_argument("--sender-name")

    def _oauth(ns: argparse.Namespace) -> int:
        ctx_factory(ns).db.save_oauth_account(OAuthAccount(ns.token, ns.sender, ns.sender_name))
        LOG.info(f"Provider account saved for {ns.sender}")
        return 0

    oauth.set_defaults(handler=_oauth)


def _add_template_cli(subparsers, ctx_factory) -> None:
    template = subparsers.add_parser("template", help="Invoice template")
    sub = template.add_subparsers(dest="template_command", required=True)

    show = sub.add_parser("show", help="Print the template as JSON")

    def _show(ns: argparse.Namespace) -> int:
        _print_json(ctx_factory(ns).db.get_invoice_template().to_dict())
        return 0

    show.set_defaults(handler=_show)

    reset = sub.add_parser("reset", help="Restore the default template")

    def _reset(ns: argparse.Namespace) -> int:
        _print_json(ctx_factory(ns).db.reset_invoice_template().to_dict())
        return 0

    reset.set_defaults(handler=_reset)

    set_cmd = sub.add_parser("set", help="Replace the template from a JSON file")
    set_cmd.add_argument("--file", required=True)

    def _set(ns: argparse.Namespace) -> int:
        with open(ns.file, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            LOG.error("Template file must contain a JSON object")
            return 2
        ctx_factory(ns).db.save_invoice_template(InvoiceTemplate.from_dict(data))
        LOG.info(f"Invoice template updated from {ns.file}")
        return 0

    set_cmd.set_defaults(handler=_set)

    preview = sub.add_parser("preview", help="Render an order's invoice HTML to a file")
    preview.add_argument("order_id", type=int)
    preview.add_argument("--output", required=True)

    def _preview(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        order = ctx.db.get_order(ns.order_id)
        if order is None:
            LOG.error(f"Order {ns.order_id} not found")
            return 1
        rendered = ctx.mailer.render_invoice(order)
        with open(ns.output, "w", encoding="utf-8") as fh:
            fh.write(rendered.html)
        LOG.info(f"Wrote {ns.output} ({len(rendered.attachments)} inline attachment(s) not written)")
        return 0

    preview.set_defaults(handler=_preview)


def _add_relay_cli(subparsers) -> None:
    relay = subparsers.add_parser("relay", help="Mail relay HTTP service")
    sub = relay.add_subparsers(dest="relay_command", required=True)
    serve = sub.add_parser("serve", help="Run the relay service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3001)
    serve.add_argument("--log-level", default="info")
    serve.add_argument(
        "--allow-origin",
        action="append",
        dest="allow_origins",
        help="Allowed CORS origin (can be provided multiple times, use '*' for any).",
    )

    def _serve(ns: argparse.Namespace) -> int:
        from ..mail.relay import create_app
        import uvicorn

        app = create_app(allow_origins=ns.allow_origins)
        uvicorn.run(app, host=ns.host, port=ns.port, log_level=ns.log_level)
        return 0

    serve.set_defaults(handler=_serve)

    health = sub.add_parser("health", help="Ping a running relay service")
    health.add_argument("--url", help="Relay base URL (default: MAIL_RELAY_URL)")

    def _health(ns: argparse.Namespace) -> int:
        url = ns.url or load_relay_url(ns.root or os.getcwd())
        if not url:
            raise NotConfigured("No relay URL given and MAIL_RELAY_URL is not set")
        try:
            _print_json(MailRelayClient(url, timeout=10).health())
        except requests.RequestException as exc:
            LOG.error(f"Relay at {url} is not healthy: {exc}")
            return 1
        return 0

    health.set_defaults(handler=_health)


def main(argv: Sequence[str] | None = None) -> int:
    provided = list(argv) if argv is not None else sys.argv[1:]
    LOG.debug(f"CLI invoked with arguments: {provided}")

    parser = argparse.ArgumentParser(
        prog="preorder-sync",
        description="Pre-order form sync, invoicing and pickup confirmation.",
    )
    parser.add_argument("--root", help="Project root holding var/ and .env (default: discovered from cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging (overrides LOG_LEVEL)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    cache: Dict[str, AppContext] = {}

    def ctx_factory(ns: argparse.Namespace) -> AppContext:
        if "ctx" not in cache:
            cache["ctx"] = build_context(ns.root)
        return cache["ctx"]

    init = subparsers.add_parser("init", help="Create/ensure the database schema exists")

    def _init(ns: argparse.Namespace) -> int:
        path = ctx_factory(ns).db.db_path
        LOG.info(f"Order DB ready at: {path}")
        print(path)
        return 0

    init.set_defaults(handler=_init)

    summary = subparsers.add_parser("summary", help="Counts of products, orders, forms and synced responses")

    def _summary(ns: argparse.Namespace) -> int:
        ctx = ctx_factory(ns)
        payload = ctx.db.fetch_summary()
        payload["sync"] = asdict(ctx.db.get_sync_settings())
        _print_json(payload)
        return 0

    summary.set_defaults(handler=_summary)

    _add_products_cli(subparsers, ctx_factory)
    _add_forms_cli(subparsers, ctx_factory)
    _add_orders_cli(subparsers, ctx_factory)
    _add_confirm_cli(subparsers, ctx_factory)
    _add_sync_cli(subparsers, ctx_factory)
    _add_settings_cli(subparsers, ctx_factory)
    _add_template_cli(subparsers, ctx_factory)
    _add_relay_cli(subparsers)

    args = parser.parse_args(provided)
    if args.verbose:
        configure_logging(level="DEBUG")
    try:
        code = args.handler(args)
    except NotConfigured as exc:
        LOG.error(str(exc))
        code = 2
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    LOG.debug(f"Subcommand '{args.command}' finished with exit code {code}.")
    return code


if __name__ == "__main__":
    sys.exit(main())
