from __future__ import annotations

import json
import os
import sqlite3
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence

from ..domain.models import (
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUSES,
    FormRegistration,
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
from ..logging import get_logger
from ..paths import find_project_root, var_dir


LOG = get_logger("order-db")

DEFAULT_DB_FOLDER = "preorders"
DEFAULT_DB_FILENAME = "preorders.sqlite3"

STATUS_ENUM_SQL = ", ".join(f"'{value}'" for value in ORDER_STATUSES)


SCHEMA_SQL = f"""
-- 1) Catalog
CREATE TABLE IF NOT EXISTS products (
  product_id    INTEGER PRIMARY KEY,
  name          TEXT NOT NULL,
  description   TEXT,
  price         REAL NOT NULL CHECK(price >= 0),
  currency_code TEXT NOT NULL DEFAULT 'USD',
  event_id      INTEGER,
  is_active     INTEGER NOT NULL DEFAULT 1,
  created_at    TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS product_prices (
  price_id      INTEGER PRIMARY KEY,
  product_id    INTEGER NOT NULL REFERENCES products(product_id) ON DELETE CASCADE,
  currency_code TEXT NOT NULL,
  price         REAL NOT NULL CHECK(price >= 0),
  UNIQUE(product_id, currency_code)
);

CREATE TABLE IF NOT EXISTS product_tags (
  product_id  INTEGER NOT NULL REFERENCES products(product_id) ON DELETE CASCADE,
  tag         TEXT NOT NULL,
  PRIMARY KEY(product_id, tag)
);

-- 2) Orders
CREATE TABLE IF NOT EXISTS preorders (
  order_id          INTEGER PRIMARY KEY,
  customer_name     TEXT NOT NULL,
  customer_email    TEXT NOT NULL,
  confirmation_code TEXT NOT NULL UNIQUE
                    CHECK(length(confirmation_code) = 8 AND confirmation_code = UPPER(confirmation_code)),
  status            TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ({STATUS_ENUM_SQL})),
  total_amount      REAL NOT NULL,
  notes             TEXT,
  created_at        TEXT DEFAULT (datetime('now')),
  confirmed_at      TEXT
);

CREATE TABLE IF NOT EXISTS order_items (
  item_id     INTEGER PRIMARY KEY,
  order_id    INTEGER NOT NULL REFERENCES preorders(order_id) ON DELETE CASCADE,
  product_id  INTEGER NOT NULL REFERENCES products(product_id),
  quantity    INTEGER NOT NULL CHECK(quantity > 0),
  unit_price  REAL NOT NULL
);

-- 3) Form registrations + dedup ledger
CREATE TABLE IF NOT EXISTS forms (
  form_id         TEXT PRIMARY KEY,
  form_url        TEXT NOT NULL,
  responder_url   TEXT NOT NULL,
  title           TEXT NOT NULL,
  created_at      TEXT DEFAULT (datetime('now')),
  last_synced_at  TEXT
);

CREATE TABLE IF NOT EXISTS synced_responses (
  response_id  TEXT PRIMARY KEY,
  form_id      TEXT NOT NULL REFERENCES forms(form_id) ON DELETE CASCADE,
  synced_at    TEXT DEFAULT (datetime('now'))
);

-- 4) Singletons
CREATE TABLE IF NOT EXISTS sync_settings (
  id                     INTEGER PRIMARY KEY CHECK (id = 1),
  auto_sync_enabled      INTEGER NOT NULL DEFAULT 0,
  sync_interval_minutes  INTEGER NOT NULL DEFAULT 15 CHECK(sync_interval_minutes >= 1)
);

CREATE TABLE IF NOT EXISTS invoice_templates (
  id       INTEGER PRIMARY KEY CHECK (id = 1),
  payload  TEXT NOT NULL            -- JSON
);

CREATE TABLE IF NOT EXISTS smtp_settings (
  id          INTEGER PRIMARY KEY CHECK (id = 1),
  smtp_server TEXT NOT NULL,
  smtp_port   INTEGER NOT NULL DEFAULT 587,
  username    TEXT NOT NULL,
  password    TEXT NOT NULL,
  from_email  TEXT NOT NULL,
  from_name   TEXT DEFAULT 'POTracker'
);

CREATE TABLE IF NOT EXISTS oauth_account (
  id            INTEGER PRIMARY KEY CHECK (id = 1),
  access_token  TEXT,
  sender_email  TEXT,
  sender_name   TEXT
);

-- Helpful indexes
CREATE INDEX IF NOT EXISTS idx_preorders_status   ON preorders(status);
CREATE INDEX IF NOT EXISTS idx_items_order        ON order_items(order_id);
CREATE INDEX IF NOT EXISTS idx_synced_form        ON synced_responses(form_id);
CREATE INDEX IF NOT EXISTS idx_products_name      ON products(name);
"""


def is_code_collision(exc: BaseException) -> bool:
    """True when an IntegrityError came from the unique confirmation code."""
    msg = str(exc)
    return isinstance(exc, sqlite3.IntegrityError) and "UNIQUE" in msg and "confirmation_code" in msg


class OrderDatabase:
    """SQLite-backed store for products, orders, forms and settings.

    - Places the DB under `<project-root>/var/preorders/preorders.sqlite3`
      unless an explicit `db_path` is given.
    - Ensures schema on first use.
    - Opens one short-lived connection per call (foreign keys enabled).
    """

    def __init__(self, root_dir: Optional[str] = None, *, db_path: Optional[str] = None) -> None:
        if db_path:
            self.db_path = os.path.abspath(db_path)
            os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        else:
            root = find_project_root(root_dir)
            db_folder = os.path.join(var_dir(root), DEFAULT_DB_FOLDER)
            os.makedirs(db_folder, exist_ok=True)
            self.db_path = os.path.join(db_folder, DEFAULT_DB_FILENAME)
        LOG.info(f"Order DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON;")
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection whose writes commit together or not at all."""
        with self.connect() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.DatabaseError:
                # Non-fatal; continue with schema creation
                pass
            LOG.debug("Ensuring order DB schema is present")
            cur.executescript(SCHEMA_SQL)
            conn.commit()

    # --------------- Row helpers ---------------
    @staticmethod
    def _row_to_order(row: sqlite3.Row) -> PreOrder:
        return PreOrder(
            order_id=int(row["order_id"]),
            customer_name=row["customer_name"],
            customer_email=row["customer_email"],
            confirmation_code=row["confirmation_code"],
            status=row["status"],
            total_amount=float(row["total_amount"]),
            notes=row["notes"],
            created_at=row["created_at"],
            confirmed_at=row["confirmed_at"],
        )

    @staticmethod
    def _row_to_form(row: sqlite3.Row) -> FormRegistration:
        return FormRegistration(
            form_id=row["form_id"],
            form_url=row["form_url"],
            responder_url=row["responder_url"],
            title=row["title"],
            created_at=row["created_at"],
            last_synced_at=row["last_synced_at"],
        )

    # --------------- Products ---------------
    def add_product(
        self,
        name: str,
        price: float,
        *,
        currency_code: str = "USD",
        description: Optional[str] = None,
        prices: Optional[Iterable[ProductPrice]] = None,
        tags: Optional[Iterable[str]] = None,
        event_id: Optional[int] = None,
    ) -> int:
        with self.transaction() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO products (name, description, price, currency_code, event_id)
                VALUES (?, ?, ?, ?, ?)
                RETURNING product_id;
                """,
                (name.strip(), description, float(price), currency_code.upper(), event_id),
            )
            product_id = int(cur.fetchone()[0])
            for extra in prices or ():
                cur.execute(
                    """
                    INSERT INTO product_prices (product_id, currency_code, price)
                    VALUES (?, ?, ?)
                    ON CONFLICT(product_id, currency_code) DO UPDATE SET price=excluded.price;
                    """,
                    (product_id, extra.currency_code.upper(), float(extra.price)),
                )
            for tag in tags or ():
                if tag:
                    cur.execute(
                        "INSERT OR IGNORE INTO product_tags (product_id, tag) VALUES (?, ?);",
                        (product_id, tag.strip()),
                    )
        LOG.info(f"Added product #{product_id} {name!r} at {price:.2f} {currency_code}")
        return product_id

    def _load_products(self, conn: sqlite3.Connection, where: str, params: Sequence[Any]) -> List[Product]:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT product_id, name, description, price, currency_code, event_id, created_at
            FROM products
            {where}
            ORDER BY name ASC, product_id ASC;
            """,
            params,
        )
        products = [
            Product(
                product_id=int(row["product_id"]),
                name=row["name"],
                price=float(row["price"]),
                currency_code=row["currency_code"],
                description=row["description"],
                event_id=row["event_id"],
                created_at=row["created_at"],
            )
            for row in cur.fetchall()
        ]
        if not products:
            return products
        by_id = {p.product_id: p for p in products}
        marks = ", ".join("?" for _ in by_id)
        cur.execute(
            f"SELECT price_id, product_id, currency_code, price FROM product_prices WHERE product_id IN ({marks}) ORDER BY price_id;",
            tuple(by_id),
        )
        for row in cur.fetchall():
            by_id[row["product_id"]].prices.append(
                ProductPrice(currency_code=row["currency_code"], price=float(row["price"]), price_id=row["price_id"])
            )
        cur.execute(
            f"SELECT product_id, tag FROM product_tags WHERE product_id IN ({marks}) ORDER BY tag;",
            tuple(by_id),
        )
        for row in cur.fetchall():
            by_id[row["product_id"]].tags.append(row["tag"])
        return products

    def list_products(self, *, active_only: bool = True) -> List[Product]:
        where = "WHERE is_active = 1" if active_only else ""
        with self.connect() as conn:
            return self._load_products(conn, where, ())

    def get_product(self, product_id: int) -> Optional[Product]:
        with self.connect() as conn:
            found = self._load_products(conn, "WHERE product_id = ?", (int(product_id),))
        return found[0] if found else None

    def find_product_by_name(self, name: str) -> Optional[Product]:
        with self.connect() as conn:
            found = self._load_products(conn, "WHERE is_active = 1 AND name = ?", (name,))
        return found[0] if found else None

    def deactivate_product(self, product_id: int) -> bool:
        """Hide a product from the catalog; order lines keep referencing it."""
        with self.transaction() as conn:
            cur = conn.execute("UPDATE products SET is_active = 0 WHERE product_id = ?;", (int(product_id),))
            return cur.rowcount > 0

    # --------------- Orders ---------------
    def insert_order(self, order: PreOrder, lines: Sequence[OrderLine]) -> int:
        """Insert the order header and all its lines in one transaction."""
        if not lines:
            raise ValueError("An order needs at least one line")
        try:
            with self.transaction() as conn:
                cur = conn.cursor()
                cur.execute(
                    """
                    INSERT INTO preorders (
                        customer_name, customer_email, confirmation_code,
                        status, total_amount, notes
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    RETURNING order_id;
                    """,
                    (
                        order.customer_name,
                        order.customer_email,
                        order.confirmation_code,
                        order.status,
                        float(order.total_amount),
                        order.notes,
                    ),
                )
                order_id = int(cur.fetchone()[0])
                for line in lines:
                    cur.execute(
                        """
                        INSERT INTO order_items (order_id, product_id, quantity, unit_price)
                        VALUES (?, ?, ?, ?);
                        """,
                        (order_id, int(line.product_id), int(line.quantity), float(line.unit_price)),
                    )
        except sqlite3.IntegrityError as exc:
            if is_code_collision(exc):
                LOG.debug(f"Confirmation code {order.confirmation_code} already taken")
            else:
                LOG.exception("Order insert failed; transaction rolled back")
            raise
        return order_id

    def get_order(self, order_id: int) -> Optional[PreOrder]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM preorders WHERE order_id = ?;", (int(order_id),)).fetchone()
        return self._row_to_order(row) if row else None

    def get_order_by_code(self, code: str) -> Optional[PreOrder]:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM preorders WHERE confirmation_code = ?;",
                (code,),
            ).fetchone()
        return self._row_to_order(row) if row else None

    def list_orders(self, *, status: Optional[str] = None, limit: int = 500) -> List[PreOrder]:
        params: List[Any] = []
        where = ""
        if status:
            where = "WHERE status = ?"
            params.append(status)
        with self.connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM preorders {where} ORDER BY created_at DESC, order_id DESC LIMIT ?;",
                (*params, int(limit)),
            ).fetchall()
        return [self._row_to_order(r) for r in rows]

    def count_orders(self) -> int:
        with self.connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM preorders;").fetchone()[0])

    def order_lines(self, order_id: int) -> List[OrderLineDetail]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT oi.product_id, p.name AS product_name, oi.quantity, oi.unit_price
                FROM order_items oi
                JOIN products p ON p.product_id = oi.product_id
                WHERE oi.order_id = ?
                ORDER BY oi.item_id ASC;
                """,
                (int(order_id),),
            ).fetchall()
        return [
            OrderLineDetail(
                product_id=int(r["product_id"]),
                product_name=r["product_name"],
                quantity=int(r["quantity"]),
                unit_price=float(r["unit_price"]),
            )
            for r in rows
        ]

    def confirm_order(self, order_id: int) -> bool:
        """Move a non-confirmed order to confirmed; False if it already was."""
        with self.transaction() as conn:
            cur = conn.execute(
                """
                UPDATE preorders
                SET status = ?, confirmed_at = datetime('now')
                WHERE order_id = ? AND status != ?;
                """,
                (ORDER_STATUS_CONFIRMED, int(order_id), ORDER_STATUS_CONFIRMED),
            )
            return cur.rowcount > 0

    def set_status(self, order_id: int, status: str) -> bool:
        """Change status; a confirmed order never regresses."""
        if status not in ORDER_STATUSES:
            raise ValueError(f"Unsupported status: {status}")
        if status == ORDER_STATUS_CONFIRMED:
            return self.confirm_order(order_id)
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE preorders SET status = ? WHERE order_id = ? AND status != ?;",
                (status, int(order_id), ORDER_STATUS_CONFIRMED),
            )
            return cur.rowcount > 0

    def update_confirmation_code(self, order_id: int, code: str) -> bool:
        with self.transaction() as conn:
            cur = conn.execute(
                "UPDATE preorders SET confirmation_code = ? WHERE order_id = ?;",
                (code, int(order_id)),
            )
            return cur.rowcount > 0

    def delete_order(self, order_id: int) -> bool:
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM preorders WHERE order_id = ?;", (int(order_id),))
            deleted = cur.rowcount > 0
        if deleted:
            LOG.info(f"Deleted order #{order_id} and its lines")
        return deleted

    # --------------- Forms ---------------
    def register_form(self, form: FormRegistration) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO forms (form_id, form_url, responder_url, title)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(form_id) DO UPDATE SET
                    form_url=excluded.form_url,
                    responder_url=excluded.responder_url,
                    title=excluded.title;
                """,
                (form.form_id, form.form_url, form.responder_url, form.title),
            )

    def list_forms(self) -> List[FormRegistration]:
        with self.connect() as conn:
            rows = conn.execute("SELECT * FROM forms ORDER BY created_at ASC, form_id ASC;").fetchall()
        return [self._row_to_form(r) for r in rows]

    def get_form(self, form_id: str) -> Optional[FormRegistration]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM forms WHERE form_id = ?;", (form_id,)).fetchone()
        return self._row_to_form(row) if row else None

    def remove_form(self, form_id: str) -> bool:
        """Drop a form registration together with its ledger entries."""
        with self.transaction() as conn:
            cur = conn.execute("DELETE FROM forms WHERE form_id = ?;", (form_id,))
            return cur.rowcount > 0

    def touch_last_synced(self, form_id: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "UPDATE forms SET last_synced_at = datetime('now') WHERE form_id = ?;",
                (form_id,),
            )

    # --------------- Settings ---------------
    def get_sync_settings(self) -> SyncSettings:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM sync_settings WHERE id = 1;").fetchone()
        if row is None:
            return SyncSettings()
        return SyncSettings(
            auto_sync_enabled=bool(row["auto_sync_enabled"]),
            sync_interval_minutes=int(row["sync_interval_minutes"]),
        )

    def save_sync_settings(self, settings: SyncSettings) -> SyncSettings:
        settings = SyncSettings(settings.auto_sync_enabled, settings.sync_interval_minutes)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO sync_settings (id, auto_sync_enabled, sync_interval_minutes)
                VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    auto_sync_enabled=excluded.auto_sync_enabled,
                    sync_interval_minutes=excluded.sync_interval_minutes;
                """,
                (1 if settings.auto_sync_enabled else 0, settings.sync_interval_minutes),
            )
        return settings

    def get_invoice_template(self) -> InvoiceTemplate:
        with self.connect() as conn:
            row = conn.execute("SELECT payload FROM invoice_templates WHERE id = 1;").fetchone()
        if row is None:
            return default_invoice_template()
        try:
            data = json.loads(row["payload"])
        except (TypeError, ValueError):
            LOG.warning("Stored invoice template is not valid JSON; using default")
            return default_invoice_template()
        return InvoiceTemplate.from_dict(data if isinstance(data, dict) else {})

    def save_invoice_template(self, template: InvoiceTemplate) -> None:
        payload = json.dumps(template.to_dict(), ensure_ascii=False)
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO invoice_templates (id, payload) VALUES (1, ?)
                ON CONFLICT(id) DO UPDATE SET payload=excluded.payload;
                """,
                (payload,),
            )

    def reset_invoice_template(self) -> InvoiceTemplate:
        with self.transaction() as conn:
            conn.execute("DELETE FROM invoice_templates WHERE id = 1;")
        return default_invoice_template()

    def get_smtp_settings(self) -> Optional[SmtpSettings]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM smtp_settings WHERE id = 1;").fetchone()
        if row is None:
            return None
        return SmtpSettings(
            host=row["smtp_server"],
            port=int(row["smtp_port"]),
            username=row["username"],
            password=row["password"],
            from_email=row["from_email"],
            from_name=row["from_name"] or "POTracker",
        )

    def save_smtp_settings(self, settings: SmtpSettings) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO smtp_settings (id, smtp_server, smtp_port, username, password, from_email, from_name)
                VALUES (1, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    smtp_server=excluded.smtp_server,
                    smtp_port=excluded.smtp_port,
                    username=excluded.username,
                    password=excluded.password,
                    from_email=excluded.from_email,
                    from_name=excluded.from_name;
                """,
                (
                    settings.host,
                    int(settings.port),
                    settings.username,
                    settings.password,
                    settings.from_email,
                    settings.from_name,
                ),
            )

    def get_oauth_account(self) -> Optional[OAuthAccount]:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM oauth_account WHERE id = 1;").fetchone()
        if row is None:
            return None
        return OAuthAccount(
            access_token=row["access_token"],
            sender_email=row["sender_email"],
            sender_name=row["sender_name"],
        )

    def save_oauth_account(self, account: OAuthAccount) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO oauth_account (id, access_token, sender_email, sender_name)
                VALUES (1, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    access_token=excluded.access_token,
                    sender_email=excluded.sender_email,
                    sender_name=excluded.sender_name;
                """,
                (account.access_token, account.sender_email, account.sender_name),
            )

    # --------------- Summary ---------------
    def fetch_summary(self) -> Dict[str, Any]:
        """Return high-level counts for the CLI and relay health views."""
        with self.connect() as conn:
            cur = conn.cursor()
            counts: Dict[str, int] = {}
            for table in ("products", "preorders", "order_items", "forms", "synced_responses"):
                cur.execute(f"SELECT COUNT(*) AS count FROM {table};")
                counts[table] = int(cur.fetchone()["count"])
            cur.execute("SELECT status, COUNT(*) AS count FROM preorders GROUP BY status;")
            by_status = {row["status"]: int(row["count"]) for row in cur.fetchall()}
            cur.execute("SELECT COALESCE(SUM(total_amount), 0) AS total FROM preorders;")
            total = float(cur.fetchone()["total"] or 0)
        return {"counts": counts, "orders_by_status": by_status, "order_value": round(total, 2)}
