"""Ledger of form responses that were already turned into (or evaluated as) orders."""

from __future__ import annotations

from typing import List, Optional

from ..domain.models import SyncedResponse
from ..logging import get_logger
from .db import OrderDatabase

LOG = get_logger("response-ledger")

TABLE_NAME = "synced_responses"


class ResponseLedger:
    """Append-only set of consumed response ids.

    The response id alone is the key, so an id is consumed at most once
    across all forms. Entries only disappear when their form is removed.
    """

    def __init__(self, db: OrderDatabase) -> None:
        self.db = db

    def is_synced(self, response_id: str) -> bool:
        with self.db.connect() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT 1 FROM {TABLE_NAME} WHERE response_id=?", (response_id,))
            return cur.fetchone() is not None

    def mark_synced(self, response_id: str, form_id: str) -> None:
        """Record a response as consumed; repeating the call is a no-op."""
        with self.db.transaction() as conn:
            conn.execute(
                f"INSERT OR IGNORE INTO {TABLE_NAME} (response_id, form_id) VALUES (?, ?);",
                (response_id, form_id),
            )
        LOG.debug(f"Marked response {response_id} of form {form_id} as synced")

    def claim(self, response_id: str, form_id: str) -> bool:
        """Atomically record the response; True only for the caller that inserted it.

        For deployments where more than one process syncs the same forms.
        """
        with self.db.transaction() as conn:
            cur = conn.execute(
                f"INSERT OR IGNORE INTO {TABLE_NAME} (response_id, form_id) VALUES (?, ?);",
                (response_id, form_id),
            )
            claimed = cur.rowcount == 1
        if not claimed:
            LOG.debug(f"Response {response_id} already claimed")
        return claimed

    def entries(self, form_id: Optional[str] = None) -> List[SyncedResponse]:
        sql = f"SELECT response_id, form_id, synced_at FROM {TABLE_NAME}"
        params: tuple = ()
        if form_id:
            sql += " WHERE form_id=?"
            params = (form_id,)
        sql += " ORDER BY synced_at ASC, response_id ASC"
        with self.db.connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [SyncedResponse(r["response_id"], r["form_id"], r["synced_at"]) for r in rows]

    def count(self, form_id: Optional[str] = None) -> int:
        sql = f"SELECT COUNT(*) AS count FROM {TABLE_NAME}"
        params: tuple = ()
        if form_id:
            sql += " WHERE form_id=?"
            params = (form_id,)
        with self.db.connect() as conn:
            return int(conn.execute(sql, params).fetchone()["count"])
