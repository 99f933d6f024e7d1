"""Form sync pass: pull -> map -> dedup -> ingest -> email -> mark synced.

Forms are handled one after another and responses one at a time, each
checked against the ledger and marked before the next one is looked at.
A single lock keeps passes from overlapping; a request that arrives while a
pass is running returns immediately with ``skipped=True``.
"""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..domain.mapping import QuestionLayout, catalog_by_name, map_response
from ..domain.models import FormRegistration
from ..errors import PreorderError, RemoteFetchFailed
from ..logging import get_logger
from ..orders.ingest import OrderIngestor
from ..orders.mailer import OrderMailer
from ..store.db import OrderDatabase
from ..store.ledger import ResponseLedger

LOG = get_logger("form-sync")


@dataclass
class SyncReport:
    imported: int = 0
    per_form: Dict[str, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors and not self.skipped

    @property
    def message(self) -> str:
        if self.skipped:
            return "Sync already in progress"
        if self.errors:
            return "Sync failed: " + "; ".join(self.errors)
        if self.imported:
            return f"Imported {self.imported} new order(s)!"
        return "No new orders."


class FormSyncEngine:
    def __init__(
        self,
        db: OrderDatabase,
        forms_client,
        *,
        ingestor: Optional[OrderIngestor] = None,
        mailer: Optional[OrderMailer] = None,
        ledger: Optional[ResponseLedger] = None,
    ) -> None:
        self.db = db
        self.forms_client = forms_client
        self.ingestor = ingestor or OrderIngestor(db)
        self.mailer = mailer
        self.ledger = ledger or ResponseLedger(db)
        self._running = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    def sync_all(self) -> SyncReport:
        """One pass over every registered form."""
        if not self._running.acquire(blocking=False):
            LOG.info("Sync requested while a pass is running; ignoring")
            return SyncReport(skipped=True)
        try:
            report = SyncReport()
            forms = self.db.list_forms()
            LOG.info(f"Sync pass started over {len(forms)} form(s)")
            for form in forms:
                self._sync_form(form, report)
            LOG.info(
                f"Sync pass finished: imported={report.imported}, "
                f"warnings={len(report.warnings)}, errors={len(report.errors)}"
            )
            return report
        finally:
            self._running.release()

    def sync_form(self, form_id: str) -> SyncReport:
        """Pass over a single registered form."""
        if not self._running.acquire(blocking=False):
            LOG.info("Sync requested while a pass is running; ignoring")
            return SyncReport(skipped=True)
        try:
            report = SyncReport()
            form = self.db.get_form(form_id)
            if form is None:
                report.errors.append(f"Form {form_id} is not registered")
                return report
            self._sync_form(form, report)
            return report
        finally:
            self._running.release()

    def _sync_form(self, form: FormRegistration, report: SyncReport) -> None:
        form_id = form.form_id
        try:
            questions = self.forms_client.get_form_definition(form_id)
            responses = self.forms_client.list_responses(form_id)
        except RemoteFetchFailed as exc:
            LOG.error(f"Fetching form {form_id} failed: {exc.detail}")
            report.errors.append(str(exc))
            return

        layout = QuestionLayout.from_questions(questions)
        imported = 0
        already = 0
        non_orders = 0
        try:
            catalog = catalog_by_name(self.db.list_products())
            for response in responses:
                if self.ledger.is_synced(response.response_id):
                    already += 1
                    continue
                mapped = map_response(layout, response, catalog)
                if mapped is None:
                    non_orders += 1
                    self.ledger.mark_synced(response.response_id, form_id)
                    continue
                if mapped.dropped_products:
                    report.warnings.append(
                        f"Response {response.response_id}: partial import, unknown product(s) "
                        + ", ".join(sorted(set(mapped.dropped_products)))
                    )

                order = self.ingestor.ingest_mapped(mapped, form_id=form_id)
                imported += 1
                try:
                    self._send_invoice(order, report)
                finally:
                    # Consumed once the order exists, whatever the email did
                    self.ledger.mark_synced(response.response_id, form_id)
            self.db.touch_last_synced(form_id)
        except (PreorderError, sqlite3.Error) as exc:
            LOG.error(f"Importing form {form_id} stopped after {imported} order(s): {exc}")
            report.errors.append(f"Form {form_id}: {exc}")
            return
        finally:
            report.imported += imported
            report.per_form[form_id] = imported

        LOG.info(
            "Form %s: %d response(s), imported=%d, already_synced=%d, not_orders=%d",
            form_id,
            len(responses),
            imported,
            already,
            non_orders,
        )

    def _send_invoice(self, order, report: SyncReport) -> None:
        if self.mailer is None:
            return
        try:
            self.mailer.send_invoice(order)
        except PreorderError as exc:
            LOG.warning(f"Order #{order.order_id} created but email failed: {exc}")
            report.warnings.append(f"Order {order.confirmation_code} created but email failed: {exc}")
        except Exception as exc:
            LOG.exception(f"Order #{order.order_id} created but building its email failed")
            report.warnings.append(f"Order {order.confirmation_code} created but email failed: {exc}")
