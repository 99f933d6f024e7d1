from __future__ import annotations

import threading
from typing import Callable, Optional

from ..domain.models import SyncSettings
from ..logging import get_logger
from .engine import FormSyncEngine, SyncReport

LOG = get_logger("auto-sync")


class AutoSyncScheduler:
    """Runs ``engine.sync_all`` every interval on a background thread.

    Each arm gets its own cancellation event. Cancelling stops new passes
    from starting; a pass already in flight finishes on its own.
    """

    def __init__(
        self,
        engine: FormSyncEngine,
        settings_provider: Callable[[], SyncSettings],
        *,
        on_report: Optional[Callable[[SyncReport], None]] = None,
        seconds_per_minute: float = 60.0,
    ) -> None:
        self.engine = engine
        self.seconds_per_minute = float(seconds_per_minute)
        self.settings_provider = settings_provider
        self.on_report = on_report
        self._cancel: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None
        self._settings: Optional[SyncSettings] = None
        self._guard = threading.Lock()

    @property
    def armed(self) -> bool:
        return self._cancel is not None and not self._cancel.is_set()

    @property
    def settings(self) -> Optional[SyncSettings]:
        return self._settings

    def _loop(self, cancel: threading.Event, interval: float) -> None:
        while not cancel.wait(interval):
            try:
                report = self.engine.sync_all()
            except Exception:
                LOG.exception("Auto-sync pass failed")
                continue
            if not report.skipped:
                LOG.info(f"Auto-sync: {report.message}")
            if self.on_report is not None:
                self.on_report(report)

    def rearm(self, settings: Optional[SyncSettings] = None) -> bool:
        """Cancel the current timer and start one for ``settings`` (or the stored ones)."""
        settings = settings or self.settings_provider()
        with self._guard:
            self._cancel_locked()
            self._settings = settings
            if not settings.auto_sync_enabled:
                LOG.info("Auto-sync disabled")
                return False
            cancel = threading.Event()
            thread = threading.Thread(
                target=self._loop,
                args=(cancel, settings.sync_interval_minutes * self.seconds_per_minute),
                name="preorder-auto-sync",
                daemon=True,
            )
            self._cancel, self._thread = cancel, thread
            thread.start()
        LOG.info(f"Auto-sync armed every {settings.sync_interval_minutes} minute(s)")
        return True

    start = rearm

    def stop(self, *, wait: bool = False, timeout: Optional[float] = None) -> None:
        with self._guard:
            thread = self._thread
            self._cancel_locked()
        if wait and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _cancel_locked(self) -> None:
        if self._cancel is not None:
            self._cancel.set()
        self._cancel = None
        self._thread = None

    def watch_settings(self, *, poll_seconds: float = 30.0, stop_event: Optional[threading.Event] = None) -> None:
        """Block, re-arming whenever the stored settings change."""
        stop = stop_event or threading.Event()
        self.rearm()
        try:
            while not stop.wait(poll_seconds):
                current = self.settings_provider()
                if current != self._settings:
                    LOG.info("Sync settings changed; re-arming")
                    self.rearm(current)
        finally:
            self.stop()
