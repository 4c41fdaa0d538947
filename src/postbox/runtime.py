"""Daemon runtime that watches the drop directory and dispatches new mail."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from pathlib import Path
from types import FrameType
from typing import Any

from .dispatcher import Dispatcher
from .maildir import ensure_maildir_structure, inbox_new_dir, pending_messages
from .processor import ProcessingMetrics
from .watcher import MaildirWatcher

SignalHandler = Callable[[int, FrameType | None], Any] | int | signal.Handlers | None

LOGGER = logging.getLogger(__name__)
SIG_USR1 = getattr(signal, "SIGUSR1", None)


class DaemonRuntime:
    """Own the watcher and dispatcher lifecycle for one drop directory."""

    def __init__(
        self,
        maildir: Path,
        *,
        watcher: MaildirWatcher,
        dispatcher: Dispatcher,
        metrics: ProcessingMetrics | None = None,
        poll_interval: float = 0.5,
    ) -> None:
        self._maildir = maildir.expanduser()
        self._watcher = watcher
        self._dispatcher = dispatcher
        self._metrics = metrics
        self._poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._status_event = threading.Event()
        self._installed_signals: dict[int, SignalHandler] = {}
        self._watcher.on_new_mail(self._on_new_mail)

    def run(self, *, install_signals: bool = True) -> None:
        if install_signals:
            self._install_signal_handlers()
        try:
            self.start()
            self._wait_for_stop()
        finally:
            self.shutdown()
            self._restore_signal_handlers()

    def start(self) -> None:
        """Begin watching for new mail, then queue what is already waiting in new/.

        The watcher starts first so nothing delivered during startup is missed.
        The dispatcher drops paths reported by both the watcher and the backlog.
        """

        ensure_maildir_structure(self._maildir)
        LOGGER.info("Watching %s for new mail", inbox_new_dir(self._maildir))
        self._watcher.start()
        backlog = pending_messages(inbox_new_dir(self._maildir))
        if backlog:
            LOGGER.info("Queueing %s message(s) already waiting in %s", len(backlog), self._maildir)
        for path in backlog:
            self._dispatcher.submit(path)

    def stop(self) -> None:
        self._stop_event.set()

    def shutdown(self) -> None:
        self._watcher.stop()
        self._dispatcher.shutdown(wait=True)

    def status_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {
            "maildir": str(self._maildir),
            "watcher_running": self._watcher.is_running,
        }
        if self._metrics is not None:
            snapshot.update(self._metrics.snapshot())
        return snapshot

    def _on_new_mail(self, path: Path) -> None:
        try:
            self._dispatcher.submit(path)
        except RuntimeError:
            LOGGER.warning("Dispatcher closed; leaving %s for the next run", path)

    def _wait_for_stop(self) -> None:
        while not self._stop_event.is_set():
            try:
                if self._status_event.is_set():
                    self._status_event.clear()
                    self._dump_status()
                self._stop_event.wait(self._poll_interval)
            except KeyboardInterrupt:
                LOGGER.info("Interrupt received; shutting down Postbox daemon.")
                self._stop_event.set()

    def _dump_status(self) -> None:
        snapshot = self.status_snapshot()
        watcher = "running" if snapshot["watcher_running"] else "stopped"
        line = f"Postbox daemon ({snapshot['maildir']}): watcher={watcher}"
        if "processed" in snapshot:
            line += (
                f" processed={snapshot['processed']} delivered={snapshot['delivered']}"
                f" bounced={snapshot['bounced']} failed={snapshot['failed']}"
            )
        LOGGER.info(line)

    def _install_signal_handlers(self) -> None:
        interested = tuple(
            sig for sig in (signal.SIGTERM, signal.SIGINT, SIG_USR1) if sig is not None
        )
        for sig in interested:
            try:
                previous = signal.getsignal(sig)
                signal.signal(sig, self._handle_signal)
            except ValueError:
                continue
            self._installed_signals[sig] = previous

    def _restore_signal_handlers(self) -> None:
        for sig, handler in self._installed_signals.items():
            try:
                signal.signal(sig, handler)
            except ValueError:  # pragma: no cover - not on main thread
                continue
        self._installed_signals.clear()

    def _handle_signal(self, signum: int, _frame: FrameType | None) -> None:
        if signum in (signal.SIGTERM, signal.SIGINT):
            LOGGER.info("Signal %s received; initiating shutdown.", signum)
            self._stop_event.set()
        elif SIG_USR1 is not None and signum == SIG_USR1:
            LOGGER.info("SIGUSR1 received; emitting daemon status.")
            self._status_event.set()


__all__ = ["DaemonRuntime", "SIG_USR1"]
