"""Filesystem watcher for the maildir drop directory."""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver

from .maildir import ensure_maildir_structure, inbox_new_dir, is_inbox_new

LOGGER = logging.getLogger(__name__)


class MaildirWatcher:
    """Watch the inbox new/ directory for freshly delivered messages."""

    def __init__(
        self,
        maildir: Path,
        *,
        debounce_seconds: float = 0.2,
        observer_factory: Callable[[], BaseObserver] | None = None,
    ) -> None:
        self._maildir = maildir.expanduser()
        self._observer_factory = observer_factory or Observer
        self._observer: BaseObserver | None = None
        self._callbacks: list[Callable[[Path], None]] = []
        self._debounce = max(0.0, debounce_seconds)
        self._lock = threading.Lock()

    def on_new_mail(self, callback: Callable[[Path], None]) -> None:
        """Register callback invoked when a file appears in new/."""

        self._callbacks.append(callback)

    def start(self) -> None:
        with self._lock:
            if self._observer is not None:
                return
            ensure_maildir_structure(self._maildir)
            observer = self._observer_factory()
            handler = _NewMailEventHandler(
                maildir=self._maildir,
                callback=self._emit_new_mail,
                debounce_seconds=self._debounce,
            )
            observer.schedule(handler, str(inbox_new_dir(self._maildir)), recursive=False)
            observer.start()
            self._observer = observer

    def stop(self) -> None:
        """Stop watching and wait for the observer thread to finish."""

        with self._lock:
            observer = self._observer
            if observer is None:
                return
            observer.stop()
            try:
                observer.join(timeout=5)
            except RuntimeError:  # pragma: no cover - watchdog internals
                LOGGER.warning("Failed to join maildir observer thread")
            self._observer = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def _emit_new_mail(self, path: Path) -> None:
        for callback in list(self._callbacks):
            try:
                callback(path)
            except Exception:  # pragma: no cover
                LOGGER.exception("New mail callback failed for path %s", path)


class _NewMailEventHandler(FileSystemEventHandler):
    """Forward created and moved-in files under new/ to a callback."""

    def __init__(
        self,
        *,
        maildir: Path,
        callback: Callable[[Path], None],
        debounce_seconds: float,
    ) -> None:
        super().__init__()
        self._maildir = maildir
        self._callback = callback
        self._debounce_seconds = debounce_seconds
        self._recent: dict[Path, float] = {}
        self._recent_lock = threading.Lock()

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle_path(_event_path(event.src_path))

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        if event.is_directory:
            return
        self._handle_path(_event_path(event.dest_path))

    def _handle_path(self, path: Path) -> None:
        resolved = path.resolve()
        if resolved.name.startswith("."):
            return
        if not is_inbox_new(resolved, self._maildir):
            return
        if self._should_emit(resolved):
            self._callback(resolved)

    def _should_emit(self, path: Path) -> bool:
        if self._debounce_seconds <= 0:
            return True
        now = time.monotonic()
        with self._recent_lock:
            last = self._recent.get(path)
            if last is not None and now - last < self._debounce_seconds:
                return False
            self._recent[path] = now
            threshold = now - max(self._debounce_seconds * 4, 1.0)
            for candidate in [p for p, ts in self._recent.items() if ts < threshold]:
                self._recent.pop(candidate, None)
            return True


def _event_path(value: str | bytes) -> Path:
    if isinstance(value, bytes):
        return Path(os.fsdecode(value))
    return Path(value)


__all__ = ["MaildirWatcher"]
