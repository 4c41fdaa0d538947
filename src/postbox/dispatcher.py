"""Worker pool that processes dropped message files concurrently."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from .inbound import InboundError, read_message
from .maildir import MaildirError
from .mover import MailMover
from .processor import InboundProcessor
from .types import Message, Outcome

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchResult:
    """Outcome of processing a single message file."""

    source: Path
    outcome: Outcome | None
    destination: Path | None
    error: str | None = None


class Dispatcher:
    """Run each message file through the processor on a thread pool.

    Messages are independent units of work with no ordering between them.
    """

    def __init__(
        self,
        processor: InboundProcessor,
        mover: MailMover,
        *,
        workers: int = 4,
        message_loader: Callable[[Path], Message] = read_message,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self._processor = processor
        self._mover = mover
        self._message_loader = message_loader
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="postbox")
        self._lock = threading.Lock()
        self._closed = False
        self._in_flight: set[Path] = set()

    def submit(self, path: Path) -> Future[DispatchResult] | None:
        """Queue ``path`` unless it is already queued or being processed.

        Returns None for a duplicate so the same file is never handled twice.
        """

        source = Path(path)
        key = source.resolve()
        with self._lock:
            if self._closed:
                raise RuntimeError("Dispatcher has been shut down.")
            if key in self._in_flight:
                LOGGER.debug("Skipping %s; already queued", source)
                return None
            self._in_flight.add(key)
            return self._executor.submit(self._run, source, key)

    def drain(self, paths: Iterable[Path]) -> list[DispatchResult]:
        """Process every path and wait for all results."""

        futures = [future for future in map(self.submit, paths) if future is not None]
        return [future.result() for future in futures]

    def process_path(self, path: Path) -> DispatchResult:
        if not path.exists():
            LOGGER.debug("Message %s is no longer in place; skipping", path)
            return DispatchResult(
                source=path,
                outcome=None,
                destination=None,
                error=f"Message no longer in place: {path}",
            )
        try:
            message = self._message_loader(path)
        except (InboundError, OSError) as exc:
            LOGGER.error("Failed to read message %s: %s", path, exc)
            return DispatchResult(source=path, outcome=None, destination=None, error=str(exc))

        outcome = self._processor.process(message)
        try:
            destination = self._mover.file_message(path, outcome.status)
        except MaildirError as exc:
            LOGGER.error("Failed to file %s as %s: %s", path, outcome.status.value, exc)
            return DispatchResult(source=path, outcome=outcome, destination=None, error=str(exc))
        return DispatchResult(source=path, outcome=outcome, destination=destination)

    def _run(self, source: Path, key: Path) -> DispatchResult:
        try:
            return self.process_path(source)
        finally:
            with self._lock:
                self._in_flight.discard(key)

    def shutdown(self, *, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> Dispatcher:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.shutdown()


__all__ = ["DispatchResult", "Dispatcher"]
