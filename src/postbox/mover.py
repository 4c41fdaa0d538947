"""File processed messages according to their outcome."""

from __future__ import annotations

import secrets
import socket
import time
from pathlib import Path

from .maildir import MaildirError, status_dir
from .types import OutcomeStatus


class MailMover:
    """Move messages out of new/ once they reached a terminal outcome."""

    def __init__(self, maildir: Path, *, hostname: str | None = None) -> None:
        self._maildir = maildir.expanduser()
        guessed = hostname or socket.gethostname() or "postbox"
        self._hostname = guessed.strip() or "postbox"

    def file_message(self, msg_path: Path, status: OutcomeStatus) -> Path:
        """Move the message into the folder for ``status`` and return its new path.

        Delivered mail lands in the inbox cur/ directory. Bounced and failed
        mail lands in the cur/ directory of the matching status folder.
        """

        return self._move(Path(msg_path), status_dir(self._maildir, status))

    def _move(self, source: Path, destination_dir: Path) -> Path:
        if not source.exists():
            raise MaildirError(f"Message does not exist: {source}")
        if not source.is_file():
            raise MaildirError(f"Path is not a message file: {source}")

        destination_dir = destination_dir.expanduser()
        destination_dir.mkdir(parents=True, exist_ok=True)

        try:
            if source.parent.resolve() == destination_dir.resolve():
                return source
        except FileNotFoundError as exc:
            raise MaildirError(f"Message does not exist: {source}") from exc

        while True:
            candidate = destination_dir / self._generate_cur_name()
            if candidate.exists():
                continue
            try:
                source.replace(candidate)
            except FileNotFoundError as exc:
                raise MaildirError(f"Message disappeared during move: {source}") from exc
            except OSError as exc:
                raise MaildirError(f"Failed to move message: {exc}") from exc
            return candidate

    def _generate_cur_name(self) -> str:
        timestamp = int(time.time() * 1_000_000)
        token = secrets.token_hex(6)
        return f"{timestamp}.{token}.{self._hostname}:2,"


__all__ = ["MailMover"]
