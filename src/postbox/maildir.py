"""Helpers for the maildir drop directory that feeds Postbox."""

from __future__ import annotations

import logging
from pathlib import Path

from .types import OutcomeStatus

LOGGER = logging.getLogger(__name__)

MAILDIR_SUBDIRS = ("cur", "new", "tmp")
FOLDER_PREFIX = "."
STATUS_FOLDERS: dict[OutcomeStatus, str | None] = {
    OutcomeStatus.DELIVERED: None,
    OutcomeStatus.BOUNCED: "Bounced",
    OutcomeStatus.FAILED: "Failed",
}


class MaildirError(RuntimeError):
    """Raised when maildir operations fail."""


def ensure_maildir_structure(maildir: Path) -> None:
    """Ensure the inbox and every status folder exist."""

    root = maildir.expanduser()
    _ensure_dir(root)
    for subdir in MAILDIR_SUBDIRS:
        _ensure_dir(root / subdir)
    for folder in STATUS_FOLDERS.values():
        if folder is None:
            continue
        for subdir in MAILDIR_SUBDIRS:
            _ensure_dir(root / f"{FOLDER_PREFIX}{folder}" / subdir)


def inbox_new_dir(maildir: Path) -> Path:
    """Return the directory new deliveries are dropped into."""

    return maildir.expanduser() / "new"


def status_dir(maildir: Path, status: OutcomeStatus, subdir: str = "cur") -> Path:
    """Return the directory a processed message with ``status`` is filed into."""

    normalized_subdir = subdir.strip("/")
    if normalized_subdir not in MAILDIR_SUBDIRS:
        raise MaildirError(f"Unsupported maildir subdirectory: {subdir}")
    folder = STATUS_FOLDERS[status]
    root = maildir.expanduser()
    if folder is None:
        return root / normalized_subdir
    return root / f"{FOLDER_PREFIX}{folder}" / normalized_subdir


def is_inbox_new(msg_path: Path, maildir: Path) -> bool:
    """Return True if the message path is within inbox new/."""

    try:
        msg_path.resolve().relative_to(inbox_new_dir(maildir).resolve())
        return True
    except ValueError:
        return False


def pending_messages(directory: Path) -> list[Path]:
    """Return message files waiting in ``directory``, oldest name first."""

    if not directory.is_dir():
        return []
    return sorted(
        path for path in directory.iterdir() if path.is_file() and not path.name.startswith(".")
    )


def _ensure_dir(path: Path) -> None:
    """Create a directory tree and log when it did not already exist."""

    try:
        path.mkdir(parents=True, exist_ok=False)
    except FileExistsError:
        return
    LOGGER.info("Created maildir folder %s", path)


__all__ = [
    "MAILDIR_SUBDIRS",
    "MaildirError",
    "STATUS_FOLDERS",
    "ensure_maildir_structure",
    "inbox_new_dir",
    "is_inbox_new",
    "pending_messages",
    "status_dir",
]
