from __future__ import annotations

import threading
import time
import uuid
from pathlib import Path
from typing import Any

import pytest


class EventCollector:
    """Thread-safe helper for waiting on asynchronous events."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self._condition = threading.Condition()

    def add(self, event: dict[str, Any]) -> None:
        with self._condition:
            self.events.append(event)
            self._condition.notify_all()

    def wait_for(self, count: int, timeout: float = 30.0) -> bool:
        """Wait until a minimum number of events have been collected."""

        deadline = time.monotonic() + timeout
        with self._condition:
            while len(self.events) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(timeout=remaining)
            return True


def drop_message(destination_dir: Path, *, recipient: str, subject: str, body: str) -> Path:
    """Write a message into a maildir folder the way an MTA would (tmp/ then rename)."""

    unique = f"{int(time.time() * 1_000_000)}.{uuid.uuid4().hex}.mta"
    staging = destination_dir.parent / "tmp" / unique
    staging.parent.mkdir(parents=True, exist_ok=True)
    staging.write_text(
        "From: Reader <reader@example.com>\n"
        f"To: {recipient}\n"
        f"Subject: {subject}\n"
        f"Message-ID: <{uuid.uuid4().hex}@example.com>\n"
        "\n"
        f"{body}\n",
        encoding="utf-8",
    )
    destination_dir.mkdir(parents=True, exist_ok=True)
    target = destination_dir / unique
    staging.replace(target)
    return target


@pytest.fixture
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def mta():
    return drop_message


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests in this package as integration."""

    package_root = Path(__file__).resolve().parent
    integration_mark = pytest.mark.integration
    for item in items:
        try:
            path = Path(item.fspath).resolve()
        except OSError:
            continue
        if package_root in path.parents:
            item.add_marker(integration_mark)
