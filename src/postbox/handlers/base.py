"""Handler protocol definitions."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from ..types import Outcome, RoutedMessage


@runtime_checkable
class Handler(Protocol):
    """Common interface shared by all mailbox handlers."""

    name: str
    requires_token: bool

    def process(self, routed: RoutedMessage) -> Outcome:
        """Turn a routed message into a terminal outcome."""


__all__ = ["Handler"]
