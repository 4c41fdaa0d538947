"""Recipient-based routing of inbound messages to handlers."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from email.utils import parseaddr

from .types import (
    REASON_MISSING_TOKEN,
    REASON_NO_MATCH,
    Bounced,
    FailureKind,
    Message,
    RoutedMessage,
)

LOGGER = logging.getLogger(__name__)


class RouteError(ValueError):
    """Raised when a routing rule cannot be built."""


@dataclass(frozen=True)
class RoutingRule:
    """Case-insensitive address pattern bound to a handler identifier.

    ``token_group`` names the capture group holding the handler parameter.
    Rules without one route to non-parametric handlers.
    """

    pattern: re.Pattern[str]
    handler: str
    token_group: int | str | None = None

    @classmethod
    def compile(
        cls,
        pattern: str,
        handler: str,
        token_group: int | str | None = None,
    ) -> RoutingRule:
        try:
            compiled = re.compile(pattern, re.IGNORECASE)
        except re.error as exc:
            raise RouteError(f"Invalid routing pattern {pattern!r}: {exc}") from exc
        if not handler:
            raise RouteError(f"Routing pattern {pattern!r} has no handler.")
        if token_group is not None:
            _check_group(compiled, token_group)
        return cls(pattern=compiled, handler=handler, token_group=token_group)

    @property
    def parametric(self) -> bool:
        return self.token_group is not None

    def matches(self, address: str) -> re.Match[str] | None:
        return self.pattern.search(address)

    def describe(self) -> str:
        suffix = f" (token group {self.token_group})" if self.parametric else ""
        return f"/{self.pattern.pattern}/i -> {self.handler}{suffix}"


class Router:
    """Select exactly one handler for a message, or bounce it."""

    def __init__(self, rules: Iterable[RoutingRule]) -> None:
        self._rules = tuple(rules)

    @property
    def rules(self) -> tuple[RoutingRule, ...]:
        return self._rules

    def route(self, message: Message) -> RoutedMessage | Bounced:
        """Return the routed message for the first matching recipient."""

        for address in candidate_addresses(message.recipients):
            for rule in self._rules:
                match = rule.matches(address)
                if match is None:
                    continue
                return self._bind(message, rule, address, match)

        LOGGER.debug(
            "No route for %s (recipients=%s)",
            message.message_id or "<no id>",
            list(message.recipients),
        )
        return Bounced(REASON_NO_MATCH, FailureKind.ROUTING)

    def _bind(
        self,
        message: Message,
        rule: RoutingRule,
        address: str,
        match: re.Match[str],
    ) -> RoutedMessage | Bounced:
        if not rule.parametric:
            return RoutedMessage(message=message, handler=rule.handler, address=address)

        token = match.group(rule.token_group)
        if token is None or not token.strip():
            LOGGER.debug("Rule %s matched %s without a token", rule.describe(), address)
            return Bounced(REASON_MISSING_TOKEN, FailureKind.TOKEN_EXTRACTION)
        return RoutedMessage(
            message=message,
            handler=rule.handler,
            address=address,
            token=token.strip(),
        )


def candidate_addresses(recipients: Iterable[str]) -> Iterator[str]:
    """Yield parseable recipient addresses in their original order."""

    for entry in recipients:
        address = parse_address(entry)
        if address is None:
            continue
        yield address


def parse_address(entry: str | None) -> str | None:
    """Return the addr-spec of a recipient entry, or None if it is unusable."""

    if not entry or not entry.strip():
        return None
    _display, address = parseaddr(entry)
    address = address.strip()
    if not address or "@" not in address:
        return None
    local, _, domain = address.rpartition("@")
    if not local or not domain:
        return None
    return address


def _check_group(pattern: re.Pattern[str], group: int | str) -> None:
    if isinstance(group, bool):
        raise RouteError(f"Token group for {pattern.pattern!r} must be an index or name.")
    if isinstance(group, int):
        if group < 1 or group > pattern.groups:
            raise RouteError(
                f"Pattern {pattern.pattern!r} has no capture group {group}."
            )
        return
    if group not in pattern.groupindex:
        raise RouteError(f"Pattern {pattern.pattern!r} has no group named {group!r}.")


__all__ = ["RouteError", "Router", "RoutingRule", "candidate_addresses", "parse_address"]
