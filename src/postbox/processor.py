"""Processing pipeline tying together routing, handlers, and the delivery log."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .config import Config, ConfigError
from .handlers import CommentHandler, Handler, HandlerRegistry, PostHandler
from .routing import Router, RoutingRule
from .store import Store
from .types import (
    Bounced,
    Delivered,
    Failed,
    FailureKind,
    Message,
    Outcome,
    OutcomeStatus,
    RoutedMessage,
)

LOGGER = logging.getLogger(__name__)


@dataclass
class ProcessingMetrics:
    """Thread-safe counters for processing outcomes."""

    processed: int = 0
    delivered: int = 0
    bounced: int = 0
    failed: int = 0
    handler_deliveries: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, outcome: Outcome, handler: str | None) -> None:
        with self._lock:
            self.processed += 1
            if outcome.status is OutcomeStatus.DELIVERED:
                self.delivered += 1
                if handler:
                    self.handler_deliveries[handler] = self.handler_deliveries.get(handler, 0) + 1
            elif outcome.status is OutcomeStatus.BOUNCED:
                self.bounced += 1
            else:
                self.failed += 1

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "processed": self.processed,
                "delivered": self.delivered,
                "bounced": self.bounced,
                "failed": self.failed,
                "handler_deliveries": dict(self.handler_deliveries),
            }


class InboundProcessor:
    """Route a message, run its handler once, and record the outcome."""

    def __init__(self, router: Router, registry: HandlerRegistry, store: Store) -> None:
        _validate_routes(router.rules, registry)
        self._router = router
        self._registry = registry
        self._store = store
        self.metrics = ProcessingMetrics()

    @property
    def router(self) -> Router:
        return self._router

    def process(self, message: Message) -> Outcome:
        message_label = message.message_id or "<no message-id>"
        routed = self._router.route(message)
        if isinstance(routed, RoutedMessage):
            handler_name: str | None = routed.handler
            recipient: str | None = routed.address
            outcome = self._dispatch(routed)
        else:
            handler_name = None
            recipient = None
            outcome = routed

        self.metrics.record(outcome, handler_name)
        self._log_outcome(message, message_label, handler_name, outcome)
        try:
            self._store.log_delivery(
                outcome,
                message_id=message.message_id,
                handler=handler_name,
                sender=message.sender,
                recipient=recipient,
                subject=message.subject,
            )
        except OSError:
            LOGGER.exception("Failed to append delivery log for %s", message_label)
        return outcome

    def _dispatch(self, routed: RoutedMessage) -> Outcome:
        handler = self._registry.get(routed.handler)
        try:
            return handler.process(routed)
        except Exception as exc:
            LOGGER.exception("Handler '%s' crashed", routed.handler)
            return Failed(f"{type(exc).__name__}: {exc}", FailureKind.PERSISTENCE)

    def _log_outcome(
        self,
        message: Message,
        label: str,
        handler: str | None,
        outcome: Outcome,
    ) -> None:
        extra = {"outcome": outcome.status.value}
        if isinstance(outcome, Delivered):
            LOGGER.info(
                "Delivered %s via %s (record #%s)",
                label,
                handler,
                outcome.record_id,
                extra=extra,
            )
        elif isinstance(outcome, Bounced):
            LOGGER.info(
                "Bounced %s from %s: %s (%s)",
                label,
                message.sender,
                outcome.reason,
                outcome.kind.value,
                extra=extra,
            )
        else:
            LOGGER.error(
                "Failed %s via %s: %s (%s)",
                label,
                handler,
                outcome.error,
                outcome.kind.value,
                extra=extra,
            )


def default_registry(store: Store) -> HandlerRegistry:
    """Return a registry holding the built-in post and comment handlers."""

    registry = HandlerRegistry()
    registry.register(PostHandler(store))
    registry.register(CommentHandler(store))
    return registry


def build_processor(config: Config, store: Store) -> InboundProcessor:
    """Wire the configured routes to the built-in handlers."""

    return InboundProcessor(Router(config.routes), default_registry(store), store)


def _validate_routes(rules: Iterable[RoutingRule], registry: HandlerRegistry) -> None:
    for rule in rules:
        if rule.handler not in registry:
            raise ConfigError(
                f"Route {rule.describe()} names unknown handler '{rule.handler}' "
                f"(known: {', '.join(registry.names) or 'none'})."
            )
        handler: Handler = registry.get(rule.handler)
        if handler.requires_token and not rule.parametric:
            raise ConfigError(
                f"Route {rule.describe()} needs a token_group for handler '{rule.handler}'."
            )


__all__ = [
    "InboundProcessor",
    "ProcessingMetrics",
    "build_processor",
    "default_registry",
]
