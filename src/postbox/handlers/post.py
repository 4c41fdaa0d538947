"""Handler that publishes a new blog post from an inbound message."""

from __future__ import annotations

import logging

from ..extractor.body import extract_body
from ..store import PersistenceError, RecordStore
from ..types import Delivered, Failed, FailureKind, Outcome, PostRecord, RoutedMessage

LOGGER = logging.getLogger(__name__)


class PostHandler:
    """Create a post titled by the subject and authored by the sender."""

    requires_token = False

    def __init__(self, store: RecordStore, *, name: str = "post") -> None:
        self.name = name
        self._store = store

    def process(self, routed: RoutedMessage) -> Outcome:
        message = routed.message
        record = PostRecord(
            title=message.subject,
            author=message.sender,
            content=extract_body(message),
        )
        try:
            post_id = self._store.create(record)
        except PersistenceError as exc:
            LOGGER.error("Failed to store post from %s: %s", message.sender, exc)
            return Failed(str(exc), FailureKind.PERSISTENCE)
        LOGGER.info("Created post #%s %r from %s", post_id, record.title, record.author)
        return Delivered(post_id)


__all__ = ["PostHandler"]
