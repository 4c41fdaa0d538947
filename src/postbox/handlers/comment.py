"""Handler that attaches a comment to the post named in the recipient address."""

from __future__ import annotations

import logging

from ..extractor.body import extract_body
from ..store import LookupResult, LookupStatus, PersistenceError, RecordStore
from ..types import (
    REASON_INVALID_TOKEN,
    REASON_MISSING_TOKEN,
    REASON_REFERENCE_NOT_FOUND,
    Bounced,
    CommentRecord,
    Delivered,
    Failed,
    FailureKind,
    Outcome,
    RoutedMessage,
)

LOGGER = logging.getLogger(__name__)


class ParentResolver:
    """Looks up the parent post at most once for a single processing call."""

    def __init__(self, store: RecordStore, post_id: int) -> None:
        self._store = store
        self._post_id = post_id
        self._result: LookupResult | None = None
        self.lookups = 0

    def resolve(self) -> LookupResult:
        if self._result is None:
            self.lookups += 1
            self._result = self._lookup()
        return self._result

    def _lookup(self) -> LookupResult:
        try:
            return self._store.find_by_id("posts", self._post_id)
        except Exception as exc:
            LOGGER.warning("Lookup of post #%s raised: %s", self._post_id, exc)
            return LookupResult.failed(str(exc))


class CommentHandler:
    """Create a comment on an existing post, bouncing dangling references."""

    requires_token = True

    def __init__(self, store: RecordStore, *, name: str = "comment") -> None:
        self.name = name
        self._store = store

    def process(self, routed: RoutedMessage) -> Outcome:
        message = routed.message
        if not routed.token:
            return Bounced(REASON_MISSING_TOKEN, FailureKind.TOKEN_EXTRACTION)
        post_id = _parse_post_id(routed.token)
        if post_id is None:
            LOGGER.info("Rejecting non-numeric post token %r from %s", routed.token, routed.address)
            return Bounced(REASON_INVALID_TOKEN, FailureKind.TOKEN_EXTRACTION)

        resolver = ParentResolver(self._store, post_id)
        result = resolver.resolve()
        if result.status is LookupStatus.NOT_FOUND:
            LOGGER.info("Post #%s not found for comment from %s", post_id, message.sender)
            return Bounced(REASON_REFERENCE_NOT_FOUND, FailureKind.REFERENCE_RESOLUTION)
        if result.status is LookupStatus.ERROR:
            LOGGER.warning("Post #%s lookup failed: %s", post_id, result.error)
            return Bounced(REASON_REFERENCE_NOT_FOUND, FailureKind.REFERENCE_RESOLUTION)

        parent = resolver.resolve().record
        if parent is None:
            return Bounced(REASON_REFERENCE_NOT_FOUND, FailureKind.REFERENCE_RESOLUTION)
        record = CommentRecord(
            author=message.sender,
            content=extract_body(message),
            post_id=parent.id,
        )
        try:
            comment_id = self._store.create(record)
        except PersistenceError as exc:
            LOGGER.error("Failed to store comment on post #%s: %s", parent.id, exc)
            return Failed(str(exc), FailureKind.PERSISTENCE)
        LOGGER.info("Created comment #%s on post #%s from %s", comment_id, parent.id, record.author)
        return Delivered(comment_id)


def _parse_post_id(token: str) -> int | None:
    candidate = token.strip()
    if not (candidate.isascii() and candidate.isdigit()):
        return None
    return int(candidate)


__all__ = ["CommentHandler", "ParentResolver"]
