"""Core immutable data structures used throughout Postbox."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

REASON_NO_MATCH = "no matching recipient"
REASON_MISSING_TOKEN = "missing token"
REASON_INVALID_TOKEN = "invalid token"
REASON_REFERENCE_NOT_FOUND = "reference not found"


class OutcomeStatus(str, Enum):
    """Terminal processing states."""

    DELIVERED = "delivered"
    BOUNCED = "bounced"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Why a message was bounced or failed."""

    ROUTING = "routing"
    TOKEN_EXTRACTION = "token_extraction"
    REFERENCE_RESOLUTION = "reference_resolution"
    PERSISTENCE = "persistence"


@dataclass(frozen=True)
class Message:
    """Normalised inbound email as handed over by the transport layer."""

    sender: str
    subject: str
    recipients: tuple[str, ...] = ()
    raw_body: str = ""
    html_part: str | None = None
    text_part: str | None = None
    message_id: str | None = None


@dataclass(frozen=True)
class RoutedMessage:
    """Message bound to the handler selected by the router."""

    message: Message
    handler: str
    address: str
    token: str | None = None


@dataclass(frozen=True)
class Delivered:
    record_id: int

    status: ClassVar[OutcomeStatus] = OutcomeStatus.DELIVERED


@dataclass(frozen=True)
class Bounced:
    reason: str
    kind: FailureKind = FailureKind.ROUTING

    status: ClassVar[OutcomeStatus] = OutcomeStatus.BOUNCED


@dataclass(frozen=True)
class Failed:
    error: str
    kind: FailureKind = FailureKind.PERSISTENCE

    status: ClassVar[OutcomeStatus] = OutcomeStatus.FAILED


Outcome = Union[Delivered, Bounced, Failed]


@dataclass(frozen=True)
class PostRecord:
    """Blog post built from an inbound message."""

    title: str
    author: str
    content: str

    table: ClassVar[str] = "posts"


@dataclass(frozen=True)
class CommentRecord:
    """Comment attached to an existing post."""

    author: str
    content: str
    post_id: int

    table: ClassVar[str] = "comments"


__all__ = [
    "REASON_INVALID_TOKEN",
    "REASON_MISSING_TOKEN",
    "REASON_NO_MATCH",
    "REASON_REFERENCE_NOT_FOUND",
    "Bounced",
    "CommentRecord",
    "Delivered",
    "Failed",
    "FailureKind",
    "Message",
    "Outcome",
    "OutcomeStatus",
    "PostRecord",
    "RoutedMessage",
]
