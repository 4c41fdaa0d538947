"""Convert RFC822 messages into Postbox ``Message`` values."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from email import policy
from email.errors import HeaderParseError
from email.header import decode_header, make_header
from email.message import Message as EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parseaddr
from pathlib import Path

from .types import Message

RECIPIENT_HEADERS = ("To", "Cc", "Bcc", "X-Original-To")


class InboundError(ValueError):
    """Raised when a message file cannot be read."""


def read_message(path: Path) -> Message:
    """Parse an RFC822 file into a Message."""

    file_path = Path(path)
    if not file_path.is_file():
        raise InboundError(f"Message file does not exist: {file_path}")
    with file_path.open("rb") as handle:
        parsed = BytesParser(policy=policy.default).parse(handle)
    return message_from_email(parsed)


def parse_message(raw: bytes | str) -> Message:
    """Parse raw RFC822 data into a Message."""

    if isinstance(raw, str):
        raw = raw.encode("utf-8", errors="replace")
    parsed = BytesParser(policy=policy.default).parsebytes(raw)
    return message_from_email(parsed)


def message_from_email(parsed: EmailMessage) -> Message:
    """Resolve the headers and body parts the router and handlers need."""

    _display, sender = parseaddr(str(parsed.get("From", "")))
    if not sender:
        sender = str(parsed.get("From", "")).strip()

    html_part: str | None = None
    text_part: str | None = None
    raw_body = ""
    if parsed.is_multipart():
        for part in _iter_body_parts(parsed):
            content_type = part.get_content_type()
            if content_type == "text/html" and html_part is None:
                html_part = _decode_part(part)
            elif content_type == "text/plain" and text_part is None:
                text_part = _decode_part(part)
    else:
        # Single-part messages, HTML included, only carry a raw body.
        raw_body = _decode_part(parsed)

    message_id = str(parsed.get("Message-ID", "")).strip() or None
    return Message(
        sender=sender,
        subject=_decode_header_value(str(parsed.get("Subject", ""))),
        recipients=tuple(_recipients(parsed)),
        raw_body=raw_body,
        html_part=html_part,
        text_part=text_part,
        message_id=message_id,
    )


def _recipients(parsed: EmailMessage) -> list[str]:
    entries: list[str] = []
    for header in RECIPIENT_HEADERS:
        values = parsed.get_all(header) or []
        if not values:
            continue
        for _name, address in getaddresses([str(value) for value in values]):
            entries.append(address.strip())
    return entries


def _iter_body_parts(message: EmailMessage) -> Iterable[EmailMessage]:
    for part in message.walk():
        if part.is_multipart():
            continue
        content_disposition = (part.get_content_disposition() or "").lower()
        if content_disposition == "attachment":
            continue
        yield part


def _decode_part(part: EmailMessage) -> str:
    payload = part.get_payload(decode=True)
    if payload is None or not isinstance(payload, (bytes, bytearray)):
        return ""
    return _decode_bytes(bytes(payload), part.get_content_charset())


def _decode_bytes(data: bytes, charset: str | None) -> str:
    candidates: Sequence[str] = []
    if charset:
        candidates = [charset]
    candidates = list(candidates) + ["utf-8", "latin-1"]
    for encoding in candidates:
        try:
            return data.decode(encoding, errors="replace")
        except LookupError:
            continue
    return data.decode("utf-8", errors="ignore")


def _decode_header_value(value: str) -> str:
    try:
        header = make_header(decode_header(value))
        decoded = str(header)
    except (HeaderParseError, UnicodeError, LookupError):
        decoded = value
    return decoded.strip()


__all__ = ["InboundError", "RECIPIENT_HEADERS", "message_from_email", "parse_message", "read_message"]
