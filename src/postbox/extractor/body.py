"""Select the best available body representation of a message."""

from __future__ import annotations

from ..types import Message


def extract_body(message: Message) -> str:
    """Return the richest non-empty body: HTML, then plain text, then raw body."""

    if message.html_part:
        return message.html_part
    if message.text_part:
        return message.text_part
    return message.raw_body or ""


__all__ = ["extract_body"]
