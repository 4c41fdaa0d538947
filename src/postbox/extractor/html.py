"""Helpers for flattening HTML bodies into readable text."""

from __future__ import annotations

import re
from dataclasses import dataclass

from bs4 import BeautifulSoup

TAG_RE = re.compile(r"<[A-Za-z!/][^>]*>")
DEFAULT_PREVIEW_LENGTH = 80


@dataclass(frozen=True)
class HtmlSummary:
    """Plain-text view of a stored body."""

    text: str
    is_html: bool
    link_count: int


def looks_like_html(content: str) -> bool:
    """Return True when the content contains markup tags."""

    return bool(TAG_RE.search(content or ""))


def summarise_content(content: str, *, limit: int = DEFAULT_PREVIEW_LENGTH) -> HtmlSummary:
    """Flatten a body into a single-line preview capped at ``limit`` characters."""

    if looks_like_html(content):
        soup = BeautifulSoup(content, "lxml")
        text = soup.get_text(" ", strip=True)
        link_count = sum(1 for tag in soup.find_all("a") if tag.get("href"))
        is_html = True
    else:
        text = content or ""
        link_count = 0
        is_html = False

    flattened = " ".join(text.split())
    if limit > 0 and len(flattened) > limit:
        flattened = flattened[: max(limit - 1, 0)].rstrip() + "…"
    return HtmlSummary(text=flattened, is_html=is_html, link_count=link_count)


__all__ = ["HtmlSummary", "looks_like_html", "summarise_content"]
