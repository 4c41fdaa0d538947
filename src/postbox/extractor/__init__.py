"""Message body extraction utilities."""

from .body import extract_body
from .html import HtmlSummary, summarise_content

__all__ = ["extract_body", "HtmlSummary", "summarise_content"]
