"""Mailbox handler implementations and infrastructure."""

from .base import Handler
from .comment import CommentHandler, ParentResolver
from .post import PostHandler
from .registry import HandlerRegistry

__all__ = [
    "CommentHandler",
    "Handler",
    "HandlerRegistry",
    "ParentResolver",
    "PostHandler",
]
