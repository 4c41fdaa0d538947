"""Handler registry utilities."""

from __future__ import annotations

from collections import OrderedDict

from .base import Handler


class HandlerRegistry:
    """Registry that maps handler identifiers used in routes to handlers."""

    def __init__(self) -> None:
        self._entries: OrderedDict[str, Handler] = OrderedDict()

    def register(self, handler: Handler) -> None:
        if handler.name in self._entries:
            raise ValueError(f"Handler '{handler.name}' is already registered.")
        self._entries[handler.name] = handler

    def get(self, name: str) -> Handler:
        try:
            return self._entries[name]
        except KeyError as exc:
            raise KeyError(f"Handler '{name}' is not registered.") from exc

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    @property
    def names(self) -> list[str]:
        return list(self._entries)


__all__ = ["HandlerRegistry"]
