"""Minimal synchronous event emitter."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Handler = Callable[..., Any]


class EventEmitter:
    """Name-keyed handler lists.

    Handlers are called in registration order.  A handler that raises is
    logged and skipped; delivery continues with the next handler.
    """

    def __init__(self, *, log: logging.Logger | None = None) -> None:
        self._handlers: dict[str, list[Handler]] = {}
        self._log = log or logger

    def on(self, event: str, handler: Handler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[event]

    def once(self, event: str, handler: Handler) -> None:
        def _wrapper(*args: Any) -> Any:
            self.off(event, _wrapper)
            return handler(*args)

        self.on(event, _wrapper)

    def emit(self, event: str, *args: Any) -> bool:
        """Call every handler for ``event``.  Returns whether any existed."""
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                handler(*args)
            except Exception:
                self._log.exception("Handler for %r failed", event)
        return bool(handlers)

    def listener_count(self, event: str) -> int:
        return len(self._handlers.get(event, ()))

    def clear(self) -> None:
        self._handlers.clear()
