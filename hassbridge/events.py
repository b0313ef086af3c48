"""
Minimal signal fan-out shared by the hub session and client.

Handlers may be plain callables or coroutine functions; coroutine results
are scheduled on the running loop and tracked until they finish.
"""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)


class EventEmitter:
    """Register handlers by event name and emit to them in order."""

    def __init__(self):
        self._event_handlers: Dict[str, List[Callable]] = {}
        self._handler_tasks: Set[asyncio.Task] = set()

    def on(self, event: str, handler: Callable) -> None:
        self._event_handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: Callable) -> None:
        handlers = self._event_handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def remove_all_listeners(self) -> None:
        self._event_handlers.clear()

    def listener_count(self, event: str) -> int:
        return len(self._event_handlers.get(event, []))

    def emit(self, event: str, *args: Any) -> None:
        """Call every handler for ``event``; handler errors are logged."""
        for handler in list(self._event_handlers.get(event, [])):
            try:
                result = handler(*args)
            except Exception as e:
                logger.error(f"Error in {event} handler {handler!r}: {e}")
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._on_handler_done)

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in async event handler: {error}")
