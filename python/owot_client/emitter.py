"""A small event emitter that can run coroutine listeners."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """
    Named events with ordered listeners.

    A listener returning an awaitable has it scheduled as a task on the
    running loop. A listener that raises is logged and the remaining
    listeners still run.
    """

    def __init__(self):
        self._events: Dict[str, List[Listener]] = {}
        self._tasks: Set["asyncio.Task[Any]"] = set()

    def on(self, event: str, listener: Listener) -> Listener:
        """Register a listener and return it."""
        self._events.setdefault(event, []).append(listener)
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        """Register a listener that is removed after its first call."""

        def wrapper(*args: Any) -> Any:
            self.remove_listener(event, wrapper)
            return listener(*args)

        self.on(event, wrapper)
        return wrapper

    def remove_listener(self, event: str, listener: Listener) -> None:
        listeners = self._events.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listeners(self, event: str) -> List[Listener]:
        return list(self._events.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every listener of event with args.

        Returns:
            Whether the event had any listeners
        """
        listeners = self._events.get(event)
        if not listeners:
            return False

        for listener in list(listeners):
            try:
                result = listener(*args)
            except Exception:
                logger.exception("Listener for %r failed", event)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, result)
        return True

    def _schedule(self, event: str, awaitable: Any) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def done(finished: "asyncio.Task[Any]") -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.error("Listener for %r failed", event, exc_info=error)

        task.add_done_callback(done)
