"""Event dispatcher — in-process publish/subscribe registry.

Learn: One dispatcher is shared by the realtime channel (server pushes)
and the auth pipeline (session signals). Listeners register per event
name and get back an unsubscribe callable:

    off = dispatcher.add_listener(STOCK_UPDATED, on_stock)
    ...
    off()  # removes exactly this registration

A failing listener is logged and skipped. It never stops its siblings
or later dispatches. Coroutine listeners are scheduled as tasks.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, TypeVar, Union

import structlog

from shopdeck.events.types import Topic

logger = structlog.get_logger()

P = TypeVar("P")

Listener = Callable[[Any], Union[None, Awaitable[None]]]
EventName = Union[Topic[Any], str]


def _name(event: EventName) -> str:
    return event.name if isinstance(event, Topic) else event


class EventDispatcher:
    """Maps event names to ordered lists of callbacks."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}
        self._tasks: set[asyncio.Task] = set()

    def add_listener(
        self, event: Union[Topic[P], str], callback: Callable[[P], Any]
    ) -> Callable[[], None]:
        """Register `callback` for `event`. Returns its unsubscribe function.

        The same callable may be registered twice; each registration is
        removed independently by its own unsubscribe function.
        """
        name = _name(event)
        entry = _Registration(callback)
        self._listeners.setdefault(name, []).append(entry)

        def unsubscribe() -> None:
            entries = self._listeners.get(name)
            if entries and entry in entries:
                entries.remove(entry)

        return unsubscribe

    def remove_listener(self, event: EventName, callback: Listener) -> None:
        """Remove every registration of `callback` under `event`."""
        name = _name(event)
        entries = self._listeners.get(name)
        if entries:
            self._listeners[name] = [e for e in entries if e.callback != callback]

    def listener_count(self, event: EventName) -> int:
        return len(self._listeners.get(_name(event), []))

    def dispatch(self, event: Union[Topic[P], str], payload: P = None) -> None:
        """Invoke every listener registered for `event`, in registration order."""
        name = _name(event)
        # Snapshot: listeners added/removed during dispatch apply next time
        for entry in list(self._listeners.get(name, [])):
            try:
                result = entry.callback(payload)
            except Exception:
                logger.exception("shopdeck.events.listener_failed", event_name=name)
                continue

            if inspect.isawaitable(result):
                self._schedule(name, result)

    def _schedule(self, name: str, awaitable: Awaitable[Any]) -> None:
        """Run a coroutine listener on the current loop, logging its failure."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No running loop, nothing can drive the coroutine
            logger.warning("shopdeck.events.no_event_loop", event_name=name)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = asyncio.ensure_future(awaitable, loop=loop)
        self._tasks.add(task)

        def _done(t: asyncio.Task) -> None:
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.error(
                    "shopdeck.events.listener_failed",
                    event_name=name,
                    error=repr(exc),
                )

        task.add_done_callback(_done)


class _Registration:
    """Identity wrapper so duplicate callbacks unsubscribe independently."""

    __slots__ = ("callback",)

    def __init__(self, callback: Listener):
        self.callback = callback
