"""Change notification bus for chat thread consumers.

Presentation layers subscribe here instead of polling the thread store. Two
event kinds are published: the current thread changed, and the transient
stream state of one thread changed.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True, frozen=True)
class Event:
    """Base class for all bus events."""


@dataclass(slots=True, frozen=True)
class CurrentThreadChanged(Event):
    """Emitted when the current thread is switched or any of its data changes."""


@dataclass(slots=True, frozen=True)
class StreamStateChanged(Event):
    """Emitted when the in-flight response state of a thread changes.

    Attributes:
        thread_id: The thread whose stream state was updated.
    """

    thread_id: str


# Fired once per streamed text delta, too chatty for debug logs
_QUIET_EVENT_TYPES: set[type] = {StreamStateChanged}


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Handlers run synchronously, in subscription order, on the publishing
    call stack. Bound methods are held through weak references so a
    subscriber that goes away is dropped automatically.

    Example::

        bus = EventBus()
        bus.subscribe(StreamStateChanged, lambda event: print(event.thread_id))
        bus.publish(StreamStateChanged(thread_id="1700000000000"))

    Thread Safety:
        Not thread-safe. Publish from the event loop thread only.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: defaultdict[type[Event], list[_HandlerRef]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register ``handler`` for events of exactly ``event_type``.

        Subscribing the same handler twice results in two invocations.
        """
        self._handlers[event_type].append(_HandlerRef.create(handler))
        logger.debug(
            "Subscribed handler %s to event type %s",
            _handler_name(handler),
            event_type.__name__,
        )

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers.get(event_type)
        if handlers is None:
            return
        for i, handler_ref in enumerate(handlers):
            if handler_ref.matches(handler):
                handlers.pop(i)
                logger.debug(
                    "Unsubscribed handler %s from event type %s",
                    _handler_name(handler),
                    event_type.__name__,
                )
                return

    def publish(self, event: E) -> None:
        """Deliver ``event`` to every live handler.

        A handler that raises is logged and does not stop delivery to the
        remaining handlers.
        """
        event_type = type(event)
        handlers = self._handlers.get(event_type)
        is_quiet = event_type in _QUIET_EVENT_TYPES

        if not handlers:
            if not is_quiet:
                logger.debug("No handlers for event type %s", event_type.__name__)
            return

        if not is_quiet:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(handlers))

        dead_refs: list[_HandlerRef] = []
        # Iterate over a copy so handlers may (un)subscribe during delivery
        for handler_ref in list(handlers):
            handler = handler_ref.resolve()
            if handler is None:
                dead_refs.append(handler_ref)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Handler %s raised exception for event %s",
                    _handler_name(handler),
                    event_type.__name__,
                )

        for handler_ref in dead_refs:
            if handler_ref in handlers:
                handlers.remove(handler_ref)

    def clear(self) -> None:
        """Remove all registered handlers."""
        self._handlers.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        """Return the number of handlers for ``event_type`` or for all types."""
        if event_type is not None:
            return len(self._handlers.get(event_type, []))
        return sum(len(handlers) for handlers in self._handlers.values())


class _HandlerRef:
    """Weak reference for bound methods, strong reference for everything else."""

    __slots__ = ("_ref", "_is_weak")

    def __init__(self, handler_ref: WeakMethod | Handler, is_weak: bool) -> None:
        self._ref = handler_ref
        self._is_weak = is_weak

    @classmethod
    def create(cls, handler: Handler) -> _HandlerRef:
        if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
            try:
                return cls(WeakMethod(handler), is_weak=True)
            except TypeError:
                pass
        return cls(handler, is_weak=False)

    def resolve(self) -> Handler | None:
        if not self._is_weak:
            return self._ref  # type: ignore[return-value]
        return self._ref()  # type: ignore[operator]

    def matches(self, handler: Handler) -> bool:
        resolved = self.resolve()
        if resolved is None:
            return False
        return resolved == handler


def _handler_name(handler: Handler) -> str:
    if hasattr(handler, "__self__") and hasattr(handler, "__func__"):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    if hasattr(handler, "__name__"):
        return handler.__name__
    return repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "CurrentThreadChanged",
    "StreamStateChanged",
]
