"""
=============================================================================
EVENT BUS
=============================================================================

Every moving part of the proxy talks to the outside world through events.
The relay engine doesn't log, doesn't print, doesn't write files. It just
announces what it is doing, and whoever is interested listens.

=============================================================================
HOW DISPATCH WORKS
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    broadcast("data_in", conn, data)                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   for each subscription (snapshot):                                 │
    │       │                                                              │
    │       ├── filtered to another event?   → skip                       │
    │       │                                                              │
    │       ├── listener has no data_in()?   → skip (silently)            │
    │       │                                                              │
    │       └── listener.data_in(conn, data) → runs on THIS thread        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Listeners are plain objects: a listener "handles" an event by having a
method with the event's name. A reporter that only cares about connection
start/end implements just those two methods.

Dispatch is synchronous. A listener that sleeps stalls the relay that
broadcast the event (that is exactly how SlowDown works). A listener that
raises aborts the broadcaster's caller; inside a relay loop this turns into
a `main_loop_error` event and the end of that one connection.

=============================================================================
EVENTS
=============================================================================

    start_connection(connection)          Connection.call()
    end_connection(connection)            relay loop finished
    main_loop_error(connection, error)    relay loop raised
    data_in(connection, data)             bytes read from the client
    data_out(connection, data)            bytes read from the remote
    new_connection(connection)            Server accepted a socket
    dead_connection(connection)           Server reaped a connection
    http_request(request, response)       HTTPRequestSplitter paired a message
    header(key, value)                    HeaderParser parsed a header line

=============================================================================
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional


EVENTS = frozenset({
    "start_connection",
    "end_connection",
    "main_loop_error",
    "data_in",
    "data_out",
    "new_connection",
    "dead_connection",
    "http_request",
    "header",
})


class UnknownEventError(ValueError):
    """Raised when an event name is not one of EVENTS."""


def check_event(event: str) -> str:
    if event not in EVENTS:
        raise UnknownEventError(f"Unknown event: {event!r}")
    return event


class CallbackListener:
    """
    Adapts a plain callable into a listener for a single event.

    Used by Publisher.on(), so that

        connection.on("data_in", lambda conn, data: ...)

    behaves the same as subscribing an object with a data_in() method.
    """

    def __init__(self, event: str, callback: Callable[..., Any]):
        self.event = check_event(event)
        self.callback = callback
        setattr(self, event, callback)

    def __repr__(self) -> str:
        return f"CallbackListener({self.event!r}, {self.callback!r})"


@dataclass(frozen=True)
class Subscription:
    listener: Any
    event: Optional[str] = None

    def matches(self, event: str) -> bool:
        return self.event is None or self.event == event


class Publisher:
    """
    Mixin that gives a class subscribe/on/broadcast.

    Usage:
        class Thing(Publisher):
            def poke(self):
                self.broadcast("header", "x-poked", "yes")

        thing = Thing()
        thing.subscribe(reporter)                  # all events
        thing.subscribe(splitter, on="data_in")    # one event only
        thing.on("header", print)                  # bare callable

    Subclasses don't need to call Publisher.__init__(); the subscription
    list is created on first use.
    """

    _subscriptions: Optional[list] = None
    _subscriptions_lock: Optional[threading.Lock] = None

    def _lock(self) -> threading.Lock:
        # Created lazily; subclasses don't call Publisher.__init__().
        if self._subscriptions_lock is None:
            self._subscriptions_lock = threading.Lock()
            self._subscriptions = []
        return self._subscriptions_lock

    def subscribe(self, listener: Any, on: Optional[str] = None) -> "Publisher":
        """
        Register a listener.

        Args:
            listener: Any object. It receives an event if it has a method
                      named after the event.
            on: Optional event name; if given, only that event is delivered.

        Returns:
            Self, for chaining.
        """
        if on is not None:
            check_event(on)
        with self._lock():
            self._subscriptions.append(Subscription(listener, on))
        return self

    def on(self, event: str, callback: Callable[..., Any]) -> "Publisher":
        """Register a callable for a single event. Returns self."""
        return self.subscribe(CallbackListener(event, callback), on=event)

    def unsubscribe(self, listener: Any) -> "Publisher":
        """Remove every subscription of `listener`."""
        with self._lock():
            self._subscriptions = [
                s for s in self._subscriptions if s.listener is not listener
            ]
        return self

    @property
    def listeners(self) -> list:
        with self._lock():
            return [s.listener for s in self._subscriptions]

    def broadcast(self, event: str, *args: Any) -> None:
        """
        Deliver `event` to every matching listener, in subscription order.

        Exceptions raised by listeners are not caught.
        """
        check_event(event)
        with self._lock():
            subscriptions = tuple(self._subscriptions)

        for subscription in subscriptions:
            if not subscription.matches(event):
                continue
            handler = getattr(subscription.listener, event, None)
            if handler is None:
                continue
            handler(*args)
