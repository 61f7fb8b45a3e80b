"""
Event feed between the host and the collector.

The host bridge emits one event per host callback (game start, turn start,
...). The collector subscribes through a Subscription handle it owns: hosts
that cannot remove callbacks still get a clean teardown, because a closed
handle turns every late delivery into a no-op.

Thread-safe for use across the host's event thread and background threads.
"""
import logging
import threading
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class HostEventType(Enum):
    """Host callbacks the collector consumes."""
    GAME_START = auto()
    GAME_END = auto()
    IN_MENU = auto()
    TURN_START = auto()                 # data: ActivePlayer
    ENTITY_CREATED_IN_PLAY = auto()     # data: CardInfo
    ENTITY_WILL_TAKE_DAMAGE = auto()    # data: (Entity, amount)


@dataclass
class HostEvent:
    """
    One delivery from the host.

    Attributes:
        event_type: Which callback fired
        data: Callback payload, see HostEventType
        source: Optional identifier of the emitting bridge
    """
    event_type: HostEventType
    data: Any = None
    source: str = ""


Handler = Callable[[HostEvent], None]


class Subscription:
    """
    Handle for a group of handlers registered on a HostEventBus.

    ``close()`` deactivates the handle first and then unregisters; a delivery
    racing the close sees ``active`` False and drops the event.
    """

    def __init__(self, bus: "HostEventBus"):
        self._bus = bus
        self._handlers: List[tuple] = []
        self._active = True
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self._active

    def on(self, event_type: HostEventType, handler: Handler) -> "Subscription":
        def guarded(event: HostEvent):
            if self._active:
                handler(event)
        with self._lock:
            self._handlers.append((event_type, guarded))
        self._bus.subscribe(event_type, guarded)
        return self

    def close(self):
        with self._lock:
            self._active = False
            handlers, self._handlers = self._handlers, []
        for event_type, guarded in handlers:
            self._bus.unsubscribe(event_type, guarded)
        logger.debug(f"Subscription closed ({len(handlers)} handlers)")


class HostEventBus:
    """
    Publish-subscribe bus for host events.

    Handlers run synchronously on the emitting thread in registration order.
    A handler that raises is logged and does not stop the others.
    """

    def __init__(self):
        self._handlers: Dict[HostEventType, List[Handler]] = {}
        self._handler_lock = threading.Lock()

    def subscribe(self, event_type: HostEventType, handler: Handler):
        with self._handler_lock:
            self._handlers.setdefault(event_type, []).append(handler)
        logger.debug(f"Subscribed handler to {event_type.name}")

    def unsubscribe(self, event_type: HostEventType, handler: Handler):
        with self._handler_lock:
            if handler in self._handlers.get(event_type, []):
                self._handlers[event_type].remove(handler)
                logger.debug(f"Unsubscribed handler from {event_type.name}")

    def subscription(self) -> Subscription:
        return Subscription(self)

    def emit(self, event: HostEvent):
        # Snapshot so handlers may (un)subscribe while we iterate
        with self._handler_lock:
            handlers = list(self._handlers.get(event.event_type, []))

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler for {event.event_type.name}: {e}", exc_info=True)

    def emit_simple(self, event_type: HostEventType, data: Any = None, source: str = ""):
        self.emit(HostEvent(event_type=event_type, data=data, source=source))

    def handler_count(self, event_type: Optional[HostEventType] = None) -> int:
        with self._handler_lock:
            if event_type is not None:
                return len(self._handlers.get(event_type, []))
            return sum(len(h) for h in self._handlers.values())
