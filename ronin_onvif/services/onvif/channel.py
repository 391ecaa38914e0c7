"""Signal channel for event subscriber consumers.

Consumers attach either callbacks (``on``) or an async iterator
(``subscribe``). Signals are delivered in emission order to whoever is
attached at that moment; there is no replay for late subscribers.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional

from ronin_onvif.utils.timezone import utc_now

logger = logging.getLogger(__name__)


class SignalType(str, Enum):
    """Types of signals emitted by the event loop."""

    EVENT = "event"
    ERROR = "error"


@dataclass
class Signal:
    """One emitted signal."""

    type: SignalType
    payload: Any
    timestamp: datetime = field(default_factory=utc_now)


Listener = Callable[[Any], Any]


class EventChannel:
    """Pub/sub fan-out for ``event`` and ``error`` signals."""

    def __init__(self, max_queue_size: int = 0):
        """Initialize the channel.

        Args:
            max_queue_size: Per-subscriber queue bound (0 = unbounded). A
                subscriber whose queue fills up is dropped.
        """
        self.max_queue_size = max_queue_size
        self._listeners: dict[SignalType, list[Listener]] = {t: [] for t in SignalType}
        self._subscribers: list[asyncio.Queue[Signal]] = []

    def on(self, signal_type: SignalType | str, listener: Listener) -> Callable[[], None]:
        """Attach a callback; returns a function that detaches it.

        Callbacks may be plain functions or coroutine functions.
        """
        signal_type = SignalType(signal_type)
        self._listeners[signal_type].append(listener)
        return lambda: self.off(signal_type, listener)

    def off(self, signal_type: SignalType | str, listener: Listener) -> None:
        """Detach a callback (no-op if it is not attached)."""
        listeners = self._listeners[SignalType(signal_type)]
        if listener in listeners:
            listeners.remove(listener)

    def listener_count(self, signal_type: Optional[SignalType | str] = None) -> int:
        if signal_type is None:
            return sum(len(v) for v in self._listeners.values()) + len(self._subscribers)
        return len(self._listeners[SignalType(signal_type)])

    async def subscribe(self) -> AsyncIterator[Signal]:
        """Subscribe to all signals.

        Yields:
            Signal objects as they are emitted
        """
        queue: asyncio.Queue[Signal] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        logger.debug(f"New subscriber, total: {len(self._subscribers)}")
        try:
            while True:
                yield await queue.get()
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)
                logger.debug(f"Subscriber removed, total: {len(self._subscribers)}")

    async def emit(self, signal_type: SignalType | str, payload: Any) -> None:
        """Deliver a signal to all attached callbacks and subscribers.

        A failing callback is logged and does not prevent delivery to the
        others.
        """
        signal = Signal(type=SignalType(signal_type), payload=payload)

        for listener in list(self._listeners[signal.type]):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Error in {signal.type.value} listener")

        dead_queues = []
        for queue in self._subscribers:
            try:
                queue.put_nowait(signal)
            except asyncio.QueueFull:
                dead_queues.append(queue)
                logger.warning("Dropping slow subscriber")
        for queue in dead_queues:
            self._subscribers.remove(queue)
