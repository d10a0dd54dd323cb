"""Push-based state containers used to publish tracker snapshots."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import AsyncIterator, Callable, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Subscriber = Callable[[T], None]


class ObservableState(Generic[T]):
    """Holds one value and pushes each change to every subscriber.

    Setting a value equal to the current one is conflated and does not notify.
    A new subscriber receives the current value immediately and then only
    subsequent changes; intermediate values are never replayed.
    """

    def __init__(self, initial: T, *, name: str = "state") -> None:
        self.name = name
        self._value = initial
        self._subscribers: List[Subscriber[T]] = []
        self._lock = threading.RLock()

    @property
    def value(self) -> T:
        return self._value

    def set(self, value: T) -> bool:
        with self._lock:
            if value == self._value:
                return False
            self._value = value
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._deliver(callback, value)
        return True

    def subscribe(self, callback: Subscriber[T]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)
            current = self._value
        self._deliver(callback, current)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def updates(self) -> AsyncIterator[T]:
        """Yield the current value, then every later change.

        A slow consumer only ever sees the newest pending value.
        """
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[T] = asyncio.Queue(maxsize=1)

        def _offer(value: T) -> None:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(value)

        def _on_change(value: T) -> None:
            try:
                running: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is loop:
                _offer(value)
            else:
                loop.call_soon_threadsafe(_offer, value)

        unsubscribe = self.subscribe(_on_change)
        try:
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    def _deliver(self, callback: Subscriber[T], value: T) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("%s subscriber raised an exception", self.name)


__all__ = ["ObservableState", "Subscriber"]
