import asyncio
from typing import Callable, Dict, Generic, Hashable, List, Optional, Protocol, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class LoopClock:
    """Clock backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


class KeyedScheduler(Generic[K]):
    """At most one pending timer per key; scheduling again replaces it."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock: Clock = clock or LoopClock()
        self._timers: Dict[K, Tuple[TimerHandle, Callable[[], None]]] = {}

    def schedule(self, key: K, action: Callable[[], None], delay: float) -> None:
        self.cancel(key)
        entry: List[Tuple[TimerHandle, Callable[[], None]]] = []

        def _fire() -> None:
            current = self._timers.get(key)
            if current is None or current is not entry[0]:
                return
            del self._timers[key]
            action()

        handle = self.clock.call_later(delay, _fire)
        entry.append((handle, action))
        self._timers[key] = entry[0]

    def cancel(self, key: K) -> bool:
        entry = self._timers.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def fire_now(self, key: K) -> bool:
        entry = self._timers.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        entry[1]()
        return True

    def pending(self, key: K) -> bool:
        return key in self._timers

    def keys(self) -> List[K]:
        return list(self._timers)

    def cancel_all(self) -> None:
        for key in self.keys():
            self.cancel(key)
