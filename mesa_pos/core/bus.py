from collections import defaultdict
from threading import RLock
from types import MethodType
from typing import Callable, DefaultDict, List, Union
import weakref

_Listener = Union[Callable[..., None], weakref.WeakMethod]


class EventBus:
    """Thread-safe pub/sub helper that avoids retaining dead listeners.

    Listeners run synchronously on the emitting thread. The ledger only emits
    from outbox jobs or after a transaction has committed.
    """

    __slots__ = ("_subs", "_lock")

    def __init__(self) -> None:
        self._subs: DefaultDict[str, List[_Listener]] = defaultdict(list)
        self._lock = RLock()

    def subscribe(self, event_name: str, callback: Callable[..., None]) -> None:
        with self._lock:
            listeners = self._subs[event_name]
            if isinstance(callback, MethodType):
                listeners.append(weakref.WeakMethod(callback))
            else:
                listeners.append(callback)

    def unsubscribe(self, event_name: str, callback: Callable[..., None]) -> None:
        with self._lock:
            kept: List[_Listener] = []
            for cb in self._subs.get(event_name, []):
                target = cb() if isinstance(cb, weakref.WeakMethod) else cb
                if target is None or target == callback:
                    continue
                kept.append(cb)
            self._subs[event_name] = kept

    def clear(self) -> None:
        with self._lock:
            self._subs.clear()

    def emit(self, event_name: str, *args, **kwargs) -> None:
        with self._lock:
            listeners = list(self._subs.get(event_name) or ())
        if not listeners:
            return

        dead: List[_Listener] = []
        for cb in listeners:
            if isinstance(cb, weakref.WeakMethod):
                fn = cb()
                if fn is None:
                    dead.append(cb)
                    continue
                fn(*args, **kwargs)
            else:
                cb(*args, **kwargs)
        if dead:
            with self._lock:
                self._subs[event_name] = [cb for cb in self._subs[event_name] if cb not in dead]


bus = EventBus()
