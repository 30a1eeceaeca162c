from collections import defaultdict
from types import MethodType
from typing import Callable, DefaultDict, List, Union
import weakref


class EventBus:
    """Minimal pub/sub helper that avoids retaining dead listeners."""

    __slots__ = ("_subs",)

    def __init__(self) -> None:
        self._subs: DefaultDict[str, List[Union[Callable[..., None], weakref.WeakMethod]]] = defaultdict(list)

    def subscribe(self, event_name: str, callback: Callable[..., None]) -> Callable[[], None]:
        """Register *callback* and return a function that removes it again."""
        listeners = self._subs[event_name]
        entry: Union[Callable[..., None], weakref.WeakMethod]
        if isinstance(callback, MethodType):
            entry = weakref.WeakMethod(callback)
        else:
            entry = callback
        listeners.append(entry)

        def _unsubscribe() -> None:
            current = self._subs.get(event_name)
            if not current:
                return
            for idx, cb in enumerate(current):
                if cb is entry:
                    del current[idx]
                    return

        return _unsubscribe

    def emit(self, event_name: str, *args, **kwargs) -> None:
        listeners = self._subs.get(event_name)
        if not listeners:
            return

        dead: List[weakref.WeakMethod] = []
        for cb in list(listeners):
            if isinstance(cb, weakref.WeakMethod):
                fn = cb()
                if fn is None:
                    dead.append(cb)
                    continue
                fn(*args, **kwargs)
            else:
                cb(*args, **kwargs)
        if dead:
            self._subs[event_name] = [
                cb for cb in listeners if not any(cb is d for d in dead)
            ]

    def listener_count(self, event_name: str) -> int:
        return len(self._subs.get(event_name, ()))
