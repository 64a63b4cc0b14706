from threading import RLock
from typing import Any, Callable, Hashable, Optional, TypeVar


T = TypeVar("T")
_MISSING = object()


class UserScopedCache:
    """Derived values grouped per user so one call can drop everything a user owns.

    ``get_or_compute`` runs ``compute`` without holding the lock. A value
    whose computation overlapped an ``invalidate`` for the same user (or a
    ``clear``) is returned to its caller but not stored.
    """

    def __init__(self) -> None:
        self._entries: dict[str, dict[Hashable, Any]] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        self._lock = RLock()

    def _stamp(self, user_id: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(user_id, 0)

    def get(self, user_id: str, key: Hashable, default: Optional[Any] = None) -> Any:
        with self._lock:
            return self._entries.get(user_id, {}).get(key, default)

    def set(self, user_id: str, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries.setdefault(user_id, {})[key] = value

    def get_or_compute(self, user_id: str, key: Hashable, compute: Callable[[], T]) -> T:
        with self._lock:
            cached = self._entries.get(user_id, {}).get(key, _MISSING)
            stamp = self._stamp(user_id)
        if cached is not _MISSING:
            return cached
        value = compute()
        with self._lock:
            if self._stamp(user_id) != stamp:
                return value
            return self._entries.setdefault(user_id, {}).setdefault(key, value)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
            self._generations[user_id] = self._generations.get(user_id, 0) + 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()
            self._epoch += 1

    def __contains__(self, item: tuple[str, Hashable]) -> bool:
        user_id, key = item
        with self._lock:
            return key in self._entries.get(user_id, {})
