import threading
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Iterator, List, Optional, Tuple, TypeVar

K = TypeVar("K", bound=Hashable)
E = TypeVar("E")

Clock = Callable[[], float]


class ExpiringMap(Generic[K, E]):
    """
    Process-local map whose entries expire according to a caller-supplied predicate.

    Entries are kept in recency order: `put` and `touch` move a key to the end,
    so `oldest_key()` is the least recently used one. Expired entries are
    dropped lazily on access and in bulk by `sweep()`.

    `lock` is re-entrant; owners hold it around check-then-act sequences so a
    decision and its write happen atomically across threads.
    """

    def __init__(self, is_expired: Callable[[E, float], bool], clock: Clock = time.time):
        self._is_expired = is_expired
        self._clock = clock
        self._data: "OrderedDict[K, E]" = OrderedDict()
        self.lock = threading.RLock()

    def now(self) -> float:
        return self._clock()

    def peek(self, key: K) -> Optional[E]:
        with self.lock:
            return self._data.get(key)

    def get_live(self, key: K) -> Optional[E]:
        with self.lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if self._is_expired(entry, self.now()):
                del self._data[key]
                return None
            return entry

    def is_live(self, key: K) -> bool:
        """Like `get_live` but never removes anything."""
        with self.lock:
            entry = self._data.get(key)
            return entry is not None and not self._is_expired(entry, self.now())

    def put(self, key: K, entry: E) -> None:
        with self.lock:
            self._data[key] = entry
            self._data.move_to_end(key)

    def touch(self, key: K) -> None:
        with self.lock:
            if key in self._data:
                self._data.move_to_end(key)

    def pop(self, key: K) -> Optional[E]:
        with self.lock:
            return self._data.pop(key, None)

    def oldest_key(self) -> Optional[K]:
        with self.lock:
            return next(iter(self._data), None)

    def keys(self) -> List[K]:
        with self.lock:
            return list(self._data.keys())

    def items(self) -> List[Tuple[K, E]]:
        with self.lock:
            return list(self._data.items())

    def clear(self) -> None:
        with self.lock:
            self._data.clear()

    def sweep(self) -> int:
        """Remove every expired entry in one pass; returns how many were removed."""
        with self.lock:
            now = self.now()
            expired = [k for k, entry in self._data.items() if self._is_expired(entry, now)]
            for k in expired:
                del self._data[k]
            return len(expired)

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[K]:
        return iter(self.keys())
