"""Key/value persistence port used by the config store and enforcement guard."""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple, runtime_checkable

_log = logging.getLogger(__name__)


@runtime_checkable
class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]:
        """Return the JSON-compatible value for ``key`` or None when absent/expired."""
        ...

    def set(self, key: str, value: Any, ttl_s: Optional[int] = None) -> None:
        """Store ``value``; ``ttl_s=None`` keeps it until deleted."""
        ...

    def add(self, key: str, value: Any, ttl_s: Optional[int] = None) -> bool:
        """Store only when ``key`` is absent. True when this call created it."""
        ...

    def delete(self, key: str) -> bool:
        ...


class MemoryKVStore(KeyValueStore):
    """Simple in-memory store; NOT suitable for multi-process or multi-worker."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        # key -> (json text, expiry epoch seconds or None)
        self._values: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.RLock()

    def _live(self, key: str) -> Optional[str]:
        item = self._values.get(key)
        if item is None:
            return None
        raw, expiry = item
        if expiry is not None and expiry <= self._clock():
            self._values.pop(key, None)
            return None
        return raw

    def _expiry(self, ttl_s: Optional[int]) -> Optional[float]:
        return None if ttl_s is None else self._clock() + float(ttl_s)

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            raw = self._live(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any, ttl_s: Optional[int] = None) -> None:
        # Values round-trip through JSON, same as the Redis backend.
        raw = json.dumps(value)
        with self._lock:
            self._values[key] = (raw, self._expiry(ttl_s))

    def add(self, key: str, value: Any, ttl_s: Optional[int] = None) -> bool:
        raw = json.dumps(value)
        with self._lock:
            if self._live(key) is not None:
                return False
            self._values[key] = (raw, self._expiry(ttl_s))
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._values.pop(key, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return [k for k in list(self._values) if self._live(k) is not None]


class RedisKVStore(KeyValueStore):
    """Redis-backed store; atomic per key, shared by every worker."""

    def __init__(self, client: Any, prefix: str = "") -> None:
        self._r = client
        self._prefix = prefix

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        raw = self._r.get(self._k(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            _log.warning("discarding undecodable value for %s", key)
            return None

    def set(self, key: str, value: Any, ttl_s: Optional[int] = None) -> None:
        raw = json.dumps(value)
        if ttl_s is None:
            self._r.set(self._k(key), raw)
        else:
            self._r.set(self._k(key), raw, ex=max(1, int(ttl_s)))

    def add(self, key: str, value: Any, ttl_s: Optional[int] = None) -> bool:
        raw = json.dumps(value)
        ex = None if ttl_s is None else max(1, int(ttl_s))
        return bool(self._r.set(self._k(key), raw, ex=ex, nx=True))

    def delete(self, key: str) -> bool:
        return bool(self._r.delete(self._k(key)))
