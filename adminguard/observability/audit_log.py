from __future__ import annotations

import logging
import os
import re
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol, runtime_checkable

from adminguard.observability.metrics import inc_audit_event

_log = logging.getLogger("adminguard.audit")

# Event types written by the access and enforcement engines.
ACCESS_DENIED = "access-denied"
LOG_PAGE_ACCESS_DENIED = "log-page-access-denied"
AUTO_DEACTIVATED_PLUGIN = "auto-deactivated-plugin"
AUTO_DELETED_PLUGIN = "auto-deleted-plugin"
BLOCKED_THEME_DEACTIVATED = "blocked-theme-deactivated"
AUTO_DELETED_THEME = "auto-deleted-theme"
PLUGIN_ACTIVATION_BLOCKED = "plugin-activation-blocked"
THEME_ACTIVATION_BLOCKED = "theme-activation-blocked"
PLUGIN_INSTALLED = "plugin-installed"
PLUGIN_FORCE_ACTIVATED = "plugin-force-activated"
PLUGIN_UPDATE_BLOCKED = "plugin-update-blocked"
THEME_UPDATE_BLOCKED = "theme-update-blocked"
PLUGIN_INSTALL_BLOCKED = "plugin-install-blocked"
THEME_INSTALL_BLOCKED = "theme-install-blocked"
THEME_FALLBACK_MISSING = "theme-fallback-missing"

UNKNOWN = "unknown"

_LINE_RE = re.compile(r"\[(.*?)\] \[(.*?)\] Blocked: (.*?) \| IP: (.*?) \| User: (.*)")

Entry = Dict[str, str]


def format_line(ts: float, event_type: str, target: str, ip: str, user: str) -> str:
    stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.gmtime(ts))
    return f"[{stamp}] [{event_type}] Blocked: {target} | IP: {ip} | User: {user}"


def parse_line(line: str) -> Optional[Entry]:
    m = _LINE_RE.match(line.strip())
    if not m:
        return None
    date, event_type, target, ip, user = m.groups()
    return {"date": date, "type": event_type, "target": target, "ip": ip, "user": user}


def _clean(value: Optional[str]) -> str:
    # Keep one event per line.
    text = (value or "").replace("\r", " ").replace("\n", " ").strip()
    return text or UNKNOWN


@runtime_checkable
class AuditLog(Protocol):
    def log(
        self,
        event_type: str,
        target: str,
        *,
        ip: Optional[str] = None,
        user: Optional[str] = None,
    ) -> None:
        ...

    def entries(self, event_type: Optional[str] = None) -> List[Entry]:
        ...

    def event_types(self) -> List[str]:
        ...

    def clear(self) -> None:
        ...

    def export_text(self) -> str:
        ...


class _LineAuditLog:
    """Shared formatting/parsing; subclasses persist and read raw lines."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def _append(self, line: str) -> None:
        raise NotImplementedError

    def _lines(self) -> List[str]:
        raise NotImplementedError

    def _truncate(self) -> None:
        raise NotImplementedError

    def log(
        self,
        event_type: str,
        target: str,
        *,
        ip: Optional[str] = None,
        user: Optional[str] = None,
    ) -> None:
        try:
            line = format_line(
                self._clock(), _clean(event_type), _clean(target), _clean(ip), _clean(user)
            )
            _log.info(line, extra={"event_type": event_type, "target": target})
            self._append(line)
            inc_audit_event(event_type)
        except Exception as exc:
            _log.debug("audit write failed: %s", exc)

    def entries(self, event_type: Optional[str] = None) -> List[Entry]:
        out: List[Entry] = []
        for raw in self._lines():
            parsed = parse_line(raw)
            if parsed is None:
                continue
            if event_type and parsed["type"] != event_type:
                continue
            out.append(parsed)
        return out

    def event_types(self) -> List[str]:
        return sorted({e["type"] for e in self.entries()})

    def clear(self) -> None:
        self._truncate()

    def export_text(self) -> str:
        lines = self._lines()
        return "\n".join(lines) + ("\n" if lines else "")


class NullAuditLog(_LineAuditLog):
    """Discards events (still mirrored to the audit logger at DEBUG)."""

    def log(
        self,
        event_type: str,
        target: str,
        *,
        ip: Optional[str] = None,
        user: Optional[str] = None,
    ) -> None:
        _log.debug("audit event %s on %s dropped (no backend)", event_type, target)

    def _append(self, line: str) -> None:
        return None

    def _lines(self) -> List[str]:
        return []

    def _truncate(self) -> None:
        return None


class MemoryAuditLog(_LineAuditLog):
    def __init__(self, maxlen: int = 500, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self._ring: Deque[str] = deque(maxlen=max(1, int(maxlen)))
        self._lock = threading.RLock()

    def _append(self, line: str) -> None:
        with self._lock:
            self._ring.append(line)

    def _lines(self) -> List[str]:
        with self._lock:
            return list(self._ring)

    def _truncate(self) -> None:
        with self._lock:
            self._ring.clear()


class FileAuditLog(_LineAuditLog):
    def __init__(self, path: str, clock: Callable[[], float] = time.time) -> None:
        super().__init__(clock)
        self.path = path
        self._lock = threading.RLock()

    def _append(self, line: str) -> None:
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as handle:
                handle.write(line + "\n")
                handle.flush()

    def _lines(self) -> List[str]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                return [line.rstrip("\n") for line in handle if line.strip()]
        except OSError as exc:
            _log.warning("audit log unreadable at %s: %s", self.path, exc)
            return []

    def _truncate(self) -> None:
        with self._lock:
            if os.path.exists(self.path):
                with open(self.path, "w", encoding="utf-8"):
                    pass


class RedisAuditLog(_LineAuditLog):
    def __init__(
        self,
        client: Any,
        key: str = "adminguard:audit:v1",
        maxlen: int = 50000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(clock)
        self._r = client
        self.key = key
        self.maxlen = max(1, int(maxlen))

    def _append(self, line: str) -> None:
        pipe = self._r.pipeline()
        pipe.rpush(self.key, line)
        pipe.ltrim(self.key, -self.maxlen, -1)
        pipe.execute()

    def _lines(self) -> List[str]:
        try:
            values = self._r.lrange(self.key, 0, -1)
        except Exception as exc:
            _log.warning("audit log read from redis failed: %s", exc)
            return []
        return [v.decode("utf-8") if isinstance(v, bytes) else str(v) for v in values]

    def _truncate(self) -> None:
        self._r.delete(self.key)


def build_audit_log(
    backend: str,
    *,
    path: str = "",
    redis_client: Any = None,
    redis_key: str = "adminguard:audit:v1",
    redis_maxlen: int = 50000,
) -> AuditLog:
    mode = (backend or "").strip().lower()
    if mode == "file" and path:
        return FileAuditLog(path)
    if mode == "redis" and redis_client is not None:
        return RedisAuditLog(redis_client, key=redis_key, maxlen=redis_maxlen)
    if mode == "memory":
        return MemoryAuditLog()
    if mode not in {"", "none"}:
        _log.warning("audit backend %r unavailable; events will be dropped", backend)
    return NullAuditLog()


__all__ = [
    "AuditLog",
    "NullAuditLog",
    "MemoryAuditLog",
    "FileAuditLog",
    "RedisAuditLog",
    "build_audit_log",
    "format_line",
    "parse_line",
]
