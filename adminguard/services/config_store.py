from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

from adminguard.services.kv_store import KeyValueStore
from adminguard.services.policy_types import ConfigSource, PolicyConfig
from adminguard.services.policy_validate import from_stored

_log = logging.getLogger(__name__)

CACHE_KEY = "config_cache"
VERSION_KEY = "config_version"
FALLBACK_KEY = "config_fallback"
LAST_FETCH_KEY = "config_last_fetch_time"

DEFAULT_CACHE_TTL_S = 60 * 60
DEFAULT_VERSION = "default"
DEFAULT_RESTRICTED_PAGES: Tuple[str, ...] = (
    "plugins.php",
    "themes.php",
    "tools.php",
    "settings.php",
)


def default_config() -> PolicyConfig:
    """Bundled policy used when neither cache nor fallback is available."""
    return PolicyConfig(version=DEFAULT_VERSION, restricted_pages=DEFAULT_RESTRICTED_PAGES)


def _iso_utc(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class ConfigStore:
    """
    Two tiers over a KeyValueStore: a short-lived cache entry and a durable
    last-known-good record with its version marker and fetch time.

    Only ConfigManager drives writes; everyone else reads.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        *,
        cache_ttl_s: int = DEFAULT_CACHE_TTL_S,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._kv = kv
        self._ttl = int(cache_ttl_s)
        self._clock = clock

    def _load(self, key: str) -> Optional[PolicyConfig]:
        try:
            raw = self._kv.get(key)
        except Exception as exc:
            _log.warning("config store read failed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        config = from_stored(raw)
        if config is None:
            _log.warning("discarding unusable stored policy under %s", key)
        return config

    def read_cache(self) -> Optional[PolicyConfig]:
        return self._load(CACHE_KEY)

    def read_fallback(self) -> Optional[PolicyConfig]:
        return self._load(FALLBACK_KEY)

    def read_with_source(self) -> Tuple[PolicyConfig, ConfigSource]:
        cached = self.read_cache()
        if cached is not None:
            return cached, ConfigSource.CACHE
        fallback = self.read_fallback()
        if fallback is not None:
            return fallback, ConfigSource.FALLBACK
        return default_config(), ConfigSource.DEFAULT

    def read(self) -> PolicyConfig:
        return self.read_with_source()[0]

    def fallback_or_default(self) -> Tuple[PolicyConfig, ConfigSource]:
        fallback = self.read_fallback()
        if fallback is not None:
            return fallback, ConfigSource.FALLBACK
        return default_config(), ConfigSource.DEFAULT

    def version(self) -> Optional[str]:
        value = self._kv.get(VERSION_KEY)
        return None if value is None else str(value)

    def last_fetched_at(self) -> Optional[str]:
        value = self._kv.get(LAST_FETCH_KEY)
        return None if value is None else str(value)

    def write_successful(self, config: PolicyConfig) -> bool:
        """
        Persist a freshly fetched, validated config.

        The durable record is only rewritten when the version differs from the
        stored marker; the cache entry is repopulated either way so the TTL
        window applies after every successful fetch. Returns True when the
        durable record was written.
        """
        payload = config.to_dict()
        changed = config.version != self.version()
        if changed:
            self._kv.set(FALLBACK_KEY, payload)
            self._kv.set(VERSION_KEY, config.version)
            self._kv.set(LAST_FETCH_KEY, _iso_utc(self._clock()))
            _log.info("stored new policy version %s", config.version)
        self._kv.set(CACHE_KEY, payload, ttl_s=self._ttl)
        return changed

    def invalidate(self) -> None:
        """Drop the cache entry and version marker; the fallback survives."""
        self._kv.delete(CACHE_KEY)
        self._kv.delete(VERSION_KEY)
