from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from adminguard.errors import ConfigValidationError
from adminguard.observability.metrics import inc_config_fetch
from adminguard.services.config_fetcher import ConfigFetcher, FetchError, is_valid_url
from adminguard.services.config_store import ConfigStore, default_config
from adminguard.services.policy_types import ConfigSource, ConfigStatus, PolicyConfig
from adminguard.services.policy_validate import parse_policy

_log = logging.getLogger(__name__)


class ConfigManager:
    """
    Resolves the effective policy: cache, then remote, then last-known-good,
    then the bundled default. ``get_config`` and ``refresh`` never raise.
    """

    def __init__(
        self,
        store: ConfigStore,
        fetcher: ConfigFetcher,
        url: str | Callable[[], str],
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self._url = url
        self.last_source: Optional[ConfigSource] = None

    @property
    def url(self) -> str:
        value = self._url() if callable(self._url) else self._url
        return (value or "").strip()

    def _resolved(
        self, config: PolicyConfig, source: ConfigSource
    ) -> Tuple[PolicyConfig, ConfigSource]:
        self.last_source = source
        inc_config_fetch(source.value)
        return config, source

    def _fall_back(self, reason: str) -> Tuple[PolicyConfig, ConfigSource]:
        config, source = self.store.fallback_or_default()
        _log.warning(
            "using %s policy (version %s): %s", source.value, config.version, reason
        )
        return self._resolved(config, source)

    def _load(self) -> Tuple[PolicyConfig, ConfigSource]:
        cached = self.store.read_cache()
        if cached is not None:
            return self._resolved(cached, ConfigSource.CACHE)

        url = self.url
        if not is_valid_url(url):
            inc_config_fetch("invalid_url")
            return self._fall_back("policy URL is not configured or invalid")

        result = self.fetcher.fetch(url)
        if isinstance(result, FetchError):
            inc_config_fetch(result.kind)
            return self._fall_back(f"config fetch failed: {result.to_exception()}")

        try:
            config = parse_policy(result.body)
        except ConfigValidationError as exc:
            inc_config_fetch("invalid")
            return self._fall_back(str(exc))

        self.store.write_successful(config)
        return self._resolved(config, ConfigSource.REMOTE)

    def get_config_with_source(self) -> Tuple[PolicyConfig, ConfigSource]:
        # No lock: concurrent cache misses each fetch; store writes are version-gated.
        try:
            return self._load()
        except Exception as exc:
            _log.exception("policy resolution failed")
            try:
                return self._fall_back(f"unexpected error: {exc}")
            except Exception:
                _log.exception("fallback policy unavailable")
                return self._resolved(default_config(), ConfigSource.DEFAULT)

    def get_config(self) -> PolicyConfig:
        return self.get_config_with_source()[0]

    def refresh(self) -> PolicyConfig:
        """Drop the cache and version marker, then resolve again."""
        try:
            self.store.invalidate()
        except Exception:
            _log.exception("policy cache invalidation failed")
        return self.get_config()

    def status(self) -> ConfigStatus:
        cached = self.store.read_cache()
        return ConfigStatus(
            version=self.store.version(),
            last_fetched_at=self.store.last_fetched_at(),
            source=self.last_source,
            cached=cached is not None,
            config=cached,
        )
