from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx
import redis

from adminguard.config import Settings, get_settings
from adminguard.observability.audit_log import AuditLog, build_audit_log
from adminguard.services.access import AccessDecisionEngine
from adminguard.services.artifacts import ArtifactRegistry, FilesystemArtifactRegistry
from adminguard.services.config_fetcher import ConfigFetcher
from adminguard.services.config_manager import ConfigManager
from adminguard.services.config_store import ConfigStore
from adminguard.services.enforcement import EnforcementEngine
from adminguard.services.kv_store import KeyValueStore, MemoryKVStore, RedisKVStore
from adminguard.services.required_plugins import RequiredPluginService

_log = logging.getLogger(__name__)

# Lazily initialized singletons for process lifetime.
_redis: Optional[redis.Redis] = None
_runtime: Optional["Runtime"] = None


@dataclass
class Runtime:
    settings: Settings
    kv: KeyValueStore
    store: ConfigStore
    fetcher: ConfigFetcher
    manager: ConfigManager
    audit: AuditLog
    access: AccessDecisionEngine
    registry: ArtifactRegistry
    enforcement: EnforcementEngine
    required_plugins: RequiredPluginService


def redis_client(url: str) -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.Redis.from_url(url, decode_responses=True)
    return _redis


def _kv_store(settings: Settings) -> KeyValueStore:
    if settings.KV_BACKEND == "redis":
        return RedisKVStore(redis_client(settings.REDIS_URL), prefix=settings.KV_PREFIX)
    return MemoryKVStore()


def _audit_log(settings: Settings) -> AuditLog:
    client: Any = None
    if settings.AUDIT_BACKEND == "redis":
        client = redis_client(settings.REDIS_URL)
    return build_audit_log(
        settings.AUDIT_BACKEND,
        path=settings.AUDIT_LOG_FILE,
        redis_client=client,
        redis_key=settings.AUDIT_REDIS_KEY,
        redis_maxlen=settings.AUDIT_REDIS_MAXLEN,
    )


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    kv: Optional[KeyValueStore] = None,
    audit: Optional[AuditLog] = None,
    registry: Optional[ArtifactRegistry] = None,
    transport: Optional[httpx.BaseTransport] = None,
) -> Runtime:
    """
    Wire every engine from settings. Tests pass their own store, audit sink,
    registry and HTTP transport.
    """
    s = settings or get_settings()
    kv = kv if kv is not None else _kv_store(s)
    audit = audit if audit is not None else _audit_log(s)

    store = ConfigStore(kv, cache_ttl_s=s.POLICY_CACHE_TTL_S)
    fetcher = ConfigFetcher(
        timeout=s.POLICY_FETCH_TIMEOUT_S,
        ca_bundle=s.POLICY_CA_BUNDLE,
        transport=transport,
    )
    manager = ConfigManager(store, fetcher, s.POLICY_API_URL)
    if registry is None:
        registry = FilesystemArtifactRegistry(
            s.PLUGINS_DIR,
            s.THEMES_DIR,
            kv,
            download_url_template=s.PLUGIN_DOWNLOAD_URL_TEMPLATE,
            transport=transport,
        )
    access = AccessDecisionEngine(
        manager,
        audit=audit,
        required_capability=s.REQUIRED_CAPABILITY,
        fail_closed=s.POLICY_FAIL_MODE == "closed",
    )
    enforcement = EnforcementEngine(
        manager,
        registry,
        kv,
        audit=audit,
        fallback_themes=s.FALLBACK_THEMES,
        dedup_ttl_s=s.ENFORCEMENT_DEDUP_TTL_S,
        block_installs=s.BLOCK_BLOCKED_INSTALLS,
    )
    if s.TRUST_PROXY_HEADERS:
        _log.warning(
            "client IP is taken from proxy headers; only deploy behind a proxy that sets them"
        )
    return Runtime(
        settings=s,
        kv=kv,
        store=store,
        fetcher=fetcher,
        manager=manager,
        audit=audit,
        access=access,
        registry=registry,
        enforcement=enforcement,
        required_plugins=RequiredPluginService(manager, registry, audit),
    )


def get_runtime() -> Runtime:
    global _runtime
    if _runtime is None:
        _runtime = build_runtime()
    return _runtime


def close_redis() -> None:
    global _redis
    if _redis is not None:
        try:
            _redis.close()
        except Exception as exc:
            _log.debug("redis close failed: %s", exc)
        _redis = None
