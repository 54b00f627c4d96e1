# tests/conftest.py
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from starlette.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from adminguard.config import Settings  # noqa: E402
from adminguard.main import create_app  # noqa: E402
from adminguard.observability.audit_log import MemoryAuditLog  # noqa: E402
from adminguard.runtime import Runtime, build_runtime  # noqa: E402
from adminguard.services.artifacts import FilesystemArtifactRegistry  # noqa: E402
from adminguard.services.config_fetcher import ConfigFetcher  # noqa: E402
from adminguard.services.config_manager import ConfigManager  # noqa: E402
from adminguard.services.config_store import ConfigStore  # noqa: E402
from adminguard.services.kv_store import MemoryKVStore  # noqa: E402

POLICY_URL = "https://policy.example.test/config"


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class PolicyServer:
    """Scripted remote endpoint behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.payload: Any = None
        self.status = 200
        self.raw: Optional[bytes] = None
        self.error: Optional[Callable[[httpx.Request], Exception]] = None
        self.calls: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(str(request.url))
        if self.error is not None:
            raise self.error(request)
        if self.raw is not None:
            return httpx.Response(self.status, content=self.raw)
        return httpx.Response(self.status, content=json.dumps(self.payload).encode("utf-8"))

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def policy_doc(version: str = "v1", **overrides: Any) -> Dict[str, Any]:
    doc: Dict[str, Any] = {
        "version": version,
        "restrictedPages": ["plugins.php"],
        "blockedPlugins": [],
        "blockedThemes": [],
        "blacklistIps": [],
    }
    doc.update(overrides)
    return doc


def make_plugin(root: Path, slug: str, main: Optional[str] = None) -> str:
    folder = root / slug
    folder.mkdir(parents=True, exist_ok=True)
    name = main or f"{slug}.php"
    (folder / name).write_text("<?php\n", encoding="utf-8")
    return f"{slug}/{name}"


def make_theme(root: Path, slug: str) -> None:
    folder = root / slug
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "style.css").write_text("/* theme */\n", encoding="utf-8")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def kv(clock: FakeClock) -> MemoryKVStore:
    return MemoryKVStore(clock=clock)


@pytest.fixture()
def audit(clock: FakeClock) -> MemoryAuditLog:
    return MemoryAuditLog(clock=clock)


@pytest.fixture()
def server() -> PolicyServer:
    server = PolicyServer()
    server.payload = policy_doc()
    return server


@pytest.fixture()
def store(kv: MemoryKVStore, clock: FakeClock) -> ConfigStore:
    return ConfigStore(kv, cache_ttl_s=3600, clock=clock)


@pytest.fixture()
def manager(store: ConfigStore, server: PolicyServer) -> ConfigManager:
    fetcher = ConfigFetcher(timeout=2.0, transport=server.transport)
    return ConfigManager(store, fetcher, POLICY_URL)


@pytest.fixture()
def wp_dirs(tmp_path: Path) -> Dict[str, Path]:
    plugins = tmp_path / "plugins"
    themes = tmp_path / "themes"
    plugins.mkdir()
    themes.mkdir()
    return {"plugins": plugins, "themes": themes}


@pytest.fixture()
def registry(wp_dirs: Dict[str, Path], kv: MemoryKVStore) -> FilesystemArtifactRegistry:
    return FilesystemArtifactRegistry(str(wp_dirs["plugins"]), str(wp_dirs["themes"]), kv)


@pytest.fixture()
def make_runtime(
    kv: MemoryKVStore,
    audit: MemoryAuditLog,
    server: PolicyServer,
    wp_dirs: Dict[str, Path],
) -> Callable[..., Runtime]:
    def _make(**overrides: Any) -> Runtime:
        values: Dict[str, Any] = {
            "POLICY_API_URL": POLICY_URL,
            "POLICY_REFRESH_INTERVAL_S": 0,
            "ENFORCEMENT_INTERVAL_S": 0,
            "TRUST_IDENTITY_HEADERS": True,
            "PLUGINS_DIR": str(wp_dirs["plugins"]),
            "THEMES_DIR": str(wp_dirs["themes"]),
            "LOG_JSON": False,
        }
        values.update(overrides)
        return build_runtime(
            Settings(**values), kv=kv, audit=audit, transport=server.transport
        )

    return _make


@pytest.fixture()
def runtime(make_runtime: Callable[..., Runtime]) -> Runtime:
    return make_runtime()


@pytest.fixture()
def app(runtime: Runtime):
    # Function scope: new app per test so each gets its own runtime.
    return create_app(runtime)


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


ADMIN_HEADERS = {
    "X-Admin-User": "alice",
    "X-Admin-Roles": "administrator",
    "X-Real-IP": "198.51.100.7",
}


@pytest.fixture()
def admin_headers() -> Dict[str, str]:
    return dict(ADMIN_HEADERS)


@pytest.fixture()
def doc() -> Callable[..., Dict[str, Any]]:
    return policy_doc


@pytest.fixture()
def plugin(wp_dirs: Dict[str, Path]) -> Callable[..., str]:
    return lambda slug, main=None: make_plugin(wp_dirs["plugins"], slug, main)


@pytest.fixture()
def theme(wp_dirs: Dict[str, Path]) -> Callable[[str], None]:
    return lambda slug: make_theme(wp_dirs["themes"], slug)
