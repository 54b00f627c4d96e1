from __future__ import annotations

import io
import logging
import os
import shutil
import threading
import zipfile
from typing import List, Optional, Protocol, runtime_checkable

import httpx

from adminguard.errors import EnforcementError
from adminguard.services.kv_store import KeyValueStore
from adminguard.services.policy_validate import is_valid_slug

_log = logging.getLogger(__name__)

ACTIVE_PLUGINS_KEY = "active_plugins"
ACTIVE_THEME_KEY = "active_theme"

DEFAULT_DOWNLOAD_URL_TEMPLATE = (
    "https://downloads.wordpress.org/plugin/{slug}.latest-stable.zip"
)


def plugin_slug(plugin_file: str) -> str:
    """``akismet/akismet.php`` -> ``akismet``; single-file plugins keep their stem."""
    text = (plugin_file or "").strip().replace("\\", "/").lstrip("/")
    head, sep, _ = text.partition("/")
    if sep:
        return head
    return text[:-4] if text.endswith(".php") else text


@runtime_checkable
class ArtifactRegistry(Protocol):
    """Installed plugins/themes and their activation state, as seen by the host."""

    def installed_plugins(self) -> List[str]:
        ...

    def active_plugins(self) -> List[str]:
        ...

    def is_plugin_active(self, plugin_file: str) -> bool:
        ...

    def plugin_dir_exists(self, slug: str) -> bool:
        ...

    def plugin_main_file(self, slug: str) -> Optional[str]:
        ...

    def activate_plugin(self, plugin_file: str) -> None:
        ...

    def deactivate_plugin(self, plugin_file: str) -> None:
        ...

    def delete_plugin(self, slug: str) -> None:
        ...

    def install_plugin(self, slug: str) -> None:
        ...

    def installed_themes(self) -> List[str]:
        ...

    def active_theme(self) -> Optional[str]:
        ...

    def theme_exists(self, slug: str) -> bool:
        ...

    def switch_theme(self, slug: str) -> None:
        ...

    def delete_theme(self, slug: str) -> None:
        ...


class FilesystemArtifactRegistry(ArtifactRegistry):
    """
    Plugins and themes are directories under ``plugins_dir`` / ``themes_dir``.
    Activation state lives in the key/value store so every worker sees the
    same view.
    """

    def __init__(
        self,
        plugins_dir: str,
        themes_dir: str,
        kv: KeyValueStore,
        *,
        download_url_template: str = DEFAULT_DOWNLOAD_URL_TEMPLATE,
        download_timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.plugins_dir = os.path.abspath(plugins_dir)
        self.themes_dir = os.path.abspath(themes_dir)
        self._kv = kv
        self.download_url_template = download_url_template
        self.download_timeout = float(download_timeout)
        self._transport = transport
        self._lock = threading.RLock()

    # --- paths --------------------------------------------------------------

    def _child(self, root: str, slug: str) -> str:
        if not is_valid_slug(slug):
            raise EnforcementError("invalid-slug", str(slug))
        return os.path.join(root, slug)

    @staticmethod
    def _subdirs(root: str) -> List[str]:
        if not os.path.isdir(root):
            return []
        return sorted(
            name
            for name in os.listdir(root)
            if os.path.isdir(os.path.join(root, name)) and not name.startswith(".")
        )

    def _main_file(self, slug: str) -> Optional[str]:
        folder = os.path.join(self.plugins_dir, slug)
        preferred = os.path.join(folder, f"{slug}.php")
        if os.path.isfile(preferred):
            return f"{slug}/{slug}.php"
        candidates = sorted(n for n in os.listdir(folder) if n.endswith(".php"))
        if candidates:
            return f"{slug}/{candidates[0]}"
        return None

    # --- plugins ------------------------------------------------------------

    def installed_plugins(self) -> List[str]:
        out: List[str] = []
        for slug in self._subdirs(self.plugins_dir):
            main = self._main_file(slug)
            if main:
                out.append(main)
        return out

    def active_plugins(self) -> List[str]:
        value = self._kv.get(ACTIVE_PLUGINS_KEY)
        if not isinstance(value, list):
            return []
        return [str(v) for v in value if isinstance(v, str)]

    def is_plugin_active(self, plugin_file: str) -> bool:
        return plugin_file in self.active_plugins()

    def plugin_dir_exists(self, slug: str) -> bool:
        return is_valid_slug(slug) and os.path.isdir(os.path.join(self.plugins_dir, slug))

    def plugin_main_file(self, slug: str) -> Optional[str]:
        """``slug/slug.php`` when present, else the first PHP file in the folder."""
        if not self.plugin_dir_exists(slug):
            return None
        return self._main_file(slug)

    def activate_plugin(self, plugin_file: str) -> None:
        slug = plugin_slug(plugin_file)
        if not self.plugin_dir_exists(slug):
            raise EnforcementError("plugin-missing", plugin_file)
        with self._lock:
            active = self.active_plugins()
            if plugin_file not in active:
                active.append(plugin_file)
                self._kv.set(ACTIVE_PLUGINS_KEY, active)

    def deactivate_plugin(self, plugin_file: str) -> None:
        with self._lock:
            active = self.active_plugins()
            if plugin_file in active:
                self._kv.set(ACTIVE_PLUGINS_KEY, [p for p in active if p != plugin_file])

    def delete_plugin(self, slug: str) -> None:
        path = self._child(self.plugins_dir, slug)
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise EnforcementError("delete-failed", slug, str(exc)) from exc

    def _download(self, slug: str) -> bytes:
        url = self.download_url_template.format(slug=slug)
        try:
            with httpx.Client(
                timeout=self.download_timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                resp = client.get(url)
        except httpx.HTTPError as exc:
            raise EnforcementError("download-failed", slug, str(exc)) from exc
        if resp.status_code != 200:
            raise EnforcementError("download-failed", slug, f"status {resp.status_code}")
        return resp.content

    def _extract(self, slug: str, payload: bytes) -> None:
        root = self.plugins_dir
        try:
            archive = zipfile.ZipFile(io.BytesIO(payload))
        except zipfile.BadZipFile as exc:
            raise EnforcementError("install-failed", slug, "not a zip archive") from exc
        with archive:
            for member in archive.namelist():
                target = os.path.abspath(os.path.join(root, member))
                if os.path.commonpath([root, target]) != root:
                    raise EnforcementError("install-failed", slug, f"unsafe path {member!r}")
            os.makedirs(root, exist_ok=True)
            archive.extractall(root)

    def install_plugin(self, slug: str) -> None:
        """Download the latest stable package for ``slug`` and unpack it."""
        self._child(self.plugins_dir, slug)
        payload = self._download(slug)
        self._extract(slug, payload)
        if not self.plugin_dir_exists(slug):
            raise EnforcementError("install-failed", slug, "archive did not contain the plugin")
        _log.info("installed plugin %s", slug)

    # --- themes -------------------------------------------------------------

    def installed_themes(self) -> List[str]:
        return self._subdirs(self.themes_dir)

    def active_theme(self) -> Optional[str]:
        value = self._kv.get(ACTIVE_THEME_KEY)
        return value if isinstance(value, str) and value else None

    def theme_exists(self, slug: str) -> bool:
        return is_valid_slug(slug) and os.path.isdir(os.path.join(self.themes_dir, slug))

    def switch_theme(self, slug: str) -> None:
        if not self.theme_exists(slug):
            raise EnforcementError("theme-missing", slug)
        self._kv.set(ACTIVE_THEME_KEY, slug)

    def delete_theme(self, slug: str) -> None:
        path = self._child(self.themes_dir, slug)
        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise EnforcementError("delete-failed", slug, str(exc)) from exc
