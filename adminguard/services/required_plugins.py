from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from adminguard.errors import EnforcementError
from adminguard.observability.audit_log import (
    PLUGIN_FORCE_ACTIVATED,
    PLUGIN_INSTALLED,
    AuditLog,
    NullAuditLog,
)
from adminguard.services.artifacts import ArtifactRegistry
from adminguard.services.config_manager import ConfigManager
from adminguard.services.policy_types import PolicyConfig, RequiredPlugin

_log = logging.getLogger(__name__)


@dataclass
class BulkResult:
    done: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"done": self.done, "skipped": self.skipped, "failed": self.failed}


class RequiredPluginService:
    """Install/activate the plugins a policy marks as required."""

    def __init__(
        self,
        manager: ConfigManager,
        registry: ArtifactRegistry,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.manager = manager
        self.registry = registry
        self.audit: AuditLog = audit or NullAuditLog()

    def _required(self) -> tuple[PolicyConfig, tuple[RequiredPlugin, ...]]:
        config = self.manager.get_config()
        return config, config.required_plugins

    def _is_installed(self, plugin: RequiredPlugin) -> bool:
        return self.registry.plugin_dir_exists(plugin.slug)

    def _main_file(self, plugin: RequiredPlugin) -> str:
        return self.registry.plugin_main_file(plugin.slug) or plugin.main_file

    def status(self) -> List[Dict[str, Any]]:
        _, required = self._required()
        active = set(self.registry.active_plugins())
        return [
            {
                "slug": p.slug,
                "name": p.name,
                "installed": self._is_installed(p),
                "active": self._main_file(p) in active,
                "force_activation": p.force_activation,
            }
            for p in required
        ]

    def missing(self) -> List[str]:
        _, required = self._required()
        return [p.name for p in required if not self._is_installed(p)]

    def bulk_install(self, *, ip: Optional[str] = None, user: Optional[str] = None) -> BulkResult:
        config, required = self._required()
        result = BulkResult()
        for plugin in required:
            if config.is_plugin_blocked(plugin.slug) or self._is_installed(plugin):
                result.skipped.append(plugin.slug)
                continue
            try:
                self.registry.install_plugin(plugin.slug)
            except EnforcementError as exc:
                _log.warning("required plugin install failed: %s", exc)
                result.failed[plugin.slug] = exc.detail or exc.code
                continue
            result.done.append(plugin.slug)
            self.audit.log(PLUGIN_INSTALLED, plugin.slug, ip=ip, user=user)
        return result

    def _activate(
        self,
        *,
        forced_only: bool,
        ip: Optional[str],
        user: Optional[str],
    ) -> BulkResult:
        config, required = self._required()
        active = set(self.registry.active_plugins())
        result = BulkResult()
        for plugin in required:
            if forced_only and not plugin.force_activation:
                continue
            if (
                config.is_plugin_blocked(plugin.slug)
                or not self._is_installed(plugin)
                or self._main_file(plugin) in active
            ):
                result.skipped.append(plugin.slug)
                continue
            try:
                self.registry.activate_plugin(self._main_file(plugin))
            except EnforcementError as exc:
                _log.warning("required plugin activation failed: %s", exc)
                result.failed[plugin.slug] = exc.detail or exc.code
                continue
            result.done.append(plugin.slug)
            self.audit.log(PLUGIN_FORCE_ACTIVATED, plugin.slug, ip=ip, user=user)
        return result

    def bulk_activate(self, *, ip: Optional[str] = None, user: Optional[str] = None) -> BulkResult:
        return self._activate(forced_only=False, ip=ip, user=user)

    def apply_forced_activation(self) -> BulkResult:
        return self._activate(forced_only=True, ip=None, user=None)
