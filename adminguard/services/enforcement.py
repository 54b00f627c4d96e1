from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from adminguard.errors import EnforcementError
from adminguard.observability import audit_log as events
from adminguard.observability.audit_log import AuditLog, NullAuditLog
from adminguard.observability.metrics import inc_enforcement_action
from adminguard.services.artifacts import ArtifactRegistry, plugin_slug
from adminguard.services.config_manager import ConfigManager
from adminguard.services.kv_store import KeyValueStore
from adminguard.services.policy_types import PolicyConfig

_log = logging.getLogger(__name__)

DEDUP_KEY = "enforcement_dedup"
DEFAULT_DEDUP_TTL_S = 60
DEFAULT_FALLBACK_THEMES: Tuple[str, ...] = (
    "twentytwentyfour",
    "twentytwentythree",
    "twentytwentyfive",
)


def _under(destination: str, kind: str, slug: str) -> bool:
    """True when ``destination`` contains the ``/<kind>s/<slug>`` path segment."""
    marker = f"/{kind}s/{slug.lower()}"
    idx = destination.find(marker)
    while idx >= 0:
        end = idx + len(marker)
        if end == len(destination) or destination[end] == "/":
            return True
        idx = destination.find(marker, idx + 1)
    return False


class EnforcementAction(str, Enum):
    DEACTIVATE_PLUGIN = "deactivate-plugin"
    DELETE_PLUGIN = "delete-plugin"
    SWITCH_THEME = "switch-theme"
    DELETE_THEME = "delete-theme"


@dataclass
class EnforcementReport:
    actions: List[Tuple[EnforcementAction, str]] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    skipped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actions": [{"action": a.value, "target": t} for a, t in self.actions],
            "errors": list(self.errors),
            "skipped": self.skipped,
        }


@dataclass(frozen=True)
class InstallCheck:
    allowed: bool
    kind: Optional[str] = None
    slug: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "kind": self.kind, "slug": self.slug}


class EnforcementEngine:
    """
    Brings installed plugins/themes in line with the block lists.

    Every pass re-reads registry state before acting, so running it twice
    in a row is a no-op the second time.
    """

    def __init__(
        self,
        manager: ConfigManager,
        registry: ArtifactRegistry,
        kv: KeyValueStore,
        *,
        audit: Optional[AuditLog] = None,
        fallback_themes: Sequence[str] = DEFAULT_FALLBACK_THEMES,
        dedup_ttl_s: int = DEFAULT_DEDUP_TTL_S,
        block_installs: bool = True,
    ) -> None:
        self.manager = manager
        self.registry = registry
        self._kv = kv
        self.audit: AuditLog = audit or NullAuditLog()
        self.fallback_themes = tuple(fallback_themes)
        self.dedup_ttl_s = int(dedup_ttl_s)
        self.block_installs = block_installs

    def _record(
        self,
        report: Optional[EnforcementReport],
        action: Optional[EnforcementAction],
        event_type: str,
        target: str,
        *,
        ip: Optional[str] = None,
        user: Optional[str] = None,
    ) -> None:
        if report is not None and action is not None:
            report.actions.append((action, target))
        if action is not None:
            inc_enforcement_action(action.value)
        _log.info("%s: %s", event_type, target)
        self.audit.log(event_type, target, ip=ip, user=user)

    def _fallback_theme(self, config: PolicyConfig, current: str) -> Optional[str]:
        """First installed fallback that is neither blocked nor ``current``."""
        for slug in self.fallback_themes:
            if slug == current or config.is_theme_blocked(slug):
                continue
            if self.registry.theme_exists(slug):
                return slug
        return None

    # --- scheduled sweep ----------------------------------------------------

    def _enforce_plugins(self, config: PolicyConfig, report: EnforcementReport) -> None:
        active = set(self.registry.active_plugins())
        for plugin_file in self.registry.installed_plugins():
            slug = plugin_slug(plugin_file)
            if not config.is_plugin_blocked(slug):
                continue
            try:
                if plugin_file in active:
                    self.registry.deactivate_plugin(plugin_file)
                    self._record(
                        report,
                        EnforcementAction.DEACTIVATE_PLUGIN,
                        events.AUTO_DEACTIVATED_PLUGIN,
                        slug,
                    )
                if self.registry.plugin_dir_exists(slug):
                    self.registry.delete_plugin(slug)
                    self._record(
                        report,
                        EnforcementAction.DELETE_PLUGIN,
                        events.AUTO_DELETED_PLUGIN,
                        slug,
                    )
            except EnforcementError as exc:
                _log.warning("plugin enforcement failed: %s", exc)
                report.errors.append(str(exc))

    def _enforce_themes(self, config: PolicyConfig, report: EnforcementReport) -> None:
        for slug in config.blocked_themes:
            try:
                if slug == self.registry.active_theme():
                    fallback = self._fallback_theme(config, slug)
                    if fallback is None:
                        self.audit.log(events.THEME_FALLBACK_MISSING, slug)
                        raise EnforcementError("theme-fallback-missing", slug)
                    self.registry.switch_theme(fallback)
                    self._record(
                        report,
                        EnforcementAction.SWITCH_THEME,
                        events.BLOCKED_THEME_DEACTIVATED,
                        slug,
                    )
                if self.registry.theme_exists(slug) and slug != self.registry.active_theme():
                    self.registry.delete_theme(slug)
                    self._record(
                        report,
                        EnforcementAction.DELETE_THEME,
                        events.AUTO_DELETED_THEME,
                        slug,
                    )
            except EnforcementError as exc:
                _log.warning("theme enforcement failed: %s", exc)
                report.errors.append(str(exc))

    def enforce(self, config: Optional[PolicyConfig] = None) -> EnforcementReport:
        policy = config if config is not None else self.manager.get_config()
        report = EnforcementReport()
        self._enforce_plugins(policy, report)
        self._enforce_themes(policy, report)
        if report.actions or report.errors:
            _log.info(
                "enforcement pass finished",
                extra={"actions": len(report.actions), "errors": len(report.errors)},
            )
        return report

    def run_scheduled(self) -> EnforcementReport:
        """Run ``enforce`` at most once per dedup window across workers."""
        if not self._kv.add(DEDUP_KEY, 1, ttl_s=self.dedup_ttl_s):
            return EnforcementReport(skipped=True)
        return self.enforce()

    # --- lifecycle handlers -------------------------------------------------

    def on_plugin_activated(
        self, plugin_file: str, *, ip: Optional[str] = None, user: Optional[str] = None
    ) -> bool:
        """Deactivate a blocked plugin right after activation. True when reverted."""
        slug = plugin_slug(plugin_file)
        if not self.manager.get_config().is_plugin_blocked(slug):
            return False
        self.registry.deactivate_plugin(plugin_file)
        self._record(
            None,
            EnforcementAction.DEACTIVATE_PLUGIN,
            events.PLUGIN_ACTIVATION_BLOCKED,
            slug,
            ip=ip,
            user=user,
        )
        return True

    def on_theme_switched(
        self, slug: str, *, ip: Optional[str] = None, user: Optional[str] = None
    ) -> Optional[str]:
        """
        Switch away from a blocked theme. Returns the fallback now active, or
        None when the theme is allowed. Raises EnforcementError when no
        fallback theme is installed; the blocked theme then stays active.
        """
        config = self.manager.get_config()
        if not config.is_theme_blocked(slug):
            return None
        fallback = self._fallback_theme(config, slug)
        self.audit.log(events.THEME_ACTIVATION_BLOCKED, slug, ip=ip, user=user)
        if fallback is None:
            _log.error("blocked theme %s is active and no fallback theme exists", slug)
            raise EnforcementError("theme-fallback-missing", slug)
        self.registry.switch_theme(fallback)
        inc_enforcement_action(EnforcementAction.SWITCH_THEME.value)
        _log.info("%s: %s -> %s", events.THEME_ACTIVATION_BLOCKED, slug, fallback)
        return fallback

    # --- filters ------------------------------------------------------------

    def filter_plugin_action_links(
        self, actions: Mapping[str, Any], plugin_file: str
    ) -> Dict[str, Any]:
        out = dict(actions)
        if self.manager.get_config().is_plugin_blocked(plugin_slug(plugin_file)):
            out.pop("activate", None)
        return out

    def filter_plugin_updates(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        """Remove blocked plugins from an update-check payload's ``response`` map."""
        out = dict(value)
        response = out.get("response")
        if not isinstance(response, Mapping):
            return out
        config = self.manager.get_config()
        kept: Dict[str, Any] = {}
        for plugin_file, data in response.items():
            slug = plugin_slug(plugin_file)
            if config.is_plugin_blocked(slug):
                self._record(None, None, events.PLUGIN_UPDATE_BLOCKED, slug)
                continue
            kept[plugin_file] = data
        out["response"] = kept
        return out

    def filter_theme_updates(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        out = dict(value)
        response = out.get("response")
        if not isinstance(response, Mapping):
            return out
        kept = dict(response)
        for slug in self.manager.get_config().blocked_themes:
            if slug in kept:
                del kept[slug]
                self._record(None, None, events.THEME_UPDATE_BLOCKED, slug)
        out["response"] = kept
        return out

    def filter_installation(
        self,
        destination: str,
        *,
        ip: Optional[str] = None,
        user: Optional[str] = None,
    ) -> InstallCheck:
        """
        Check an install destination path against the block lists. A blocked
        target is always logged; it is refused only when ``block_installs``
        is on.
        """
        dest = (destination or "").replace("\\", "/").lower()
        config = self.manager.get_config()
        checks: Iterable[Tuple[str, str, Tuple[str, ...]]] = (
            ("plugin", events.PLUGIN_INSTALL_BLOCKED, config.blocked_plugins),
            ("theme", events.THEME_INSTALL_BLOCKED, config.blocked_themes),
        )
        for kind, event_type, blocked in checks:
            for slug in blocked:
                if _under(dest, kind, slug):
                    self._record(None, None, event_type, slug, ip=ip, user=user)
                    if self.block_installs:
                        return InstallCheck(allowed=False, kind=kind, slug=slug)
        return InstallCheck(allowed=True)
