from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

# Wire keys are camelCase; snake_case is accepted on input for compatibility
# with older remote endpoints.
FIELD_KEYS: Dict[str, Tuple[str, str]] = {
    "restricted_pages": ("restrictedPages", "restricted_pages"),
    "blocked_plugins": ("blockedPlugins", "blocked_plugins"),
    "blocked_themes": ("blockedThemes", "blocked_themes"),
    "blacklist_ips": ("blacklistIps", "blacklist_ips"),
    "required_plugins": ("requiredPlugins", "required_plugins"),
}


def lookup(raw: Mapping[str, Any], name: str) -> Any:
    """Return the value for ``name`` under either spelling, or None."""
    for key in FIELD_KEYS.get(name, (name,)):
        if key in raw:
            return raw[key]
    return None


def has_key(raw: Mapping[str, Any], name: str) -> bool:
    return any(key in raw for key in FIELD_KEYS.get(name, (name,)))


@dataclass(frozen=True)
class RequiredPlugin:
    slug: str
    name: str
    force_activation: bool = False

    @property
    def main_file(self) -> str:
        return f"{self.slug}/{self.slug}.php"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "forceActivation": self.force_activation,
        }


@dataclass(frozen=True)
class PolicyConfig:
    version: str = ""
    restricted_pages: Tuple[str, ...] = ()
    blocked_plugins: Tuple[str, ...] = ()
    blocked_themes: Tuple[str, ...] = ()
    blacklist_ips: Tuple[str, ...] = ()
    required_plugins: Tuple[RequiredPlugin, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "restrictedPages": list(self.restricted_pages),
            "blockedPlugins": list(self.blocked_plugins),
            "blockedThemes": list(self.blocked_themes),
            "blacklistIps": list(self.blacklist_ips),
            "requiredPlugins": [p.to_dict() for p in self.required_plugins],
        }

    def is_plugin_blocked(self, slug: str) -> bool:
        return slug in self.blocked_plugins

    def is_theme_blocked(self, slug: str) -> bool:
        return slug in self.blocked_themes


class ConfigSource(str, Enum):
    CACHE = "cache"
    REMOTE = "remote"
    FALLBACK = "fallback"
    DEFAULT = "default"


@dataclass(frozen=True)
class ConfigStatus:
    version: Optional[str]
    last_fetched_at: Optional[str]
    source: Optional[ConfigSource]
    cached: bool
    config: Optional[PolicyConfig]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "last_fetched_at": self.last_fetched_at,
            "source": self.source.value if self.source else None,
            "cached": self.cached,
            "config": self.config.to_dict() if self.config else None,
        }
