from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union, cast

from adminguard.errors import ConfigValidationError
from adminguard.services.ip_matcher import is_valid_ip_or_cidr
from adminguard.services.policy_types import (
    PolicyConfig,
    RequiredPlugin,
    has_key,
    lookup,
)

Issue = Dict[str, Any]

_SLUG_RE = re.compile(r"^[a-z0-9_-]+$", re.IGNORECASE)

# Admin page identifiers a remote policy is allowed to restrict. Anything
# else is dropped so a misconfigured source cannot lock out arbitrary pages.
VALID_ADMIN_PAGES = frozenset(
    {
        "themes.php",
        "users.php",
        "plugins.php",
        "settings.php",
        "options-general.php",
        "upload.php",
        "tools.php",
        "dashboard.php",
    }
)

REQUIRED_COLLECTIONS = (
    "restricted_pages",
    "blocked_plugins",
    "blocked_themes",
    "blacklist_ips",
)


def _issue(code: str, msg: str, path: str = "") -> Issue:
    return {"severity": "error", "code": code, "message": msg, "path": path}


def is_valid_slug(slug: object) -> bool:
    return isinstance(slug, str) and bool(_SLUG_RE.match(slug))


def is_valid_admin_page(page: object) -> bool:
    return isinstance(page, str) and page in VALID_ADMIN_PAGES


def validation_issues(raw: object) -> List[Issue]:
    """
    List structural problems with a decoded remote payload. An empty list
    means the payload may be normalized.
    """
    if not isinstance(raw, Mapping):
        return [_issue("schema.top", "payload must be a JSON object")]

    issues: List[Issue] = []
    version = raw.get("version")
    if "version" not in raw:
        issues.append(_issue("version.missing", "version is required", "version"))
    elif version is None or isinstance(version, bool) or not isinstance(
        version, (str, int, float)
    ):
        issues.append(_issue("version.type", "version must be a string or number", "version"))

    for name in REQUIRED_COLLECTIONS:
        if not has_key(raw, name):
            issues.append(_issue(f"{name}.missing", f"{name} is required", name))
        elif not isinstance(lookup(raw, name), list):
            issues.append(_issue(f"{name}.type", f"{name} must be a list", name))

    required = lookup(raw, "required_plugins")
    if required is not None and not isinstance(required, list):
        issues.append(_issue("required_plugins.type", "requiredPlugins must be a list"))
    return issues


def validate(raw: object) -> bool:
    return not validation_issues(raw)


def _unique(values: Iterable[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for value in values:
        seen.setdefault(value, None)
    return tuple(seen)


def _strings(value: Any) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str)]


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _required_plugins(value: Any) -> Tuple[RequiredPlugin, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    out: Dict[str, RequiredPlugin] = {}
    for item in value:
        if isinstance(item, RequiredPlugin):
            out.setdefault(item.slug, item)
            continue
        if not isinstance(item, Mapping):
            continue
        slug = item.get("slug")
        if not is_valid_slug(slug):
            continue
        name = item.get("name")
        force = item.get("forceActivation", item.get("force_activation", False))
        out.setdefault(
            slug,
            RequiredPlugin(
                slug=slug,
                name=name.strip() if isinstance(name, str) and name.strip() else slug,
                force_activation=_truthy(force),
            ),
        )
    return tuple(out.values())


def normalize(raw: Union[Mapping[str, Any], PolicyConfig]) -> PolicyConfig:
    """
    Filter a validated payload down to entries that are safe to act on.

    Total over validate-passing input: invalid entries are dropped, never
    fatal. Accepts a PolicyConfig as well, so normalizing twice is a no-op.
    """
    if isinstance(raw, PolicyConfig):
        raw = raw.to_dict()

    version = raw.get("version")
    return PolicyConfig(
        version="" if version is None else str(version).strip(),
        restricted_pages=_unique(
            p for p in _strings(lookup(raw, "restricted_pages")) if is_valid_admin_page(p)
        ),
        blocked_plugins=_unique(
            s for s in _strings(lookup(raw, "blocked_plugins")) if is_valid_slug(s)
        ),
        blocked_themes=_unique(
            s for s in _strings(lookup(raw, "blocked_themes")) if is_valid_slug(s)
        ),
        blacklist_ips=_unique(
            ip for ip in _strings(lookup(raw, "blacklist_ips")) if is_valid_ip_or_cidr(ip)
        ),
        required_plugins=_required_plugins(lookup(raw, "required_plugins")),
    )


def parse_policy(raw: object) -> PolicyConfig:
    """
    validate + normalize + the under-specification check. Raises
    ConfigValidationError when the document must not be trusted.
    """
    issues = validation_issues(raw)
    if issues:
        codes = ", ".join(i["code"] for i in issues)
        raise ConfigValidationError(f"invalid policy document: {codes}")
    config = normalize(cast(Mapping[str, Any], raw))
    if not config.restricted_pages:
        raise ConfigValidationError("policy defines no recognised restricted pages")
    return config


def from_stored(raw: object) -> PolicyConfig | None:
    """Decode a persisted PolicyConfig dict; None when unusable."""
    if not isinstance(raw, Mapping) or not validate(raw):
        return None
    return normalize(raw)
