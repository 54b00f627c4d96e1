from __future__ import annotations

import logging
import posixpath
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, FrozenSet, Iterable, Optional

from adminguard.observability.audit_log import ACCESS_DENIED, AuditLog, NullAuditLog
from adminguard.observability.metrics import inc_access_decision
from adminguard.services.config_manager import ConfigManager
from adminguard.services.ip_matcher import is_blacklisted, is_valid_ip
from adminguard.services.policy_types import ConfigSource

_log = logging.getLogger(__name__)

ADMINISTRATOR_ROLE = "administrator"
DEFAULT_REQUIRED_CAPABILITY = "manage_options"

# Dashboard pages stay reachable so a blocked admin still sees the notice.
ALWAYS_ALLOWED_PAGES: FrozenSet[str] = frozenset({"index.php", "widget.index.php"})


class DecisionReason(str, Enum):
    OK = "ok"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    IP_RESTRICTED = "ip_restricted"
    PAGE_RESTRICTED = "page_restricted"
    SYSTEM_ERROR = "system_error"


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: DecisionReason
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class AdminIdentity:
    user_login: str = ""
    roles: FrozenSet[str] = field(default_factory=frozenset)
    capabilities: FrozenSet[str] = field(default_factory=frozenset)
    authenticated: bool = False

    @classmethod
    def anonymous(cls) -> "AdminIdentity":
        return cls()

    @classmethod
    def of(
        cls,
        user_login: str,
        roles: Iterable[str] = (),
        capabilities: Iterable[str] = (),
        authenticated: bool = True,
    ) -> "AdminIdentity":
        return cls(
            user_login=user_login,
            roles=frozenset(r.strip().lower() for r in roles if r and r.strip()),
            capabilities=frozenset(c.strip().lower() for c in capabilities if c and c.strip()),
            authenticated=authenticated,
        )

    @property
    def is_administrator(self) -> bool:
        return self.authenticated and ADMINISTRATOR_ROLE in self.roles

    def can(self, capability: str) -> bool:
        if not self.authenticated:
            return False
        return self.is_administrator or capability.lower() in self.capabilities


def current_admin_page(script: str, page_param: Optional[str] = None) -> str:
    """
    ``admin.php?page=<slug>`` resolves to the slug; every other request
    resolves to the script basename (``plugins.php``).
    """
    base = posixpath.basename((script or "").split("?", 1)[0].strip())
    if base == "admin.php" and page_param and page_param.strip():
        return page_param.strip()
    return base


class AccessDecisionEngine:
    def __init__(
        self,
        manager: ConfigManager,
        *,
        audit: Optional[AuditLog] = None,
        required_capability: str = DEFAULT_REQUIRED_CAPABILITY,
        fail_closed: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.manager = manager
        self.audit: AuditLog = audit or NullAuditLog()
        self.required_capability = required_capability
        self.fail_closed = fail_closed
        self._clock = clock

    def _decide(self, identity: AdminIdentity, ip: str, page: str) -> DecisionReason:
        if not identity.can(self.required_capability):
            return DecisionReason.INSUFFICIENT_PERMISSIONS
        # Checked before the IP: a blocked admin still lands on the dashboard.
        if page in ALWAYS_ALLOWED_PAGES:
            return DecisionReason.OK

        config, source = self.manager.get_config_with_source()
        if not is_valid_ip(ip) or is_blacklisted(ip, config.blacklist_ips):
            return DecisionReason.IP_RESTRICTED
        if page in config.restricted_pages:
            return DecisionReason.PAGE_RESTRICTED
        if self.fail_closed and source is ConfigSource.DEFAULT:
            return DecisionReason.PAGE_RESTRICTED
        return DecisionReason.OK

    def evaluate(self, identity: AdminIdentity, ip: str, page: str) -> AccessDecision:
        """
        Decide whether ``identity`` at ``ip`` may open admin ``page``.

        Checks run in a fixed order and the first failure wins: capability,
        always-allowed dashboard pages, IP blacklist, restricted pages, then
        the fail-closed rule for the bundled default policy. Errors deny with
        ``system_error``.
        """
        ip = (ip or "").strip()
        page = (page or "").strip()
        try:
            reason = self._decide(identity, ip, page)
        except Exception:
            _log.exception("access evaluation failed for page %s", page)
            reason = DecisionReason.SYSTEM_ERROR

        decision = AccessDecision(
            allowed=reason is DecisionReason.OK,
            reason=reason,
            timestamp=self._clock(),
        )
        inc_access_decision(reason.value)
        if not decision.allowed:
            _log.info(
                "admin access denied",
                extra={"reason": reason.value, "page": page, "ip": ip},
            )
            self.audit.log(
                ACCESS_DENIED, page or "unknown", ip=ip, user=identity.user_login
            )
        return decision

    def is_blocked_admin(self, identity: AdminIdentity, ip: str) -> bool:
        """Authenticated administrator whose address is on the blacklist."""
        if not identity.is_administrator:
            return False
        try:
            config = self.manager.get_config()
            return is_blacklisted((ip or "").strip(), config.blacklist_ips)
        except Exception:
            _log.exception("blocked-admin check failed")
            return False
