from __future__ import annotations

from typing import Optional


class AdminGuardError(Exception):
    """Base class for errors raised inside the policy engine."""


class ConfigFetchError(AdminGuardError):
    """Remote policy could not be retrieved (transport, HTTP status or decode)."""

    def __init__(self, kind: str, detail: str = "", status: Optional[int] = None) -> None:
        self.kind = kind
        self.detail = detail
        self.status = status
        msg = f"{kind}: {detail}" if detail else kind
        super().__init__(msg)


class ConfigValidationError(AdminGuardError):
    """Remote policy document is malformed or under-specified."""


class EnforcementError(AdminGuardError):
    """An enforcement action could not be completed (non-fatal)."""

    def __init__(self, code: str, target: str, detail: str = "") -> None:
        self.code = code
        self.target = target
        self.detail = detail
        super().__init__(f"{code}: {target}" + (f" ({detail})" if detail else ""))


class AccessDenied(AdminGuardError):
    """Raised by the HTTP layer only; the reason is logged, never displayed."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__("access denied")
