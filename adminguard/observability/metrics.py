from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple

from prometheus_client import REGISTRY, CollectorRegistry, Counter

_log = logging.getLogger(__name__)


# Metrics must never break a request or an enforcement pass.
def _best_effort(msg: str, fn: Callable[[], Any]) -> None:
    try:
        fn()
    except Exception as e:  # pragma: no cover
        _log.debug("%s: %s", msg, e)


def _get_or_create_counter(
    name: str,
    doc: str,
    labelnames: Tuple[str, ...] = (),
    registry: Optional[CollectorRegistry] = None,
) -> Counter:
    reg = registry or REGISTRY
    try:
        names_map = getattr(reg, "_names_to_collectors", None)
        if isinstance(names_map, dict):
            existing = names_map.get(name)
            if isinstance(existing, Counter):
                return existing
    except Exception as e:  # pragma: no cover
        _log.debug("reuse counter %s failed: %s", name, e)

    try:
        return Counter(name, doc, labelnames=labelnames, registry=reg)
    except ValueError:
        names_map = getattr(reg, "_names_to_collectors", None)
        if isinstance(names_map, dict):
            found = names_map.get(name)
            if isinstance(found, Counter):
                return found
        # Unregistered: still counts, just never exposed.
        return Counter(name, doc, labelnames=labelnames, registry=None)


config_fetch_total = _get_or_create_counter(
    "adminguard_config_fetch_total",
    "Policy lookups by outcome (cache, remote, fallback, default, error kinds)",
    ("outcome",),
)
access_decisions_total = _get_or_create_counter(
    "adminguard_access_decisions_total",
    "Admin access decisions by reason",
    ("reason",),
)
enforcement_actions_total = _get_or_create_counter(
    "adminguard_enforcement_actions_total",
    "Plugin/theme enforcement actions applied",
    ("action",),
)
audit_events_total = _get_or_create_counter(
    "adminguard_audit_events_total",
    "Audit log events recorded",
    ("event_type",),
)


def inc_config_fetch(outcome: str) -> None:
    _best_effort(
        "inc config fetch",
        lambda: config_fetch_total.labels(outcome=outcome or "unknown").inc(),
    )


def inc_access_decision(reason: str) -> None:
    _best_effort(
        "inc access decision",
        lambda: access_decisions_total.labels(reason=reason or "unknown").inc(),
    )


def inc_enforcement_action(action: str) -> None:
    _best_effort(
        "inc enforcement action",
        lambda: enforcement_actions_total.labels(action=action or "unknown").inc(),
    )


def inc_audit_event(event_type: str) -> None:
    _best_effort(
        "inc audit event",
        lambda: audit_events_total.labels(event_type=event_type or "unknown").inc(),
    )
