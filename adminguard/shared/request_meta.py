from __future__ import annotations

from typing import Mapping, Optional

# Header precedence used when the service sits behind a trusted reverse proxy
# (Cloudflare or nginx). Without such a proxy in front these
# headers are attacker-controlled; set TRUST_PROXY_HEADERS=false in that case.
PROXY_IP_HEADERS = ("CF-Connecting-IP", "X-Real-IP", "X-Client-IP")

DEFAULT_CLIENT_IP = "127.0.0.1"


def _header(headers: Mapping[str, str], name: str) -> str:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return (value or "").strip()


def client_ip(
    headers: Mapping[str, str],
    peer: Optional[str],
    *,
    trust_proxy_headers: bool = True,
) -> str:
    if trust_proxy_headers:
        for name in PROXY_IP_HEADERS:
            value = _header(headers, name)
            if value:
                return value
        xff = _header(headers, "X-Forwarded-For").split(",")[0].strip()
        if xff:
            return xff
    peer_ip = (peer or "").strip()
    return peer_ip or DEFAULT_CLIENT_IP

