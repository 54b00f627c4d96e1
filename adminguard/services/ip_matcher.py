from __future__ import annotations

import ipaddress
from typing import Iterable, Optional, Tuple, Union

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def _parse_ip(value: str) -> Optional[IPAddress]:
    try:
        return ipaddress.ip_address(value.strip())
    except (ValueError, AttributeError):
        return None


def is_valid_ip(value: object) -> bool:
    return isinstance(value, str) and _parse_ip(value) is not None


def _parse_cidr(cidr: str) -> Optional[Tuple[IPAddress, int]]:
    subnet_raw, sep, prefix_raw = cidr.strip().partition("/")
    if not sep:
        return None
    subnet = _parse_ip(subnet_raw)
    if subnet is None:
        return None
    prefix_txt = prefix_raw.strip()
    if not prefix_txt.isdigit():
        return None
    prefix = int(prefix_txt)
    if prefix > subnet.max_prefixlen:
        return None
    return subnet, prefix


def is_valid_ip_or_cidr(entry: object) -> bool:
    """Valid IPv4/IPv6 literal, or ``ip/prefix`` with a numeric prefix 0..128."""
    if not isinstance(entry, str):
        return False
    text = entry.strip()
    if not text:
        return False
    if _parse_ip(text) is not None:
        return True
    if "/" not in text:
        return False
    subnet_raw, _, prefix_raw = text.partition("/")
    prefix_txt = prefix_raw.strip()
    return (
        _parse_ip(subnet_raw) is not None
        and prefix_txt.isdigit()
        and 0 <= int(prefix_txt) <= 128
    )


def ip_in_cidr(ip: str, cidr: str) -> bool:
    """
    Bitwise subnet test. Both address and subnet are masked with the prefix
    (32-bit for IPv4, 128-bit for IPv6); a family mismatch never matches.
    Malformed input returns False instead of raising.
    """
    addr = _parse_ip(ip) if isinstance(ip, str) else None
    parsed = _parse_cidr(cidr) if isinstance(cidr, str) else None
    if addr is None or parsed is None:
        return False
    subnet, prefix = parsed
    if addr.version != subnet.version:
        return False
    bits = subnet.max_prefixlen
    mask = ((1 << bits) - 1) ^ ((1 << (bits - prefix)) - 1)
    return (int(addr) & mask) == (int(subnet) & mask)


def is_blacklisted(ip: str, blacklist: Iterable[str]) -> bool:
    candidate = (ip or "").strip()
    for raw in blacklist:
        if not isinstance(raw, str):
            continue
        blocked = raw.strip()
        if "/" in blocked:
            if ip_in_cidr(candidate, blocked):
                return True
            continue
        if candidate and candidate == blocked:
            return True
    return False
