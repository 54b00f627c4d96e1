from __future__ import annotations

import pytest

from adminguard.services.ip_matcher import (
    ip_in_cidr,
    is_blacklisted,
    is_valid_ip,
    is_valid_ip_or_cidr,
)


def _reference_v4(ip: str, cidr: str) -> bool:
    subnet, bits = cidr.split("/")

    def to_int(text: str) -> int:
        a, b, c, d = (int(p) for p in text.split("."))
        return (a << 24) | (b << 16) | (c << 8) | d

    prefix = int(bits)
    mask = (0xFFFFFFFF << (32 - prefix)) & 0xFFFFFFFF if prefix else 0
    return (to_int(ip) & mask) == (to_int(subnet) & mask)


@pytest.mark.parametrize(
    "ip,cidr",
    [
        ("10.1.2.3", "10.0.0.0/8"),
        ("11.0.0.1", "10.0.0.0/8"),
        ("192.168.1.255", "192.168.1.0/24"),
        ("192.168.2.0", "192.168.1.0/24"),
        ("203.0.113.9", "203.0.113.9/32"),
        ("203.0.113.10", "203.0.113.9/32"),
        ("1.2.3.4", "0.0.0.0/0"),
        ("172.31.255.255", "172.16.0.0/12"),
        ("172.32.0.0", "172.16.0.0/12"),
    ],
)
def test_ipv4_cidr_matches_reference_mask(ip, cidr):
    assert ip_in_cidr(ip, cidr) is _reference_v4(ip, cidr)


def test_ipv6_cidr():
    assert ip_in_cidr("2001:db8::1", "2001:db8::/32")
    assert ip_in_cidr("2001:db8:ffff::1", "2001:db8::/32")
    assert not ip_in_cidr("2001:db9::1", "2001:db8::/32")
    assert ip_in_cidr("::1", "::1/128")


def test_family_mismatch_never_matches():
    assert not ip_in_cidr("10.0.0.1", "::/0")
    assert not ip_in_cidr("::1", "0.0.0.0/0")


@pytest.mark.parametrize(
    "cidr",
    ["10.0.0.0/abc", "10.0.0.0/33", "10.0.0.0/", "not-an-ip/8", "10.0.0.0/-1", "2001:db8::/129"],
)
def test_malformed_cidr_is_a_non_match(cidr):
    assert ip_in_cidr("10.0.0.1", cidr) is False
    assert is_blacklisted("10.0.0.1", [cidr]) is False


def test_malformed_ip_never_matches_cidr():
    assert ip_in_cidr("999.1.1.1", "0.0.0.0/0") is False
    assert ip_in_cidr("", "0.0.0.0/0") is False


def test_blacklist_literal_and_cidr_entries_are_trimmed():
    blacklist = [" 198.51.100.7 ", " 10.0.0.0/8 "]
    assert is_blacklisted("198.51.100.7", blacklist)
    assert is_blacklisted("10.200.0.1", blacklist)
    assert not is_blacklisted("198.51.100.8", blacklist)


def test_blacklist_skips_bad_entries_and_keeps_scanning():
    assert is_blacklisted("10.0.0.1", ["10.0.0.0/99", None, "10.0.0.1"])


def test_empty_blacklist():
    assert not is_blacklisted("10.0.0.1", [])


def test_validity_helpers():
    assert is_valid_ip("192.0.2.1")
    assert is_valid_ip("::ffff:192.0.2.1")
    assert not is_valid_ip("192.0.2")
    assert not is_valid_ip(None)

    assert is_valid_ip_or_cidr("192.0.2.0/24")
    assert is_valid_ip_or_cidr("2001:db8::/48")
    assert is_valid_ip_or_cidr("192.0.2.1")
    assert not is_valid_ip_or_cidr("192.0.2.0/x")
    assert not is_valid_ip_or_cidr("192.0.2.0/129")
    assert not is_valid_ip_or_cidr("")
