from __future__ import annotations

import json
import logging
import ssl
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit

import httpx

from adminguard.errors import ConfigFetchError

_log = logging.getLogger(__name__)

KIND_INVALID_URL = "invalid_url"
KIND_TRANSPORT = "transport"
KIND_HTTP = "http"
KIND_DECODE = "decode"


@dataclass(frozen=True)
class FetchOk:
    body: Dict[str, Any]

    ok = True


@dataclass(frozen=True)
class FetchError:
    kind: str
    detail: str = ""
    status: Optional[int] = None

    ok = False

    def to_exception(self) -> ConfigFetchError:
        return ConfigFetchError(self.kind, self.detail, self.status)


FetchResult = Union[FetchOk, FetchError]


def is_valid_url(url: object) -> bool:
    if not isinstance(url, str) or not url.strip():
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    return parts.scheme in {"http", "https"} and bool(parts.hostname)


class ConfigFetcher:
    """
    One GET against the remote policy endpoint.

    ``fetch`` never raises; every failure comes back as a FetchError so the
    manager can fall back without try/except around the call site.
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        verify_tls: bool = True,
        ca_bundle: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if not verify_tls:
            raise ValueError("TLS verification cannot be disabled for policy fetches")
        self.timeout = float(timeout)
        self.ca_bundle = ca_bundle
        self._transport = transport

    def _verify(self) -> Union[bool, ssl.SSLContext]:
        if self.ca_bundle:
            return ssl.create_default_context(cafile=self.ca_bundle)
        return True

    def _client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            verify=self._verify(),
            transport=self._transport,
            headers={"Accept": "application/json"},
        )

    def fetch(self, url: str) -> FetchResult:
        if not is_valid_url(url):
            return FetchError(KIND_INVALID_URL, "policy URL is empty or malformed")

        try:
            with self._client() as client:
                resp = client.get(url.strip())
        except httpx.TimeoutException as exc:
            return FetchError(KIND_TRANSPORT, f"timeout: {exc}")
        except (httpx.HTTPError, ssl.SSLError, OSError) as exc:
            return FetchError(KIND_TRANSPORT, str(exc) or exc.__class__.__name__)

        if resp.status_code != 200:
            return FetchError(KIND_HTTP, f"unexpected status {resp.status_code}", resp.status_code)

        try:
            body = json.loads(resp.content)
        except (ValueError, UnicodeDecodeError) as exc:
            return FetchError(KIND_DECODE, f"invalid JSON: {exc}", resp.status_code)
        if not isinstance(body, dict):
            return FetchError(KIND_DECODE, "payload is not a JSON object", resp.status_code)
        return FetchOk(body)
