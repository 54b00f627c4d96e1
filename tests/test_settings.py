from __future__ import annotations

import pytest
from pydantic import ValidationError

from adminguard.config import Settings


def test_defaults():
    s = Settings(_env_file=None)
    assert s.POLICY_REFRESH_INTERVAL_S == 60
    assert s.POLICY_FAIL_MODE == "open"
    assert s.FALLBACK_THEMES == ["twentytwentyfour", "twentytwentythree", "twentytwentyfive"]
    assert s.TRUST_IDENTITY_HEADERS is False


def test_fallback_themes_from_csv_env(monkeypatch):
    monkeypatch.setenv("FALLBACK_THEMES", "kadence, astra ,")
    assert Settings(_env_file=None).FALLBACK_THEMES == ["kadence", "astra"]


def test_fallback_themes_from_json_env(monkeypatch):
    monkeypatch.setenv("FALLBACK_THEMES", '["kadence"]')
    assert Settings(_env_file=None).FALLBACK_THEMES == ["kadence"]


def test_download_template_needs_slug():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, PLUGIN_DOWNLOAD_URL_TEMPLATE="https://example.test/p.zip")


def test_fail_mode_is_constrained(monkeypatch):
    monkeypatch.setenv("POLICY_FAIL_MODE", "sideways")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
