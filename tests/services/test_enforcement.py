from __future__ import annotations

import pytest

from adminguard.errors import EnforcementError
from adminguard.observability.audit_log import MemoryAuditLog
from adminguard.services.enforcement import EnforcementAction, EnforcementEngine


@pytest.fixture()
def engine(manager, registry, kv, audit):
    return EnforcementEngine(manager, registry, kv, audit=audit)


def test_scenario_blocked_active_plugin_is_deactivated_and_deleted(
    engine, registry, server, doc, plugin, audit, wp_dirs
):
    server.payload = doc(blockedPlugins=["evil-plugin"])
    evil = plugin("evil-plugin")
    good = plugin("good-plugin")
    registry.activate_plugin(evil)
    registry.activate_plugin(good)

    report = engine.enforce()

    assert report.actions == [
        (EnforcementAction.DEACTIVATE_PLUGIN, "evil-plugin"),
        (EnforcementAction.DELETE_PLUGIN, "evil-plugin"),
    ]
    assert registry.active_plugins() == [good]
    assert not (wp_dirs["plugins"] / "evil-plugin").exists()
    assert len(audit.entries("auto-deactivated-plugin")) == 1
    assert len(audit.entries("auto-deleted-plugin")) == 1


def test_second_run_is_a_no_op(engine, registry, server, doc, plugin, theme, audit):
    server.payload = doc(blockedPlugins=["evil-plugin"], blockedThemes=["astra"])
    registry.activate_plugin(plugin("evil-plugin"))
    theme("astra")
    theme("twentytwentyfour")
    registry.switch_theme("astra")

    first = engine.enforce()
    logged = len(audit.entries())
    second = engine.enforce()

    assert first.actions
    assert second.actions == []
    assert second.errors == []
    assert len(audit.entries()) == logged


def test_inactive_blocked_plugin_is_only_deleted(engine, server, doc, plugin, audit):
    server.payload = doc(blockedPlugins=["evil-plugin"])
    plugin("evil-plugin", main="loader.php")
    report = engine.enforce()
    assert report.actions == [(EnforcementAction.DELETE_PLUGIN, "evil-plugin")]
    assert audit.entries("auto-deactivated-plugin") == []


def test_blocked_active_theme_switches_to_first_existing_fallback(
    engine, registry, server, doc, theme, audit, wp_dirs
):
    server.payload = doc(blockedThemes=["astra"])
    theme("astra")
    theme("twentytwentythree")
    theme("twentytwentyfive")
    registry.switch_theme("astra")

    report = engine.enforce()

    assert registry.active_theme() == "twentytwentythree"
    assert (EnforcementAction.SWITCH_THEME, "astra") in report.actions
    assert (EnforcementAction.DELETE_THEME, "astra") in report.actions
    assert not (wp_dirs["themes"] / "astra").exists()
    assert [e["target"] for e in audit.entries("blocked-theme-deactivated")] == ["astra"]


def test_no_fallback_theme_leaves_blocked_theme_active(
    engine, registry, server, doc, theme, wp_dirs, audit
):
    server.payload = doc(blockedThemes=["astra"])
    theme("astra")
    registry.switch_theme("astra")

    report = engine.enforce()

    assert registry.active_theme() == "astra"
    assert (wp_dirs["themes"] / "astra").exists()
    assert report.actions == []
    assert any("theme-fallback-missing" in e for e in report.errors)
    assert [e["target"] for e in audit.entries("theme-fallback-missing")] == ["astra"]


def test_blocked_fallback_theme_is_never_chosen(engine, registry, server, doc, theme, audit, wp_dirs):
    server.payload = doc(blockedThemes=["twentytwentyfour"])
    theme("twentytwentyfour")
    theme("twentytwentythree")
    registry.switch_theme("twentytwentyfour")

    first = engine.enforce()
    second = engine.enforce()

    assert registry.active_theme() == "twentytwentythree"
    assert first.actions == [
        (EnforcementAction.SWITCH_THEME, "twentytwentyfour"),
        (EnforcementAction.DELETE_THEME, "twentytwentyfour"),
    ]
    assert not (wp_dirs["themes"] / "twentytwentyfour").exists()
    assert second.actions == [] and second.errors == []
    assert len(audit.entries("blocked-theme-deactivated")) == 1


def test_only_blocked_fallbacks_installed_counts_as_missing(engine, registry, server, doc, theme):
    server.payload = doc(blockedThemes=["astra", "twentytwentyfour"])
    theme("astra")
    theme("twentytwentyfour")
    registry.switch_theme("astra")

    report = engine.enforce()

    assert registry.active_theme() == "astra"
    assert any("theme-fallback-missing: astra" in e for e in report.errors)
    with pytest.raises(EnforcementError):
        engine.on_theme_switched("astra")


def test_inactive_blocked_theme_is_deleted(engine, server, doc, theme, audit, wp_dirs):
    server.payload = doc(blockedThemes=["astra"])
    theme("astra")
    engine.enforce()
    assert not (wp_dirs["themes"] / "astra").exists()
    assert len(audit.entries("auto-deleted-theme")) == 1


def test_run_scheduled_is_deduplicated(engine, server, doc, plugin, clock):
    server.payload = doc(blockedPlugins=["evil-plugin"])
    assert engine.run_scheduled().skipped is False
    plugin("evil-plugin")
    assert engine.run_scheduled().skipped is True

    clock.advance(61)
    report = engine.run_scheduled()
    assert report.skipped is False
    assert report.actions == [(EnforcementAction.DELETE_PLUGIN, "evil-plugin")]


def test_plugin_activation_hook(engine, registry, server, doc, plugin, audit):
    server.payload = doc(blockedPlugins=["evil-plugin"])
    evil = plugin("evil-plugin")
    good = plugin("good-plugin")
    registry.activate_plugin(evil)
    registry.activate_plugin(good)

    assert engine.on_plugin_activated(evil, ip="192.0.2.1", user="alice") is True
    assert engine.on_plugin_activated(good) is False
    assert registry.active_plugins() == [good]
    entry = audit.entries("plugin-activation-blocked")[0]
    assert (entry["target"], entry["ip"], entry["user"]) == ("evil-plugin", "192.0.2.1", "alice")


def test_theme_switch_hook(engine, registry, server, doc, theme, audit):
    server.payload = doc(blockedThemes=["astra"])
    theme("astra")
    theme("twentytwentyfour")
    registry.switch_theme("astra")

    assert engine.on_theme_switched("astra") == "twentytwentyfour"
    assert registry.active_theme() == "twentytwentyfour"
    assert engine.on_theme_switched("twentytwentyfour") is None
    assert len(audit.entries("theme-activation-blocked")) == 1


def test_theme_switch_hook_without_fallback(engine, registry, server, doc, theme, audit):
    server.payload = doc(blockedThemes=["astra"])
    theme("astra")
    registry.switch_theme("astra")
    with pytest.raises(EnforcementError) as err:
        engine.on_theme_switched("astra")
    assert err.value.code == "theme-fallback-missing"
    assert registry.active_theme() == "astra"
    assert len(audit.entries("theme-activation-blocked")) == 1


def test_plugin_action_links_drop_activate(engine, server, doc):
    server.payload = doc(blockedPlugins=["evil-plugin"])
    links = {"activate": "<a>", "delete": "<a>"}
    assert engine.filter_plugin_action_links(links, "evil-plugin/evil-plugin.php") == {"delete": "<a>"}
    assert engine.filter_plugin_action_links(links, "good/good.php") == links
    assert "activate" in links


def test_update_filters(engine, server, doc, audit):
    server.payload = doc(blockedPlugins=["evil-plugin"], blockedThemes=["astra"])
    plugins = engine.filter_plugin_updates(
        {"last_checked": 1, "response": {"evil-plugin/evil-plugin.php": {}, "ok/ok.php": {"v": 2}}}
    )
    themes = engine.filter_theme_updates({"response": {"astra": {}, "kadence": {}}})

    assert plugins == {"last_checked": 1, "response": {"ok/ok.php": {"v": 2}}}
    assert themes == {"response": {"kadence": {}}}
    assert engine.filter_plugin_updates({"checked": {}}) == {"checked": {}}
    assert [e["type"] for e in audit.entries()] == ["plugin-update-blocked", "theme-update-blocked"]


def test_installation_filter(engine, server, doc, audit):
    server.payload = doc(blockedPlugins=["evil-plugin"], blockedThemes=["astra"])

    refused = engine.filter_installation("/var/www/wp-content/plugins/Evil-Plugin/")
    assert (refused.allowed, refused.kind, refused.slug) == (False, "plugin", "evil-plugin")
    assert not engine.filter_installation("/var/www/wp-content/themes/astra").allowed
    assert engine.filter_installation("/var/www/wp-content/plugins/evil-plugin-pro").allowed
    assert engine.filter_installation("/var/www/wp-content/plugins/akismet").allowed
    assert [e["type"] for e in audit.entries()] == ["plugin-install-blocked", "theme-install-blocked"]


def test_installation_filter_logs_only_when_not_blocking(manager, registry, kv, audit, server, doc):
    server.payload = doc(blockedPlugins=["evil-plugin"])
    engine = EnforcementEngine(manager, registry, kv, audit=audit, block_installs=False)
    assert engine.filter_installation("/wp-content/plugins/evil-plugin").allowed
    assert len(audit.entries("plugin-install-blocked")) == 1


def test_audit_failure_never_breaks_enforcement(manager, registry, kv, server, doc, plugin):
    class ExplodingSink(MemoryAuditLog):
        def _append(self, line):
            raise OSError("disk full")

    server.payload = doc(blockedPlugins=["evil-plugin"])
    plugin("evil-plugin")
    engine = EnforcementEngine(manager, registry, kv, audit=ExplodingSink())
    report = engine.enforce()
    assert report.actions == [(EnforcementAction.DELETE_PLUGIN, "evil-plugin")]
