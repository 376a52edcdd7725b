"""
Tests for the GNOME and KDE preference appliers and the extension helpers.
"""

from typing import Dict, Tuple

import pytest

from conftest import FakeGsettings
from distro_setup.config import Config
from distro_setup.desktop import (
    BREEZE_DARK,
    GnomeApplier,
    KdeApplier,
    extension_enabled,
    get_applier,
    install_gnome_extension,
    kde_logout,
    normalize_gvariant,
)
from distro_setup.probe import Desktop


class FakeKconfig:
    """In-memory kreadconfig/kwriteconfig behind the fake runner."""

    def __init__(self, runner):
        self.values: Dict[Tuple[str, str, str], str] = {}
        runner.on("kreadconfig6", handler=self.read)
        runner.on("kwriteconfig6", handler=self.write)

    @staticmethod
    def _key(cmd):
        args = dict(zip(cmd, cmd[1:]))
        return args["--file"], args["--group"], args["--key"]

    def read(self, cmd):
        return 0, self.values.get(self._key(cmd), "") + "\n"

    def write(self, cmd):
        self.values[self._key(cmd)] = cmd[-1]
        return 0, ""


@pytest.fixture
def preferences():
    return Config().PREFERENCES


class TestNormalize:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("'prefer-dark'\n", "prefer-dark"),
            ("uint32 4000", "4000"),
            ("@as []", "[]"),
            ("true", "true"),
            ("20.0", "20.0"),
        ],
    )
    def test_normalize(self, raw, expected):
        assert normalize_gvariant(raw) == expected


class TestGnomeApplier:
    def test_applies_every_preference(self, runner, session_handle, preferences):
        store = FakeGsettings(runner)
        changed = GnomeApplier(session_handle, preferences, runner).apply()
        assert "Dark mode" in changed
        assert "Night light" in changed
        assert "Custom shortcut" in changed
        assert normalize_gvariant(store.values[("org.gnome.desktop.interface", "color-scheme")]) == "prefer-dark"
        assert store.values[("org.gnome.settings-daemon.plugins.color", "night-light-schedule-from")] == "20.0"
        assert store.values[("org.gnome.settings-daemon.plugins.color", "night-light-temperature")] == "4000"
        assert store.values[("org.gnome.desktop.wm.preferences", "button-layout")] == ":minimize,maximize,close"

    def test_second_apply_changes_nothing(self, runner, session_handle, preferences):
        FakeGsettings(runner)
        GnomeApplier(session_handle, preferences, runner).apply()
        sets_before = len(runner.matching("gsettings", "set"))
        assert GnomeApplier(session_handle, preferences, runner).apply() == []
        assert len(runner.matching("gsettings", "set")) == sets_before

    def test_existing_values_are_read_with_type_prefix(self, runner, session_handle):
        FakeGsettings(runner, {("org.gnome.settings-daemon.plugins.color", "night-light-temperature"): "uint32 4000"})
        changed = GnomeApplier(session_handle, {"night-light-temperature": 4000}, runner).apply()
        assert changed == []

    def test_runs_inside_the_user_session(self, runner, session_handle, preferences):
        FakeGsettings(runner)
        GnomeApplier(session_handle, {"dark-mode": True}, runner).apply()
        for cmd in runner.matching("gsettings"):
            assert f"DBUS_SESSION_BUS_ADDRESS={session_handle.bus_address}" in cmd


class TestKdeApplier:
    @pytest.fixture(autouse=True)
    def kde_tools(self, monkeypatch):
        available = {"kreadconfig6", "kwriteconfig6", "plasma-apply-lookandfeel"}
        monkeypatch.setattr("distro_setup.desktop.command_exists", lambda c: c in available)

    def test_applies_and_converges(self, runner, session_handle, preferences):
        store = FakeKconfig(runner)

        def apply_look_and_feel(cmd):
            store.values[("kdeglobals", "KDE", "LookAndFeelPackage")] = cmd[-1]
            return 0, ""

        runner.on("plasma-apply-lookandfeel", handler=apply_look_and_feel)
        changed = KdeApplier(session_handle, preferences, runner).apply()
        assert changed[0] == "Dark mode (Breeze Dark)"
        assert store.values[("kwinrc", "NightColor", "Mode")] == "Constant"
        assert store.values[("kwinrc", "NightColor", "NightTemperature")] == "4000"
        assert store.values[("kdeglobals", "KScreen", "ScaleFactor")] == "1.25"
        assert store.values[("kdeglobals", "KDE", "LookAndFeelPackage")] == BREEZE_DARK

        assert KdeApplier(session_handle, preferences, runner).apply() == []

    def test_get_applier(self, runner, session_handle, preferences):
        assert isinstance(get_applier(Desktop.KDE, session_handle, preferences, runner), KdeApplier)
        assert isinstance(get_applier(Desktop.GNOME, session_handle, preferences, runner), GnomeApplier)
        assert get_applier(Desktop.OTHER, session_handle, preferences, runner) is None


class TestExtensions:
    def test_enabled_detection(self, runner, session_handle):
        runner.on("gnome-extensions", "info", stdout="blur-my-shell@aunetx\n  Enabled: Yes\n  State: ACTIVE\n")
        assert extension_enabled("blur-my-shell@aunetx", session_handle, runner)

    def test_not_installed(self, runner, session_handle):
        runner.on("gnome-extensions", "info", returncode=2)
        assert not extension_enabled("blur-my-shell@aunetx", session_handle, runner)

    def test_install_builds_as_user(self, runner, session_handle, monkeypatch):
        monkeypatch.setattr("distro_setup.desktop.os.geteuid", lambda: 4242)
        assert install_gnome_extension("https://github.com/aunetx/blur-my-shell", "blur-my-shell@aunetx", session_handle, runner)
        clone = runner.matching("git", "clone")[0]
        assert clone[:3] == ["sudo", "-u", "alice"]
        assert "--depth=1" in clone
        assert runner.ran("make", "install")
        assert runner.ran("gnome-extensions", "enable", "blur-my-shell@aunetx")

    def test_enable_failure_is_not_fatal(self, runner, session_handle, monkeypatch):
        monkeypatch.setattr("distro_setup.desktop.os.geteuid", lambda: 4242)
        runner.on("gnome-extensions", "enable", returncode=2)
        assert not install_gnome_extension("https://x/ext", "ext@x", session_handle, runner)


class TestKdeLogout:
    def test_falls_back_to_next_signature(self, runner, session_handle, monkeypatch):
        monkeypatch.setattr("distro_setup.desktop.command_exists", lambda c: c == "qdbus")
        runner.on("qdbus", "org.kde.Shutdown", returncode=1)
        assert kde_logout(session_handle, runner)
        assert runner.ran("qdbus", "org.kde.ksmserver", "/KSMServer", "logout")

    def test_no_tool(self, runner, session_handle, monkeypatch):
        monkeypatch.setattr("distro_setup.desktop.command_exists", lambda c: False)
        assert not kde_logout(session_handle, runner)
        assert runner.calls == []
