"""
Desktop preferences.

A fixed table of abstract preferences (dark mode, night light, touchpad
click method, title bar buttons, a custom shortcut, display scale) is
translated into the native settings calls of each desktop and run as the
logged-in user inside their session. Values are read back first so a
second run changes nothing.
"""

import logging
import os
import pwd
import re
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from distro_setup.command import Runner, command_exists, run_command
from distro_setup.probe import Desktop
from distro_setup.session import SessionHandle, run_as_user

logger = logging.getLogger("distro_setup")

CUSTOM_KEYBINDINGS_PATH = "/org/gnome/settings-daemon/plugins/media-keys/custom-keybindings/custom0/"
CUSTOM_KEYBINDING_SCHEMA = "org.gnome.settings-daemon.plugins.media-keys.custom-keybinding"
BREEZE_DARK = "org.kde.breezedark.desktop"


@dataclass(frozen=True)
class Setting:
    """One native settings write and the summary line it stands for."""

    label: str
    schema: str
    key: str
    value: str


def normalize_gvariant(text: str) -> str:
    """Reduce gsettings output to a comparable form: drop type prefixes and quotes."""
    text = text.strip()
    text = re.sub(r"^(@\w+|uint32|int32|uint64|int64|double)\s+", "", text)
    if len(text) >= 2 and text[0] == text[-1] and text[0] in "'\"":
        text = text[1:-1]
    return text


class PreferenceApplier(ABC):
    desktop: Desktop

    def __init__(self, handle: SessionHandle, preferences: Mapping[str, Any], run: Runner = run_command):
        self.handle = handle
        self.preferences = preferences
        self.run = run

    def as_user(self, cmd: List[str], **kwargs) -> subprocess.CompletedProcess:
        return run_as_user(cmd, self.handle, self.run, **kwargs)

    @abstractmethod
    def apply(self) -> List[str]:
        """Apply every mapped preference. Returns labels of the settings that changed."""


class GnomeApplier(PreferenceApplier):
    desktop = Desktop.GNOME

    def settings(self) -> List[Setting]:
        prefs = self.preferences
        color = "org.gnome.settings-daemon.plugins.color"
        settings: List[Setting] = []

        if "dark-mode" in prefs:
            scheme = "prefer-dark" if prefs["dark-mode"] else "default"
            settings.append(Setting("Dark mode", "org.gnome.desktop.interface", "color-scheme", scheme))
        if "night-light-enabled" in prefs:
            enabled = "true" if prefs["night-light-enabled"] else "false"
            settings.append(Setting("Night light", color, "night-light-enabled", enabled))
        if "night-light-schedule" in prefs:
            start, end = prefs["night-light-schedule"]
            settings.append(Setting("Night light schedule", color, "night-light-schedule-from", f"{float(start)}"))
            settings.append(Setting("Night light schedule", color, "night-light-schedule-to", f"{float(end)}"))
        if "night-light-temperature" in prefs:
            settings.append(
                Setting("Night light temperature", color, "night-light-temperature", str(prefs["night-light-temperature"]))
            )
        if "touchpad-click-method" in prefs:
            settings.append(
                Setting(
                    "Touchpad click method",
                    "org.gnome.desktop.peripherals.touchpad",
                    "click-method",
                    prefs["touchpad-click-method"],
                )
            )
        if "window-button-layout" in prefs:
            settings.append(
                Setting(
                    "Title bar buttons",
                    "org.gnome.desktop.wm.preferences",
                    "button-layout",
                    prefs["window-button-layout"],
                )
            )
        if "custom-keybinding" in prefs:
            binding: Dict[str, str] = prefs["custom-keybinding"]
            settings.append(
                Setting(
                    "Custom shortcut",
                    "org.gnome.settings-daemon.plugins.media-keys",
                    "custom-keybindings",
                    f"['{CUSTOM_KEYBINDINGS_PATH}']",
                )
            )
            relocatable = f"{CUSTOM_KEYBINDING_SCHEMA}:{CUSTOM_KEYBINDINGS_PATH}"
            for key in ("name", "command", "binding"):
                settings.append(Setting("Custom shortcut", relocatable, key, binding[key]))
        return settings

    def current(self, setting: Setting) -> Optional[str]:
        result = self.as_user(["gsettings", "get", setting.schema, setting.key], capture_output=True, check=False)
        if result.returncode != 0:
            return None
        return normalize_gvariant(result.stdout or "")

    def apply(self) -> List[str]:
        changed: List[str] = []
        for setting in self.settings():
            if self.current(setting) == normalize_gvariant(setting.value):
                logger.debug(f"{setting.schema} {setting.key} already {setting.value}")
                continue
            logger.info(f"gsettings set {setting.schema} {setting.key} {setting.value}")
            self.as_user(["gsettings", "set", setting.schema, setting.key, setting.value])
            if setting.label not in changed:
                changed.append(setting.label)
        return changed


class KdeApplier(PreferenceApplier):
    desktop = Desktop.KDE

    @staticmethod
    def _first_available(candidates: Sequence[str]) -> Optional[str]:
        return next((c for c in candidates if command_exists(c)), None)

    def settings(self) -> List[Setting]:
        prefs = self.preferences
        settings: List[Setting] = []
        if "display-scale" in prefs:
            settings.append(Setting("Display scale", "kdeglobals/KScreen", "ScaleFactor", str(prefs["display-scale"])))
        if "night-light-enabled" in prefs:
            active = "true" if prefs["night-light-enabled"] else "false"
            settings.append(Setting("Night light", "kwinrc/NightColor", "Active", active))
            settings.append(Setting("Night light", "kwinrc/NightColor", "Mode", "Constant"))
        if "night-light-temperature" in prefs:
            settings.append(
                Setting("Night light temperature", "kwinrc/NightColor", "NightTemperature", str(prefs["night-light-temperature"]))
            )
        return settings

    def apply_look_and_feel(self) -> bool:
        if not self.preferences.get("dark-mode"):
            return False
        reader = self._first_available(["kreadconfig6", "kreadconfig5"])
        if reader:
            result = self.as_user(
                [reader, "--file", "kdeglobals", "--group", "KDE", "--key", "LookAndFeelPackage"],
                capture_output=True,
                check=False,
            )
            if (result.stdout or "").strip() == BREEZE_DARK:
                return False
        tool = self._first_available(["plasma-apply-lookandfeel", "lookandfeeltool"])
        if tool is None:
            logger.warning("No KDE look-and-feel tool found; dark mode not applied.")
            return False
        self.as_user([tool, "-a", BREEZE_DARK])
        return True

    def apply(self) -> List[str]:
        changed: List[str] = []
        if self.apply_look_and_feel():
            changed.append("Dark mode (Breeze Dark)")

        writer = self._first_available(["kwriteconfig6", "kwriteconfig5"])
        if writer is None:
            logger.warning("kwriteconfig not found; KDE settings not applied.")
            return changed
        reader = writer.replace("kwrite", "kread")

        for setting in self.settings():
            rc_file, group = setting.schema.split("/", 1)
            if command_exists(reader):
                result = self.as_user(
                    [reader, "--file", rc_file, "--group", group, "--key", setting.key], capture_output=True, check=False
                )
                if (result.stdout or "").strip() == setting.value:
                    continue
            logger.info(f"{writer} {rc_file} [{group}] {setting.key}={setting.value}")
            self.as_user([writer, "--file", rc_file, "--group", group, "--key", setting.key, setting.value])
            if setting.label not in changed:
                changed.append(setting.label)
        return changed


APPLIERS = {Desktop.GNOME: GnomeApplier, Desktop.KDE: KdeApplier}


def get_applier(
    desktop: Desktop, handle: SessionHandle, preferences: Mapping[str, Any], run: Runner = run_command
) -> Optional[PreferenceApplier]:
    cls = APPLIERS.get(desktop)
    return cls(handle, preferences, run) if cls else None


# ----------------------------------------------------------------
# GNOME Shell extensions
# ----------------------------------------------------------------
def extension_enabled(uuid: str, handle: SessionHandle, run: Runner = run_command) -> bool:
    result = run_as_user(["gnome-extensions", "info", uuid], handle, run, capture_output=True, check=False)
    if result.returncode != 0:
        return False
    return bool(re.search(r"(Enabled:\s*Yes|State:\s*(ENABLED|ACTIVE))", result.stdout or ""))


def install_gnome_extension(repo: str, uuid: str, handle: SessionHandle, run: Runner = run_command) -> bool:
    """
    Build and install an extension from its git repository as the desktop user.
    Returns True if the extension ends up enabled.
    """
    workdir = Path(tempfile.mkdtemp(prefix="distro_setup_"))
    try:
        if os.geteuid() == 0:
            os.chown(workdir, handle.uid, pwd.getpwnam(handle.user).pw_gid)
        checkout = workdir / Path(repo).name
        run_as_user(["git", "clone", "--depth=1", repo, str(checkout)], handle, run)
        run_as_user(["make", "install"], handle, run, cwd=checkout)
    finally:
        shutil.rmtree(workdir, ignore_errors=True)

    result = run_as_user(["gnome-extensions", "enable", uuid], handle, run, check=False)
    if result.returncode != 0:
        logger.warning(f"Could not enable extension {uuid}; it will be available after logging in again.")
        return False
    return True


# ----------------------------------------------------------------
# KDE logout
# ----------------------------------------------------------------
KDE_LOGOUT_COMMANDS: List[List[str]] = [
    ["qdbus6", "org.kde.Shutdown", "/Shutdown", "org.kde.Shutdown.logout"],
    ["qdbus-qt6", "org.kde.Shutdown", "/Shutdown", "org.kde.Shutdown.logout"],
    ["qdbus", "org.kde.Shutdown", "/Shutdown", "org.kde.Shutdown.logout"],
    ["qdbus", "org.kde.ksmserver", "/KSMServer", "logout", "0", "0", "0"],
    ["dbus-send", "--session", "--dest=org.kde.Shutdown", "--type=method_call", "/Shutdown", "org.kde.Shutdown.logout"],
    [
        "dbus-send", "--session", "--dest=org.kde.ksmserver", "--type=method_call", "/KSMServer",
        "org.kde.KSMServerInterface.logout", "int32:0", "int32:0", "int32:0",
    ],
]


def kde_logout(handle: SessionHandle, run: Runner = run_command) -> bool:
    """Ask Plasma 6, then Plasma 5, to end the session. Returns True once one call succeeds."""
    for cmd in KDE_LOGOUT_COMMANDS:
        if not command_exists(cmd[0]):
            continue
        result = run_as_user(cmd, handle, run, check=False, capture_output=True)
        if result.returncode == 0:
            return True
    logger.warning("Could not find a working KDE logout tool. Please log out manually.")
    return False
