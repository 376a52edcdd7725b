# ----------------------------------------------------------------
# Configuration & run context
# ----------------------------------------------------------------
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from distro_setup.command import Runner, run_command
from distro_setup.probe import Desktop, Distro

if TYPE_CHECKING:
    from distro_setup.git import UserIdentity
    from distro_setup.pkg import PackageManager
    from distro_setup.prompts import Prompter
    from distro_setup.session import SessionHandle


@dataclass
class Config:
    """Configuration for the provisioning run."""

    LOG_FILE: Path = field(default_factory=lambda: Path.cwd() / "distro-setup.log")

    # Git and the Android/kernel development basics, per package-manager family
    DEV_PACKAGES: Dict[str, List[str]] = field(
        default_factory=lambda: {
            "dnf": ["git", "git-lfs", "repo", "pahole", "libxcrypt-compat", "openssl", "openssl-devel", "make"],
            "pacman": ["git", "git-lfs", "repo", "pahole", "openssl", "make"],
            "apt": ["git", "git-lfs", "repo", "pahole", "libssl-dev", "make"],
            "zypper": ["git", "git-lfs", "repo", "pahole", "libopenssl-devel", "make"],
        }
    )
    GERRIT_CONFIG_KEY: str = "review.review.lineageos.org.username"

    FEDORA_WORKSTATION_REPOS: str = "fedora-workstation-repositories"
    RPMFUSION_URLS: List[str] = field(
        default_factory=lambda: [
            "https://download1.rpmfusion.org/free/fedora/rpmfusion-free-release-{release}.noarch.rpm",
            "https://download1.rpmfusion.org/nonfree/fedora/rpmfusion-nonfree-release-{release}.noarch.rpm",
        ]
    )

    MICROSOFT_KEY_URL: str = "https://packages.microsoft.com/keys/microsoft.asc"
    VSCODE_REPO_FILE: Path = Path("/etc/yum.repos.d/vscode.repo")
    VSCODE_REPO_CONTENT: str = (
        "[code]\n"
        "name=Visual Studio Code\n"
        "baseurl=https://packages.microsoft.com/yumrepos/vscode\n"
        "enabled=1\n"
        "gpgcheck=1\n"
        "gpgkey=https://packages.microsoft.com/keys/microsoft.asc\n"
    )

    FLATHUB_URL: str = "https://flathub.org/repo/flathub.flatpakrepo"
    FLATPAK_APPS: List[str] = field(default_factory=lambda: ["com.google.Chrome"])
    GNOME_FLATPAK_APPS: List[str] = field(default_factory=lambda: ["org.gnome.Extensions"])

    UNWANTED_PACKAGES: List[str] = field(default_factory=lambda: ["firefox"])
    OFFICE_SUITE_PATTERN: str = "libreoffice"
    GNOME_BLOAT: List[str] = field(
        default_factory=lambda: [
            "gnome-boxes", "cheese", "yelp", "totem", "rhythmbox", "simple-scan",
            "gnome-contacts", "gnome-maps", "gnome-weather", "gnome-characters",
        ]
    )

    BLUR_MY_SHELL_REPO: str = "https://github.com/aunetx/blur-my-shell"
    BLUR_MY_SHELL_UUID: str = "blur-my-shell@aunetx"

    # Abstract desktop preferences, translated per desktop in distro_setup.desktop
    PREFERENCES: Dict[str, Any] = field(
        default_factory=lambda: {
            "dark-mode": True,
            "night-light-enabled": True,
            "night-light-schedule": (20.0, 20.0),
            "night-light-temperature": 4000,
            "touchpad-click-method": "areas",
            "window-button-layout": ":minimize,maximize,close",
            "custom-keybinding": {"name": "Open Files", "command": "nautilus", "binding": "<Super>e"},
            "display-scale": 1.25,
        }
    )

    FIREWALL_ZONE: str = "public"

    CACHY_KERNEL_COPR: str = "bieszczaders/kernel-cachyos-lto"
    CACHY_KERNEL_PACKAGES: List[str] = field(
        default_factory=lambda: ["kernel-cachyos-lto", "kernel-cachyos-lto-devel-matched"]
    )
    CACHY_ADDONS_COPR: str = "bieszczaders/kernel-cachyos-addons"
    CACHY_ADDONS_PACKAGES: List[str] = field(default_factory=lambda: ["cachyos-settings"])

    ZRAM_CONF: Path = Path("/usr/lib/systemd/zram-generator.conf")
    ZRAM_DEFAULT_MULTIPLIER: str = "3.3"


@dataclass
class SetupContext:
    """
    Everything a provisioning step needs, passed explicitly to each one.

    The distro, desktop and target user are probed once at startup; the
    session handle and Git identity are filled in by the steps that
    resolve them.
    """

    config: Config
    distro: Distro
    desktop: Desktop
    user: str
    prompter: "Prompter"
    package_manager: Optional["PackageManager"] = None
    run: Runner = run_command
    session: Optional["SessionHandle"] = None
    session_probed: bool = False
    identity: Optional["UserIdentity"] = None
    # Notes collected for the final summary, keyed by topic
    notes: Dict[str, List[str]] = field(default_factory=dict)

    def note(self, topic: str, line: str) -> None:
        self.notes.setdefault(topic, []).append(line)
