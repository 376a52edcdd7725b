"""
Environment probing: which distribution, which desktop, which user.
"""

import getpass
import logging
import os
import subprocess
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from distro_setup.command import Runner, run_command

OS_RELEASE = Path("/etc/os-release")

logger = logging.getLogger("distro_setup")


class Distro(str, Enum):
    FEDORA = "fedora"
    ARCH = "arch"
    MANJARO = "manjaro"
    UBUNTU = "ubuntu"
    DEBIAN = "debian"
    OPENSUSE = "opensuse"
    UNSUPPORTED = "unsupported"

    @property
    def family(self) -> str:
        """Package-manager family the distribution belongs to."""
        return {
            Distro.FEDORA: "dnf",
            Distro.ARCH: "pacman",
            Distro.MANJARO: "pacman",
            Distro.UBUNTU: "apt",
            Distro.DEBIAN: "apt",
            Distro.OPENSUSE: "zypper",
        }.get(self, "none")


class Desktop(str, Enum):
    GNOME = "gnome"
    KDE = "kde"
    OTHER = "other"


def parse_os_release(content: str) -> Dict[str, str]:
    """Parse KEY=VALUE lines of an os-release file, stripping quotes."""
    data: Dict[str, str] = {}
    for line in content.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        data[key.strip()] = value.strip().strip('"').strip("'")
    return data


def distro_from_id(dist_id: str) -> Distro:
    dist_id = dist_id.strip().lower()
    if dist_id.startswith("opensuse"):
        return Distro.OPENSUSE
    try:
        distro = Distro(dist_id)
    except ValueError:
        return Distro.UNSUPPORTED
    return distro


def detect_distro(os_release: Union[str, Path] = OS_RELEASE) -> Distro:
    """Read the distro ID from os-release; anything unknown is UNSUPPORTED."""
    path = Path(os_release)
    try:
        data = parse_os_release(path.read_text())
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return Distro.UNSUPPORTED

    distro = distro_from_id(data.get("ID", ""))
    if distro is Distro.UNSUPPORTED:
        logger.warning(f"Unsupported distribution: {data.get('PRETTY_NAME', data.get('ID', 'unknown'))}")
    else:
        logger.info(f"Detected {data.get('PRETTY_NAME', distro.value)}")
    return distro


def detect_desktop(environ: Optional[Mapping[str, str]] = None) -> Desktop:
    environ = os.environ if environ is None else environ
    current = environ.get("XDG_CURRENT_DESKTOP", "")
    if "GNOME" in current:
        return Desktop.GNOME
    if "KDE" in current:
        return Desktop.KDE
    return Desktop.OTHER


def detect_target_user(
    environ: Optional[Mapping[str, str]] = None, run: Runner = run_command
) -> str:
    """
    The unprivileged desktop user the run is for.

    Prefers SUDO_USER, then the login name of the controlling terminal,
    then whoever this process runs as.
    """
    environ = os.environ if environ is None else environ
    sudo_user = environ.get("SUDO_USER", "")
    if sudo_user and sudo_user != "root":
        return sudo_user
    try:
        result = run(["logname"], capture_output=True, check=True)
        name = (result.stdout or "").strip()
        if name:
            return name
    except (subprocess.CalledProcessError, FileNotFoundError, TimeoutError):
        logger.debug("logname unavailable, falling back to the current user")
    return getpass.getuser()


def logical_cores() -> int:
    return os.cpu_count() or 1
