"""
Package-manager adapters.

Each supported distribution family gets one PackageManager subclass that
knows its CLI syntax. Steps only ever talk to the abstract interface:
optimize, upgrade, refresh, install, remove and the two queries.
"""

import logging
import re
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Type

from distro_setup.command import Runner, run_command
from distro_setup.probe import Distro

logger = logging.getLogger("distro_setup")

PARALLEL_DOWNLOADS = 10


def is_url(name: str) -> bool:
    return name.startswith(("http://", "https://", "ftp://"))


def package_name_from_url(url: str) -> str:
    """rpmfusion-free-release-40.noarch.rpm -> rpmfusion-free-release"""
    base = url.rstrip("/").rsplit("/", 1)[-1]
    base = re.sub(r"\.(noarch|x86_64|aarch64|i686)?\.?rpm$", "", base)
    base = re.sub(r"\.(deb|pkg\.tar\.zst)$", "", base)
    return base.rsplit("-", 1)[0] if "-" in base else base


class PackageManager(ABC):
    """Abstract package manager; one concrete class per distribution family."""

    name: str = ""

    def __init__(self, run: Runner = run_command):
        self.run = run

    # -- per-family command syntax -------------------------------------------------

    @abstractmethod
    def optimize(self) -> bool:
        """Tune the package manager configuration. Returns True if a file changed."""

    @abstractmethod
    def upgrade_commands(self) -> List[List[str]]: ...

    @abstractmethod
    def refresh_command(self) -> List[str]: ...

    @abstractmethod
    def install_command(self, names: Sequence[str]) -> List[str]: ...

    @abstractmethod
    def remove_command(self, names: Sequence[str]) -> List[str]: ...

    @abstractmethod
    def query_command(self, name: str) -> List[str]:
        """Command whose zero exit status means the package is installed."""

    @abstractmethod
    def list_command(self) -> List[str]:
        """Command printing one installed package name per line."""

    # -- shared behaviour -----------------------------------------------------------

    def is_installed(self, name: str) -> bool:
        if is_url(name):
            name = package_name_from_url(name)
        try:
            result = self.run(self.query_command(name), capture_output=True, check=False)
        except FileNotFoundError:
            return False
        return self.query_says_installed(result)

    def query_says_installed(self, result: subprocess.CompletedProcess) -> bool:
        return result.returncode == 0

    def list_installed(self) -> List[str]:
        result = self.run(self.list_command(), capture_output=True, check=True)
        return [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]

    def installed_matching(self, substring: str) -> List[str]:
        return [pkg for pkg in self.list_installed() if substring in pkg]

    def upgrade(self) -> None:
        logger.info(f"Upgrading system packages ({self.name})...")
        for cmd in self.upgrade_commands():
            self.run(cmd, timeout=None)

    def refresh(self) -> None:
        self.run(self.refresh_command())

    def install(self, names: Sequence[str], refresh: bool = False) -> List[str]:
        """
        Install whatever is missing from names. Returns the names actually installed.

        With refresh, the package index is updated first, but only when
        there is something to install.
        """
        missing = [n for n in names if not self.is_installed(n)]
        if not missing:
            logger.info(f"Already installed: {', '.join(names)}")
            return []
        if refresh:
            self.refresh()
        logger.info(f"Installing: {', '.join(missing)}")
        self.run(self.install_command(missing), timeout=None)
        return missing

    def remove(self, names: Sequence[str]) -> List[str]:
        """
        Remove whatever is present from names. Returns the names actually removed.

        Packages that are not installed are the desired state, not an error:
        they are filtered out up front, and if the package manager still
        exits non-zero the removal only fails when something is left behind.
        """
        present = [n for n in names if self.is_installed(n)]
        if not present:
            logger.info(f"Not installed, nothing to remove: {', '.join(names)}")
            return []
        logger.info(f"Removing: {', '.join(present)}")
        try:
            self.run(self.remove_command(present), timeout=None)
        except subprocess.CalledProcessError:
            leftover = [n for n in present if self.is_installed(n)]
            if leftover:
                raise
            logger.debug("Remove exited non-zero but every package is gone.")
        return present


def _replace_or_append(path: Path, pattern: str, line: str, append_if_missing: bool = True) -> bool:
    """Rewrite lines matching pattern to line, or append it. Returns True on change."""
    content = path.read_text() if path.exists() else ""
    if re.search(rf"^{re.escape(line)}$", content, flags=re.MULTILINE):
        return False
    new_content, count = re.subn(pattern, line, content, flags=re.MULTILINE)
    if count == 0:
        if not append_if_missing:
            return False
        new_content = content + ("" if not content or content.endswith("\n") else "\n") + line + "\n"
    path.write_text(new_content)
    return True


class Dnf(PackageManager):
    name = "dnf"

    def __init__(self, run: Runner = run_command, conf: Path = Path("/etc/dnf/dnf.conf")):
        super().__init__(run)
        self.conf = conf

    def optimize(self) -> bool:
        changed = False
        for key, value in (("deltarpm", "true"), ("max_parallel_downloads", str(PARALLEL_DOWNLOADS))):
            changed |= _replace_or_append(self.conf, rf"^{key}\s*=.*$", f"{key}={value}")
        return changed

    def upgrade_commands(self) -> List[List[str]]:
        return [["dnf", "upgrade", "--refresh", "-y"]]

    def refresh_command(self) -> List[str]:
        return ["dnf", "makecache", "--refresh"]

    def install_command(self, names: Sequence[str]) -> List[str]:
        return ["dnf", "install", "-y", *names]

    def remove_command(self, names: Sequence[str]) -> List[str]:
        return ["dnf", "remove", "-y", *names]

    def query_command(self, name: str) -> List[str]:
        return ["rpm", "-q", name]

    def list_command(self) -> List[str]:
        return ["rpm", "-qa", "--qf", "%{NAME}\n"]

    def release_version(self) -> str:
        return self.run(["rpm", "-E", "%fedora"], capture_output=True).stdout.strip()

    def enable_copr(self, repo: str) -> None:
        self.run(["dnf", "copr", "enable", "-y", repo])


class Pacman(PackageManager):
    name = "pacman"

    def __init__(self, run: Runner = run_command, conf: Path = Path("/etc/pacman.conf")):
        super().__init__(run)
        self.conf = conf

    def optimize(self) -> bool:
        return _replace_or_append(
            self.conf,
            r"^#\s*ParallelDownloads.*$",
            f"ParallelDownloads = {PARALLEL_DOWNLOADS}",
            append_if_missing=False,
        )

    def upgrade_commands(self) -> List[List[str]]:
        return [["pacman", "-Syu", "--noconfirm"]]

    def refresh_command(self) -> List[str]:
        return ["pacman", "-Sy"]

    def install_command(self, names: Sequence[str]) -> List[str]:
        return ["pacman", "-S", "--noconfirm", "--needed", *names]

    def remove_command(self, names: Sequence[str]) -> List[str]:
        return ["pacman", "-Rns", "--noconfirm", *names]

    def query_command(self, name: str) -> List[str]:
        return ["pacman", "-Qi", name]

    def list_command(self) -> List[str]:
        return ["pacman", "-Qq"]


class Apt(PackageManager):
    name = "apt"

    def __init__(
        self, run: Runner = run_command, conf: Path = Path("/etc/apt/apt.conf.d/99parallel")
    ):
        super().__init__(run)
        self.conf = conf

    def optimize(self) -> bool:
        content = 'Acquire::Queue-Mode "access";\n'
        if self.conf.exists() and self.conf.read_text() == content:
            return False
        self.conf.write_text(content)
        return True

    def upgrade_commands(self) -> List[List[str]]:
        return [["apt", "update"], ["apt", "upgrade", "-y"]]

    def refresh_command(self) -> List[str]:
        return ["apt", "update"]

    def install_command(self, names: Sequence[str]) -> List[str]:
        return ["apt", "install", "-y", *names]

    def remove_command(self, names: Sequence[str]) -> List[str]:
        return ["apt", "remove", "-y", *names]

    # dpkg keeps removed-but-not-purged packages in its database with the
    # status "config-files", so only "installed" counts as present.
    def query_command(self, name: str) -> List[str]:
        return ["dpkg-query", "-W", "-f=${db:Status-Status}", name]

    def query_says_installed(self, result: subprocess.CompletedProcess) -> bool:
        return result.returncode == 0 and (result.stdout or "").strip() == "installed"

    def list_command(self) -> List[str]:
        return ["dpkg-query", "-W", "-f=${db:Status-Status} ${Package}\n"]

    def list_installed(self) -> List[str]:
        names = []
        for line in super().list_installed():
            status, _, name = line.partition(" ")
            if status == "installed" and name:
                names.append(name)
        return names


class Zypper(PackageManager):
    name = "zypper"

    def __init__(self, run: Runner = run_command, conf: Path = Path("/etc/zypp/zypp.conf")):
        super().__init__(run)
        self.conf = conf

    def optimize(self) -> bool:
        return _replace_or_append(
            self.conf,
            r"^#\s*parallel-downloads\s*=.*$",
            f"parallel-downloads={PARALLEL_DOWNLOADS}",
            append_if_missing=False,
        )

    def upgrade_commands(self) -> List[List[str]]:
        return [["zypper", "refresh"], ["zypper", "update", "-y"]]

    def refresh_command(self) -> List[str]:
        return ["zypper", "refresh"]

    def install_command(self, names: Sequence[str]) -> List[str]:
        return ["zypper", "install", "-y", *names]

    def remove_command(self, names: Sequence[str]) -> List[str]:
        return ["zypper", "rm", "-y", *names]

    def query_command(self, name: str) -> List[str]:
        return ["rpm", "-q", name]

    def list_command(self) -> List[str]:
        return ["rpm", "-qa", "--qf", "%{NAME}\n"]


PACKAGE_MANAGERS: Dict[str, Type[PackageManager]] = {
    "dnf": Dnf,
    "pacman": Pacman,
    "apt": Apt,
    "zypper": Zypper,
}


def get_package_manager(distro: Distro, run: Runner = run_command) -> Optional[PackageManager]:
    """Select the adapter for a distro once at startup; None when unsupported."""
    cls = PACKAGE_MANAGERS.get(distro.family)
    if cls is None:
        logger.warning(f"No package manager support for '{distro.value}'.")
        return None
    return cls(run=run)
