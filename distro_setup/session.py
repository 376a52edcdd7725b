"""
Reaching the desktop user's session bus from a privileged process.

Settings daemons only listen on the logged-in user's session bus, so
preference changes have to run as that user with DBUS_SESSION_BUS_ADDRESS
pointing at their bus. Finding that address is a chain of strategies tried
in order; the first one that yields an address wins.
"""

import logging
import os
import pwd
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from distro_setup.command import Runner, run_command

logger = logging.getLogger("distro_setup")

BUS_VARIABLE = "DBUS_SESSION_BUS_ADDRESS"


@dataclass(frozen=True)
class SessionHandle:
    user: str
    uid: int
    bus_address: str
    runtime_dir: str
    strategy: str = ""

    def session_env(self) -> Dict[str, str]:
        return {BUS_VARIABLE: self.bus_address, "XDG_RUNTIME_DIR": self.runtime_dir}

    def wrap(self, cmd: List[str], current_uid: Optional[int] = None) -> List[str]:
        """The command line that runs cmd as this user inside their session."""
        current_uid = os.geteuid() if current_uid is None else current_uid
        env_args = [f"{k}={v}" for k, v in self.session_env().items()]
        if current_uid == self.uid:
            return ["env", *env_args, *cmd]
        return ["sudo", "-u", self.user, "env", *env_args, *cmd]


def run_as_user(
    cmd: List[str], handle: SessionHandle, run: Runner = run_command, **kwargs
) -> subprocess.CompletedProcess:
    """Run cmd as the session's user with the session bus in its environment."""
    return run(handle.wrap(cmd), **kwargs)


def as_user(user: str, run: Runner = run_command, current_user: Optional[str] = None) -> Runner:
    """
    A runner that executes commands as user with their HOME.

    Used for per-user state that needs no session bus, like the global git
    config. When we already are that user the given runner is returned.
    """
    if current_user is None:
        current_user = pwd.getpwuid(os.geteuid()).pw_name
    if current_user == user:
        return run

    def _run(cmd: List[str], **kwargs) -> subprocess.CompletedProcess:
        return run(["sudo", "-u", user, "-H", *cmd], **kwargs)

    return _run


class SessionLocator:
    """Tries each bus-discovery strategy in order for one user."""

    def __init__(
        self,
        user: str,
        run: Runner = run_command,
        environ: Optional[Mapping[str, str]] = None,
        proc_root: Path = Path("/proc"),
        runtime_root: Path = Path("/run/user"),
        current_uid: Optional[int] = None,
    ):
        self.user = user
        self.run = run
        self.environ = os.environ if environ is None else environ
        self.proc_root = proc_root
        self.runtime_root = runtime_root
        self.current_uid = os.geteuid() if current_uid is None else current_uid
        self.uid: Optional[int] = None
        try:
            self.uid = pwd.getpwnam(user).pw_uid
        except KeyError:
            logger.warning(f"User '{user}' does not exist; no desktop session to reach.")

    @property
    def runtime_dir(self) -> Path:
        return self.runtime_root / str(self.uid)

    def from_process_environment(self) -> Optional[str]:
        """Our own environment, when we already run as the desktop user."""
        if self.current_uid != self.uid:
            return None
        return self.environ.get(BUS_VARIABLE) or None

    def from_user_processes(self) -> Optional[str]:
        """Read the bus address out of a running process owned by the user."""
        if not self.proc_root.is_dir():
            return None
        for entry in self.proc_root.iterdir():
            if not entry.name.isdigit():
                continue
            try:
                if entry.stat().st_uid != self.uid:
                    continue
                raw = (entry / "environ").read_bytes()
            except OSError:
                continue
            for item in raw.split(b"\0"):
                if item.startswith(BUS_VARIABLE.encode() + b"="):
                    return item.split(b"=", 1)[1].decode(errors="replace")
        return None

    def from_runtime_socket(self) -> Optional[str]:
        """The systemd per-user bus socket."""
        socket_path = self.runtime_dir / "bus"
        if socket_path.exists():
            return f"unix:path={socket_path}"
        return None

    def from_dbus_launch(self) -> Optional[str]:
        """Start a throwaway session bus as the user."""
        cmd = ["dbus-launch", "--sh-syntax"]
        if self.current_uid != self.uid:
            cmd = ["sudo", "-u", self.user, *cmd]
        try:
            result = self.run(cmd, capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError, TimeoutError) as e:
            logger.debug(f"dbus-launch failed: {e}")
            return None
        match = re.search(rf"{BUS_VARIABLE}='([^']+)'", result.stdout or "")
        return match.group(1) if match else None

    STRATEGIES: List[str] = [
        "from_process_environment",
        "from_user_processes",
        "from_runtime_socket",
        "from_dbus_launch",
    ]

    def locate(self) -> Optional[SessionHandle]:
        if self.uid is None:
            return None
        for name in self.STRATEGIES:
            address = getattr(self, name)()
            if address:
                logger.debug(f"Session bus for {self.user} found via {name}: {address}")
                return SessionHandle(
                    user=self.user,
                    uid=self.uid,
                    bus_address=address,
                    runtime_dir=str(self.runtime_dir),
                    strategy=name,
                )
        logger.warning(f"No active desktop session bus found for {self.user}.")
        return None


def find_session_bus(user: str, run: Runner = run_command, **kwargs) -> Optional[SessionHandle]:
    return SessionLocator(user, run=run, **kwargs).locate()
