"""Git identity: read from the global config, prompt for what is missing, persist."""

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

from distro_setup.command import Runner, run_command

logger = logging.getLogger("distro_setup")

GERRIT_KEY = "review.review.lineageos.org.username"


@dataclass
class UserIdentity:
    name: str
    email: str
    gerrit_username: Optional[str] = None

    @property
    def complete(self) -> bool:
        return bool(self.name and self.email)

    def __str__(self) -> str:
        text = f"{self.name} <{self.email}>"
        if self.gerrit_username:
            text += f", Gerrit: {self.gerrit_username}"
        return text


def git_config_get(key: str, run: Runner = run_command) -> str:
    """Value of a global git config key, or an empty string when unset."""
    result = run(["git", "config", "--global", "--get", key], capture_output=True, check=False)
    if result.returncode == 0:
        return (result.stdout or "").strip()
    if result.returncode != 1:
        raise subprocess.CalledProcessError(result.returncode, result.args, result.stdout, result.stderr)
    return ""


def git_config_set(key: str, value: str, run: Runner = run_command) -> None:
    run(["git", "config", "--global", key, value])


def read_identity(run: Runner = run_command, gerrit_key: str = GERRIT_KEY) -> UserIdentity:
    return UserIdentity(
        name=git_config_get("user.name", run),
        email=git_config_get("user.email", run),
        gerrit_username=git_config_get(gerrit_key, run) or None,
    )
