"""
Shared test fixtures and configuration.
"""

import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import pytest

from distro_setup.config import Config, SetupContext
from distro_setup.pkg import is_url, package_name_from_url
from distro_setup.probe import Desktop, Distro
from distro_setup.prompts import Prompter
from distro_setup.session import SessionHandle

Response = Union[Tuple[int, str], Callable[[List[str]], Tuple[int, str]]]


def contains(cmd: Sequence[str], part: Sequence[str]) -> bool:
    """True when part appears as a contiguous run inside cmd."""
    n = len(part)
    return any(list(cmd[i : i + n]) == list(part) for i in range(len(cmd) - n + 1))


class FakeRunner:
    """
    Stands in for run_command. Records every command and answers from a
    table of scripted responses; the most recently added match wins.
    Commands with no scripted response succeed with empty output.
    Matching looks for the scripted words anywhere in the command, so
    sudo/env wrappers do not get in the way.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.kwargs: List[dict] = []
        self.responses: List[Tuple[List[str], Response]] = []

    def on(self, *part: str, returncode: int = 0, stdout: str = "", handler=None) -> "FakeRunner":
        self.responses.append((list(part), handler or (returncode, stdout)))
        return self

    def __call__(self, cmd, **kwargs) -> subprocess.CompletedProcess:
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        self.kwargs.append(kwargs)
        returncode, stdout = 0, ""
        for part, response in reversed(self.responses):
            if contains(cmd, part):
                returncode, stdout = response(cmd) if callable(response) else response
                break
        if kwargs.get("check", True) and returncode != 0:
            raise subprocess.CalledProcessError(returncode, cmd, stdout, "")
        return subprocess.CompletedProcess(cmd, returncode, stdout, "")

    def ran(self, *part: str) -> bool:
        return any(contains(cmd, part) for cmd in self.calls)

    def matching(self, *part: str) -> List[List[str]]:
        return [cmd for cmd in self.calls if contains(cmd, part)]


class FakeInstalled:
    """A mutable set of installed packages behind rpm/dpkg/pacman queries."""

    def __init__(self, runner: FakeRunner, installed: Sequence[str] = ()):
        self.installed = set(installed)
        self.runner = runner

    def query(self, cmd: List[str]) -> Tuple[int, str]:
        return (0, "") if cmd[-1] in self.installed else (1, "")

    def listing(self, cmd: List[str]) -> Tuple[int, str]:
        return 0, "\n".join(sorted(self.installed)) + "\n"

    def remove(self, cmd: List[str]) -> Tuple[int, str]:
        for name in cmd:
            self.installed.discard(name)
        return 0, ""

    def install(self, cmd: List[str]) -> Tuple[int, str]:
        for name in cmd[3:]:
            self.installed.add(package_name_from_url(name) if is_url(name) else name)
        return 0, ""

    def wire_dnf(self) -> "FakeInstalled":
        r = self.runner
        r.on("rpm", "-q", handler=self.query)
        r.on("rpm", "-qa", handler=self.listing)
        r.on("dnf", "remove", handler=self.remove)
        r.on("dnf", "install", handler=self.install)
        return self


class FakeDpkg:
    """dpkg status database: apt remove leaves packages in 'config-files' state."""

    def __init__(self, runner: FakeRunner, installed: Sequence[str] = ()):
        self.status = {name: "installed" for name in installed}
        runner.on("dpkg-query", "-W", handler=self.query)
        runner.on("apt", "remove", handler=self.remove)
        runner.on("apt", "install", handler=self.install)

    def query(self, cmd: List[str]) -> Tuple[int, str]:
        if cmd[-1].startswith("-f="):
            return 0, "".join(f"{s} {n}\n" for n, s in sorted(self.status.items()))
        if cmd[-1] not in self.status:
            return 1, ""
        return 0, self.status[cmd[-1]]

    def remove(self, cmd: List[str]) -> Tuple[int, str]:
        for name in cmd[3:]:
            self.status[name] = "config-files"
        return 0, ""

    def install(self, cmd: List[str]) -> Tuple[int, str]:
        for name in cmd[3:]:
            self.status[name] = "installed"
        return 0, ""


class FakeGsettings:
    """In-memory gsettings behind the fake runner."""

    def __init__(self, runner, values: Dict[Tuple[str, str], str] = None):
        self.values = dict(values or {})
        runner.on("gsettings", "get", handler=self.get)
        runner.on("gsettings", "set", handler=self.set)

    def get(self, cmd):
        return 0, self.values.get((cmd[-2], cmd[-1]), "''") + "\n"

    def set(self, cmd):
        self.values[(cmd[-3], cmd[-2])] = cmd[-1]
        return 0, ""


class ScriptedPrompter(Prompter):
    """A Prompter fed from lists of answers; records every question."""

    def __init__(self, answers: Sequence[str] = (), confirms: Sequence[bool] = ()):
        self.answers = list(answers)
        self.confirms = list(confirms)
        self.questions: List[str] = []
        super().__init__(ask=self._next_answer, confirm=self._next_confirm, interactive=True)

    def _next_answer(self, message: str) -> str:
        self.questions.append(message)
        return self.answers.pop(0) if self.answers else ""

    def _next_confirm(self, question: str, default: bool) -> bool:
        self.questions.append(question)
        return self.confirms.pop(0) if self.confirms else default


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def prompter() -> ScriptedPrompter:
    return ScriptedPrompter()


@pytest.fixture
def session_handle() -> SessionHandle:
    return SessionHandle(
        user="alice", uid=1000, bus_address="unix:path=/run/user/1000/bus", runtime_dir="/run/user/1000"
    )


@pytest.fixture
def make_context(runner: FakeRunner, prompter: ScriptedPrompter, tmp_path: Path):
    """Build a SetupContext around the fake runner with config paths under tmp_path."""

    def _make(
        distro: Distro = Distro.FEDORA,
        desktop: Desktop = Desktop.GNOME,
        package_manager=None,
        session: Optional[SessionHandle] = None,
        prompter_: Optional[Prompter] = None,
    ) -> SetupContext:
        config = Config(LOG_FILE=tmp_path / "distro-setup.log")
        config.VSCODE_REPO_FILE = tmp_path / "vscode.repo"
        config.ZRAM_CONF = tmp_path / "zram-generator.conf"
        return SetupContext(
            config=config,
            distro=distro,
            desktop=desktop,
            user="alice",
            prompter=prompter_ or prompter,
            package_manager=package_manager,
            run=runner,
            session=session,
            session_probed=True,
        )

    return _make
