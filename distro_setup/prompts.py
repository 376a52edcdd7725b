# ----------------------------------------------------------------
# Interactive prompts
# ----------------------------------------------------------------
import logging
import re
import sys
from typing import Callable, Optional

from prompt_toolkit import prompt as pt_prompt
from prompt_toolkit.styles import Style as PtStyle
from rich.prompt import Confirm

from distro_setup.errors import MissingInputError
from distro_setup.ui import NordColors, console

logger = logging.getLogger("distro_setup")

DEFCONFIG_SUFFIX = "_defconfig"


def get_prompt_style() -> PtStyle:
    return PtStyle.from_dict({"prompt": f"bold {NordColors.PURPLE}"})


def default_jobs(cores: int) -> int:
    """80% of the logical cores, never below one."""
    return max(1, cores * 8 // 10)


def parse_jobs(raw: str, default: int) -> int:
    """
    Parse a thread count typed by the user.

    Anything that is not a whole number of at least one falls back to the
    default. Larger numbers are honoured as typed, even beyond the core count.
    """
    raw = raw.strip()
    if re.fullmatch(r"[0-9]+", raw) and int(raw) >= 1:
        return int(raw)
    if raw:
        logger.warning(f"Invalid thread count '{raw}', using {default}.")
    return default


def normalize_defconfig(name: str) -> str:
    name = name.strip()
    return name if name.endswith(DEFCONFIG_SUFFIX) else f"{name}{DEFCONFIG_SUFFIX}"


def _terminal_ask(message: str, default: str = "") -> str:
    return pt_prompt(message, default=default, style=get_prompt_style())


def _terminal_confirm(question: str, default: bool = False) -> bool:
    return Confirm.ask(f"[bold {NordColors.FROST_2}]{question}[/]", default=default, console=console)


class Prompter:
    """
    Collects values from the invoking terminal.

    ask and confirm can be swapped out, which is how tests feed answers.
    Without a terminal every prompt resolves to its default, and required
    values without a default are a fatal MissingInputError.
    """

    def __init__(
        self,
        ask: Optional[Callable[[str], str]] = None,
        confirm: Optional[Callable[[str, bool], bool]] = None,
        interactive: Optional[bool] = None,
    ):
        self._ask = ask or _terminal_ask
        self._confirm = confirm or _terminal_confirm
        if interactive is None:
            interactive = ask is not None or sys.stdin.isatty()
        self.interactive = interactive

    def ask(self, message: str) -> str:
        if not self.interactive:
            return ""
        return self._ask(message).strip()

    def ask_required(self, label: str) -> str:
        value = self.ask(f"{label}: ")
        if not value:
            raise MissingInputError(f"{label} is required.")
        return value

    def ask_with_default(self, label: str, default: str) -> str:
        value = self.ask(f"{label} [default: {default}]: ")
        return value or default

    def confirm(self, question: str, default: bool = False) -> bool:
        if not self.interactive:
            logger.info(f"Non-interactive run, answering '{question}' with {'yes' if default else 'no'}.")
            return default
        return self._confirm(question, default)

    def ask_jobs(self, cores: int) -> int:
        default = default_jobs(cores)
        console.print(f"Detected {cores} threads on this system.")
        console.print(f"Default threads for compilation: {default} (80% of total)")
        raw = self.ask(f"Enter number of threads to use [default: {default}]: ")
        return parse_jobs(raw, default)
