"""
Step sequencer.

Runs an ordered list of ProvisioningSteps once each. A recoverable failure
is logged and the run moves on; a fatal failure stops the run with a
FatalStepError naming the step. Nothing is retried.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from distro_setup.errors import FatalStepError, StepSkipped
from distro_setup.ui import NordColors, console


class Criticality(str, Enum):
    FATAL = "fatal"
    RECOVERABLE = "recoverable"


class StepStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    FATAL = "fatal"


# An action returns an optional message for the summary, raises StepSkipped
# when there is nothing to do, or raises anything else on failure.
StepAction = Callable[[], Optional[str]]


@dataclass
class ProvisioningStep:
    name: str
    action: StepAction
    criticality: Criticality = Criticality.RECOVERABLE
    description: str = ""
    # Steps that prompt or stream output to the terminal run without a spinner
    interactive: bool = False

    @property
    def title(self) -> str:
        return self.description or self.name.replace("_", " ").capitalize()


@dataclass
class StepResult:
    name: str
    title: str
    status: StepStatus
    message: str = ""
    elapsed: float = 0.0


@dataclass
class RunReport:
    results: List[StepResult] = field(default_factory=list)

    def get(self, name: str) -> Optional[StepResult]:
        return next((r for r in self.results if r.name == name), None)

    def with_status(self, status: StepStatus) -> List[StepResult]:
        return [r for r in self.results if r.status is status]

    @property
    def ok(self) -> bool:
        return not any(r.status in (StepStatus.FAILED, StepStatus.FATAL) for r in self.results)


class Sequencer:
    def __init__(self, logger: Optional[logging.Logger] = None, show_progress: bool = True):
        self.logger = logger or logging.getLogger("distro_setup")
        self.show_progress = show_progress
        self.report = RunReport()

    def _call(self, step: ProvisioningStep) -> Optional[str]:
        if not self.show_progress or step.interactive:
            return step.action()
        with Progress(
            SpinnerColumn(style=f"bold {NordColors.FROST_1}"),
            TextColumn("{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            progress.add_task(step.title, total=None)
            return step.action()

    def run_step(self, step: ProvisioningStep) -> StepResult:
        self.logger.info(f"Starting: {step.title}...")
        start = time.monotonic()
        try:
            message = self._call(step) or ""
            status = StepStatus.SUCCESS
            self.logger.info(f"✓ Finished: {step.title} ({time.monotonic() - start:.2f}s)")
        except StepSkipped as e:
            message = e.reason
            status = StepStatus.SKIPPED
            self.logger.info(f"↷ Skipped: {step.title}: {e.reason}")
        except Exception as e:
            message = str(e) or type(e).__name__
            if step.criticality is Criticality.FATAL:
                status = StepStatus.FATAL
                self.logger.error(f"✗ Fatal: {step.title}: {message}")
                self.logger.debug("Fatal step traceback", exc_info=True)
                result = StepResult(step.name, step.title, status, message, time.monotonic() - start)
                self.report.results.append(result)
                raise FatalStepError(step.name, e) from e
            status = StepStatus.FAILED
            self.logger.warning(f"✗ Failed: {step.title}: {message}. Continuing.")
            self.logger.debug("Recoverable step traceback", exc_info=True)

        result = StepResult(step.name, step.title, status, message, time.monotonic() - start)
        self.report.results.append(result)
        return result

    def run(self, steps: Sequence[ProvisioningStep]) -> RunReport:
        """Run every step in order. Raises FatalStepError on the first fatal failure."""
        for step in steps:
            self.run_step(step)
        return self.report
