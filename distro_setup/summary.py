# ----------------------------------------------------------------
# Run summary
# ----------------------------------------------------------------
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Union

from rich.align import Align
from rich.box import ROUNDED
from rich.console import Group
from rich.panel import Panel
from rich.style import Style
from rich.table import Table
from rich.text import Text

from distro_setup.sequencer import RunReport, StepStatus
from distro_setup.ui import NordColors, console, print_section

STATUS_ICONS: Dict[StepStatus, str] = {
    StepStatus.SUCCESS: "✓",
    StepStatus.SKIPPED: "↷",
    StepStatus.FAILED: "✗",
    StepStatus.FATAL: "✗",
}

STATUS_STYLES: Dict[StepStatus, str] = {
    StepStatus.SUCCESS: "success",
    StepStatus.SKIPPED: "skipped",
    StepStatus.FAILED: "warning",
    StepStatus.FATAL: "error",
}

NOTE_TITLES: Dict[str, str] = {
    "git": "Git identity",
    "desktop": "Desktop preferences applied",
    "tweaks": "Optional tweaks",
}


def format_elapsed(seconds: float) -> str:
    h, rem = divmod(int(seconds), 3600)
    m, s = divmod(rem, 60)
    return f"{h}h {m}m {s}s"


def status_counts(report: RunReport) -> Dict[StepStatus, int]:
    return {status: len(report.with_status(status)) for status in StepStatus}


def build_results_table(report: RunReport, title: str = "Setup Status") -> Table:
    table = Table(
        show_header=True,
        header_style=f"bold {NordColors.FROST_1}",
        border_style=NordColors.FROST_3,
        box=ROUNDED,
        title=f"[bold {NordColors.FROST_2}]{title}[/]",
        title_justify="center",
        expand=True,
    )
    table.add_column("Step", style=f"bold {NordColors.FROST_2}")
    table.add_column("Status", justify="center")
    table.add_column("Details", style=NordColors.SNOW_STORM_1, ratio=3)
    table.add_column("Time", justify="right", style=NordColors.POLAR_NIGHT_4)

    for result in report.results:
        style = STATUS_STYLES[result.status]
        table.add_row(
            result.title,
            f"[{style}]{STATUS_ICONS[result.status]} {result.status.value.upper()}[/]",
            result.message,
            f"{result.elapsed:.1f}s",
        )
    return table


def build_counts_line(report: RunReport) -> Text:
    counts = status_counts(report)
    line = Text()
    line.append("Status Summary: ", style=f"bold {NordColors.FROST_3}")
    line.append(f"{counts[StepStatus.SUCCESS]} Succeeded", style=f"bold {NordColors.GREEN}")
    line.append(" | ")
    line.append(f"{counts[StepStatus.SKIPPED]} Skipped", style=f"bold {NordColors.FROST_3}")
    line.append(" | ")
    line.append(f"{counts[StepStatus.FAILED]} Failed", style=f"bold {NordColors.YELLOW}")
    line.append(" | ")
    line.append(f"{counts[StepStatus.FATAL]} Fatal", style=f"bold {NordColors.RED}")
    return line


def build_notes(notes: Mapping[str, List[str]]) -> List[Panel]:
    panels = []
    for topic, lines in notes.items():
        if not lines:
            continue
        panels.append(
            Panel(
                Text("\n".join(lines), style=NordColors.SNOW_STORM_1),
                title=f"[bold {NordColors.FROST_2}]{NOTE_TITLES.get(topic, topic.title())}[/]",
                border_style=NordColors.FROST_4,
                padding=(0, 2),
            )
        )
    return panels


def print_summary(
    report: RunReport,
    notes: Optional[Mapping[str, List[str]]] = None,
    log_file: Optional[Union[str, Path]] = None,
    elapsed: Optional[float] = None,
    title: str = "Setup Status",
) -> None:
    """Print every step outcome, the collected notes and where the log lives."""
    print_section("Final Summary")
    console.print(
        Panel(
            Group(build_results_table(report, title), Align.center(build_counts_line(report))),
            border_style=Style(color=NordColors.FROST_4),
            padding=(0, 1),
            box=ROUNDED,
        )
    )
    for panel in build_notes(notes or {}):
        console.print(panel)

    footer = []
    if elapsed is not None:
        footer.append(f"Total time: {format_elapsed(elapsed)}")
    if log_file is not None:
        footer.append(f"Log file: {log_file}")
    if footer:
        style = NordColors.GREEN if report.ok else NordColors.YELLOW
        console.print(Panel(Text("\n".join(footer), style=style), border_style=style, padding=(0, 2)))
